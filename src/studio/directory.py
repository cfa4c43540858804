"""Instructor and student records.

Profile maintenance only. Credit balances are owned by the booking ledger,
so student edits here never touch ``credits``.
"""

from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from src.studio.auth import require_admin
from src.studio.config import StudioConfig, get_config
from src.studio.dates import date_key, to_date
from src.studio.errors import InvalidInputError
from src.studio.logging import get_logger
from src.studio.models import Instructor, MembershipType, Principal, Role, User
from src.studio.repository import StudioRepository, dump
from src.studio.store.base import INSTRUCTORS, USERS, DocumentStore, Transaction
from src.studio.utils import next_sequential_id

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

INSTRUCTOR_FIELDS = frozenset({"name", "bio", "image_url", "phone_number", "default_rate"})
STUDENT_FIELDS = frozenset(
    {"name", "email", "phone_number", "membership_type", "unlimited_expiry"}
)


def _check_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidInputError(
            f"Fields not editable: {', '.join(sorted(unknown))}", fields=sorted(unknown)
        )


def _validated(model: type[M], data: dict[str, Any]) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid {model.__name__.lower()} data: {e}") from e


class StudioDirectory:
    """Admin maintenance of instructors and students."""

    def __init__(self, store: DocumentStore, config: StudioConfig | None = None) -> None:
        self.store = store
        self.config = config or get_config()
        self.repo = StudioRepository(store)

    def _insert(self, collection: str, prefix: str, build: Callable[[str], M]) -> M:
        """Mint the next sequential id and write the new record atomically."""

        def _create(tx: Transaction) -> M:
            taken = {d["id"] for d in self.store.query(collection)}
            while True:
                candidate = next_sequential_id(prefix, taken)
                if tx.get(collection, candidate) is None:
                    break
                taken.add(candidate)
            record = build(candidate)
            tx.set(collection, candidate, dump(record))
            return record

        return self.store.run_transaction(_create)

    # Instructors
    def add_instructor(self, principal: Principal, name: str, **fields: Any) -> Instructor:
        require_admin(principal)
        _check_fields(fields, INSTRUCTOR_FIELDS)
        fields.setdefault("default_rate", self.config.default_hourly_rate)
        _validated(Instructor, {"id": "pending", "name": name, **fields})
        instructor = self._insert(
            INSTRUCTORS,
            self.config.instructor_id_prefix,
            lambda new_id: Instructor(id=new_id, name=name, **fields),
        )
        logger.info("instructor_added", instructor_id=instructor.id, actor=principal.user_id)
        return instructor

    def update_instructor(
        self, principal: Principal, instructor_id: str, changes: dict[str, Any]
    ) -> Instructor:
        require_admin(principal)
        _check_fields(changes, INSTRUCTOR_FIELDS)
        current = self.repo.get_instructor(instructor_id)
        updated = _validated(Instructor, {**current.model_dump(), **changes})
        fields = dump(updated)
        self.store.update(INSTRUCTORS, instructor_id, {name: fields[name] for name in changes})
        logger.info(
            "instructor_updated",
            instructor_id=instructor_id,
            fields=sorted(changes),
            actor=principal.user_id,
        )
        return updated

    def delete_instructor(self, principal: Principal, instructor_id: str) -> int:
        """Remove an instructor record.

        Live classes that still name the instructor are left untouched; their
        count is logged and returned so the admin can reassign them.
        """
        require_admin(principal)
        self.repo.get_instructor(instructor_id)
        referencing = [
            t.id for t in self.repo.active_templates() if t.instructor_id == instructor_id
        ]
        self.store.delete(INSTRUCTORS, instructor_id)
        if referencing:
            logger.warning(
                "instructor_deleted_with_classes",
                instructor_id=instructor_id,
                active_templates=len(referencing),
                template_ids=referencing,
                actor=principal.user_id,
            )
        else:
            logger.info("instructor_deleted", instructor_id=instructor_id, actor=principal.user_id)
        return len(referencing)

    # Students
    def add_student(self, principal: Principal, name: str, **fields: Any) -> User:
        require_admin(principal)
        _check_fields(fields, STUDENT_FIELDS)
        _validated(User, {"id": "pending", "name": name, **fields})
        student = self._insert(
            USERS,
            self.config.student_id_prefix,
            lambda new_id: User(
                id=new_id, name=name, role=Role.STUDENT, credits=0, **fields
            ),
        )
        logger.info("student_added", student_id=student.id, actor=principal.user_id)
        return student

    def update_student(
        self, principal: Principal, student_id: str, changes: dict[str, Any]
    ) -> User:
        """Edit profile and membership fields.

        Raises:
            InvalidInputError: ``credits`` or another non-profile field was given.
        """
        require_admin(principal)
        if "credits" in changes:
            raise InvalidInputError(
                "Balances change only through bookings and credit adjustments",
                field="credits",
            )
        _check_fields(changes, STUDENT_FIELDS)
        current = self.repo.get_user(student_id)
        updated = _validated(User, {**current.model_dump(), **changes})
        fields = dump(updated)
        self.store.update(USERS, student_id, {name: fields[name] for name in changes})
        logger.info(
            "student_updated", student_id=student_id, fields=sorted(changes), actor=principal.user_id
        )
        return updated

    def set_unlimited_membership(
        self, principal: Principal, student_id: str, expiry: date | str
    ) -> User:
        """Switch a student to an unlimited membership valid through ``expiry``."""
        return self.update_student(
            principal,
            student_id,
            {
                "membership_type": MembershipType.UNLIMITED,
                "unlimited_expiry": date_key(to_date(expiry)),
            },
        )

    def delete_student(self, principal: Principal, student_id: str) -> None:
        """Remove a student record.

        Roster entries for the student stay behind as ghost bookings until an
        admin repairs the affected rosters.
        """
        require_admin(principal)
        self.repo.get_user(student_id)
        self.store.delete(USERS, student_id)
        logger.info("student_deleted", student_id=student_id, actor=principal.user_id)
