"""Typed access to the studio collections.

Isolates document <-> model conversion from the services. Used by the
ledger, lifecycle, archive and payroll services alike.
"""

from typing import Any

from src.studio.errors import NotFoundError
from src.studio.models import ClassTemplate, Instructor, Role, User
from src.studio.store.base import CLASSES, INSTRUCTORS, USERS, DocumentStore, Transaction


def dump(model: Any) -> dict[str, Any]:
    """Document form of a model (Decimals kept exact)."""
    return model.model_dump(mode="python")


class StudioRepository:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # Templates
    def get_template(self, template_id: str) -> ClassTemplate:
        document = self.store.get(CLASSES, template_id)
        if document is None:
            raise NotFoundError(f"Class {template_id} not found", template_id=template_id)
        return ClassTemplate.model_validate(document)

    def active_templates(self) -> list[ClassTemplate]:
        return [ClassTemplate.model_validate(d) for d in self.store.query(CLASSES, archived=False)]

    def archived_templates(self) -> list[ClassTemplate]:
        return [ClassTemplate.model_validate(d) for d in self.store.query(CLASSES, archived=True)]

    def all_templates(self) -> list[ClassTemplate]:
        return [ClassTemplate.model_validate(d) for d in self.store.query(CLASSES)]

    def template_ids(self) -> list[str]:
        return [d["id"] for d in self.store.query(CLASSES)]

    # People
    def get_user(self, user_id: str) -> User:
        document = self.store.get(USERS, user_id)
        if document is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return User.model_validate(document)

    def users(self) -> list[User]:
        return [User.model_validate(d) for d in self.store.query(USERS)]

    def students(self) -> list[User]:
        return [User.model_validate(d) for d in self.store.query(USERS, role=Role.STUDENT.value)]

    def student_ids(self) -> set[str]:
        return {d["id"] for d in self.store.query(USERS, role=Role.STUDENT.value)}

    def get_instructor(self, instructor_id: str) -> Instructor:
        document = self.store.get(INSTRUCTORS, instructor_id)
        if document is None:
            raise NotFoundError(
                f"Instructor {instructor_id} not found", instructor_id=instructor_id
            )
        return Instructor.model_validate(document)

    def instructors(self) -> list[Instructor]:
        return [Instructor.model_validate(d) for d in self.store.query(INSTRUCTORS)]


def tx_template(tx: Transaction, template_id: str) -> ClassTemplate:
    """Authoritative template read inside a transaction."""
    document = tx.get(CLASSES, template_id)
    if document is None:
        raise NotFoundError(f"Class {template_id} not found", template_id=template_id)
    return ClassTemplate.model_validate(document)


def tx_user(tx: Transaction, user_id: str) -> User | None:
    document = tx.get(USERS, user_id)
    return User.model_validate(document) if document is not None else None
