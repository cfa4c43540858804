"""Class lifecycle: create, edit, substitute, fork and delete recurring classes.

Every change that assigns an instructor is checked against the live weekly
schedule first; a clash aborts the change and reports the clashing class.

Changing a class's base instructor forks it instead of editing in place:
the old template is archived as of yesterday, so past dates keep resolving
to the original instructor for payroll and history, and a fresh template
with an empty roster and no substitutions takes over from today.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from src.studio.auth import require_admin
from src.studio.config import StudioConfig, get_config
from src.studio.conflicts import check_instructor_conflict
from src.studio.dates import date_key, to_date
from src.studio.errors import (
    InstructorConflictError,
    InvalidInputError,
    NotFoundError,
    NotificationDeliveryError,
    NotificationRejectedError,
)
from src.studio.logging import get_logger
from src.studio.models import (
    ClassTemplate,
    ClassTemplateDraft,
    ConflictResult,
    Notice,
    Principal,
    RefundSummary,
    SubstitutionChange,
    User,
)
from src.studio.notifications import (
    NotificationDispatcher,
    build_dispatcher,
    cancellation_notice,
    roster_notice,
    substitution_notice,
)
from src.studio.projector import project
from src.studio.repository import StudioRepository, dump, tx_template, tx_user
from src.studio.store.base import CLASSES, DELETE_FIELD, USERS, DocumentStore, Transaction
from src.studio.utils import add_credits, next_sequential_id

logger = get_logger(__name__)

# Fields an admin may edit in place. Rosters belong to the ledger.
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "location",
        "difficulty",
        "day_of_week",
        "start_time",
        "duration_minutes",
        "capacity",
        "points_cost",
        "instructor_id",
    }
)


def _validation_error(e: ValidationError) -> InvalidInputError:
    problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
    return InvalidInputError("Invalid class data: " + "; ".join(problems), problems=problems)


def _raise_on_conflict(result: ConflictResult, instructor_id: str, on: str | None = None) -> None:
    if result.conflict:
        when = f" on {on}" if on else ""
        raise InstructorConflictError(
            f"Instructor {instructor_id} already teaches {result.clashing_title} "
            f"at {result.clashing_time}{when}",
            instructor_id=instructor_id,
            clashing_title=result.clashing_title,
            clashing_time=result.clashing_time,
            clashing_template_id=result.clashing_template_id,
            date=on,
        )


class ClassLifecycleManager:
    """Admin operations on recurring class templates."""

    def __init__(
        self,
        store: DocumentStore,
        config: StudioConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self.store = store
        self.config = config or get_config()
        self.repo = StudioRepository(store)
        self.dispatcher = dispatcher or build_dispatcher(self.config)
        self._clock = clock or (lambda: datetime.now(self.config.tz))

    def today(self) -> date:
        return self._clock().date()

    def _mint_id(self, tx: Transaction) -> str:
        """Next free sequential class id, read through the transaction.

        Reading the candidate makes a concurrent create of the same id
        invalidate this transaction.
        """
        taken = set(self.repo.template_ids())
        while True:
            candidate = next_sequential_id(self.config.class_id_prefix, taken)
            if tx.get(CLASSES, candidate) is None:
                return candidate
            taken.add(candidate)

    def _check_base_schedule(
        self, template: ClassTemplateDraft, exclude_template_id: str | None = None
    ) -> None:
        self.repo.get_instructor(template.instructor_id)
        result = check_instructor_conflict(
            self.repo.active_templates(),
            template.instructor_id,
            template.day_of_week,
            template.start_time,
            template.duration_minutes,
            exclude_template_id=exclude_template_id,
        )
        _raise_on_conflict(result, template.instructor_id)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create(self, principal: Principal, data: ClassTemplateDraft | dict[str, Any]) -> ClassTemplate:
        """Create a recurring class effective from today.

        Raises:
            InvalidInputError: Malformed class data.
            NotFoundError: Instructor does not exist.
            InstructorConflictError: Instructor already teaches in that slot.
        """
        require_admin(principal)
        if isinstance(data, dict):
            data = {
                "points_cost": self.config.default_points_cost,
                "capacity": self.config.default_capacity,
                **data,
            }
            try:
                draft = ClassTemplateDraft.model_validate(data)
            except ValidationError as e:
                raise _validation_error(e) from e
        else:
            draft = data
        self._check_base_schedule(draft)
        today_key = date_key(self.today())

        def _create(tx: Transaction) -> ClassTemplate:
            template = ClassTemplate(
                **draft.model_dump(),
                id=self._mint_id(tx),
                created_at=today_key,
            )
            tx.set(CLASSES, template.id, dump(template))
            return template

        template = self.store.run_transaction(_create)
        logger.info(
            "template_created",
            template_id=template.id,
            title=template.title,
            instructor_id=template.instructor_id,
            day_of_week=template.day_of_week,
            start_time=template.start_time,
            actor=principal.user_id,
        )
        return template

    # ------------------------------------------------------------------
    # Update / fork
    # ------------------------------------------------------------------
    def update(
        self,
        principal: Principal,
        template_id: str,
        changes: dict[str, Any],
        *,
        refund_dropped_bookings: bool = False,
    ) -> ClassTemplate:
        """Edit a live class.

        A change of ``instructor_id`` forks the class (see module docstring)
        and returns the new template; other edits are applied in place.

        Args:
            principal: Acting admin.
            template_id: Live class to edit.
            changes: Field -> new value, restricted to EDITABLE_FIELDS.
            refund_dropped_bookings: On a fork, refund credit students whose
                future bookings on the old template are dropped.

        Raises:
            InvalidInputError: Unknown field or invalid value.
            NotFoundError: Class or instructor does not exist.
            InstructorConflictError: Edited slot clashes for the instructor.
        """
        require_admin(principal)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInputError(
                f"Fields not editable: {', '.join(sorted(unknown))}", fields=sorted(unknown)
            )
        template = self.repo.get_template(template_id)
        if template.archived:
            raise NotFoundError(f"Class {template_id} is archived", template_id=template_id)

        try:
            updated = ClassTemplate.model_validate({**template.model_dump(), **changes})
        except ValidationError as e:
            raise _validation_error(e) from e

        self._check_base_schedule(updated, exclude_template_id=template_id)

        if updated.instructor_id != template.instructor_id:
            return self._fork(principal, template_id, changes, refund_dropped_bookings)

        # Write only the edited fields so concurrent roster writes survive
        fields = dump(updated)
        self.store.update(CLASSES, template_id, {name: fields[name] for name in changes})
        logger.info(
            "template_updated",
            template_id=template_id,
            fields=sorted(changes),
            actor=principal.user_id,
        )
        return updated

    def change_instructor(
        self,
        principal: Principal,
        template_id: str,
        instructor_id: str,
        *,
        refund_dropped_bookings: bool = False,
    ) -> ClassTemplate:
        """Permanently reassign a class to another instructor (forks it)."""
        return self.update(
            principal,
            template_id,
            {"instructor_id": instructor_id},
            refund_dropped_bookings=refund_dropped_bookings,
        )

    def _fork(
        self,
        principal: Principal,
        template_id: str,
        changes: dict[str, Any],
        refund_dropped_bookings: bool,
    ) -> ClassTemplate:
        today = self.today()
        today_key = date_key(today)
        yesterday_key = date_key(today - timedelta(days=1))

        def _fork_in_transaction(tx: Transaction) -> tuple[ClassTemplate, int, RefundSummary]:
            old = tx_template(tx, template_id)
            if old.archived:
                raise NotFoundError(f"Class {template_id} was archived", template_id=template_id)
            new_id = self._mint_id(tx)
            dropped = old.future_bookings(today_key)
            refunds = RefundSummary(template_id=template_id)
            if refund_dropped_bookings and dropped:
                refunds = self._stage_refunds(tx, old, dropped)

            forked = ClassTemplate.model_validate(
                {
                    **old.model_dump(),
                    **changes,
                    "id": new_id,
                    "bookings": {},
                    "substitutions": {},
                    "created_at": today_key,
                    "archived": False,
                    "archived_at": None,
                }
            )
            tx.update(CLASSES, template_id, {"archived": True, "archived_at": yesterday_key})
            tx.set(CLASSES, new_id, dump(forked))
            return forked, sum(len(r) for r in dropped.values()), refunds

        forked, dropped_count, refunds = self.store.run_transaction(_fork_in_transaction)
        logger.info(
            "template_forked",
            old_template_id=template_id,
            new_template_id=forked.id,
            instructor_id=forked.instructor_id,
            actor=principal.user_id,
        )
        if dropped_count:
            logger.warning(
                "fork_dropped_future_bookings",
                old_template_id=template_id,
                dropped=dropped_count,
                refunded_students=len(refunds.refunds),
            )
        return forked

    # ------------------------------------------------------------------
    # Substitutions and notices
    # ------------------------------------------------------------------
    def set_substitution(
        self,
        principal: Principal,
        template_id: str,
        on: date | str,
        instructor_id: str | None,
        *,
        notify: bool = True,
    ) -> SubstitutionChange:
        """Assign (or clear, with None or the base instructor) a one-date substitute.

        When a new substitute affects enrolled students, a substitution notice
        is rendered for the roster and, with ``notify``, dispatched. A failed
        dispatch does not undo the substitution; it is reported through
        ``SubstitutionChange.dispatched``.

        Raises:
            InstructorConflictError: Substitute already teaches an
                overlapping class on that date.
        """
        require_admin(principal)
        template = self.repo.get_template(template_id)
        if template.archived:
            raise NotFoundError(f"Class {template_id} is archived", template_id=template_id)
        day = to_date(on)
        if day.isoweekday() != template.day_of_week:
            raise InvalidInputError(
                f"{date_key(day)} is not a class day for {template.title}", field="date"
            )
        key = date_key(day)
        previous = template.substitutions.get(key)

        if instructor_id is None or instructor_id == template.instructor_id:
            self.store.update(CLASSES, template_id, {f"substitutions.{key}": DELETE_FIELD})
            logger.info(
                "substitution_cleared", template_id=template_id, date=key, actor=principal.user_id
            )
            return SubstitutionChange(occurrence=project(self.repo.get_template(template_id), key))

        substitute = self.repo.get_instructor(instructor_id)
        result = check_instructor_conflict(
            self.repo.active_templates(),
            instructor_id,
            template.day_of_week,
            template.start_time,
            template.duration_minutes,
            exclude_template_id=template_id,
            specific_date=day,
        )
        _raise_on_conflict(result, instructor_id, key)

        self.store.update(CLASSES, template_id, {f"substitutions.{key}": instructor_id})
        logger.info(
            "substitution_set",
            template_id=template_id,
            date=key,
            instructor_id=instructor_id,
            actor=principal.user_id,
        )
        occurrence = project(self.repo.get_template(template_id), key)
        change = SubstitutionChange(occurrence=occurrence)
        if instructor_id == previous or not occurrence.roster:
            return change

        original = self._instructor_name(template.instructor_id)
        message = substitution_notice(
            template.title, day, template.start_time, original, substitute.name
        )
        change.notice = roster_notice(message, self._roster_users(occurrence.roster))
        if notify:
            change.dispatched = self._try_dispatch(change.notice, template_id, key)
        return change

    def cancel_session_notice(
        self, principal: Principal, template_id: str, on: date | str, *, notify: bool = True
    ) -> Notice:
        """Tell one occurrence's roster the class is cancelled this week.

        Rosters and balances are left alone; refunds go through the ledger.
        """
        require_admin(principal)
        template = self.repo.get_template(template_id)
        key = date_key(to_date(on))
        message = cancellation_notice(template.title, key, template.start_time)
        notice = roster_notice(message, self._roster_users(template.roster(key)))
        if notify:
            self._try_dispatch(notice, template_id, key)
        return notice

    def _try_dispatch(self, notice: Notice, template_id: str, key: str) -> bool:
        if not notice.recipients:
            logger.info(
                "notice_without_recipients",
                template_id=template_id,
                date=key,
                missing_phone=notice.missing_phone_count,
            )
            return False
        try:
            self.dispatcher.dispatch(notice.message, notice.recipients)
        except (NotificationDeliveryError, NotificationRejectedError) as e:
            logger.warning(
                "notice_delivery_failed", template_id=template_id, date=key, error=str(e)
            )
            return False
        logger.info(
            "notice_dispatched",
            template_id=template_id,
            date=key,
            recipients=len(notice.recipients),
            missing_phone=notice.missing_phone_count,
        )
        return True

    def _instructor_name(self, instructor_id: str) -> str:
        try:
            return self.repo.get_instructor(instructor_id).name
        except NotFoundError:
            return instructor_id

    def _roster_users(self, roster: list[str]) -> list[User]:
        by_id = {user.id: user for user in self.repo.users()}
        return [by_id[sid] for sid in roster if sid in by_id]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def _stage_refunds(
        self, tx: Transaction, template: ClassTemplate, future: dict[str, list[str]]
    ) -> RefundSummary:
        """Read enrolled students and buffer their refund writes.

        Refunds accumulate ``points_cost`` per future date a student holds.
        Only credit-based students are refunded; others are reported as skipped.
        """
        owed: dict[str, Decimal] = {}
        for roster in future.values():
            for student_id in roster:
                owed[student_id] = add_credits(owed.get(student_id, Decimal("0")), template.points_cost)

        students = {student_id: tx_user(tx, student_id) for student_id in owed}
        summary = RefundSummary(template_id=template.id)
        for student_id, amount in owed.items():
            student = students[student_id]
            if student is None or not student.pays_with_credits:
                summary.skipped_students.append(student_id)
                continue
            tx.update(USERS, student_id, {"credits": add_credits(student.credits, amount)})
            summary.refunds[student_id] = amount
        return summary

    def delete(self, principal: Principal, template_id: str) -> RefundSummary:
        """Retire a class, refunding every future booking first.

        Classes are archived rather than hard-deleted. With future bookings,
        the refunds and the archive write commit in one transaction, so a
        failed commit leaves the class live and nobody refunded.

        Raises:
            NotFoundError: Class missing or already archived.
            TransactionAbortedError: Nothing was archived or refunded; retry.
        """
        require_admin(principal)
        template = self.repo.get_template(template_id)
        if template.archived:
            raise NotFoundError(f"Class {template_id} is already archived", template_id=template_id)
        today_key = date_key(self.today())

        def _refund_and_archive(tx: Transaction) -> RefundSummary:
            fresh = tx_template(tx, template_id)
            if fresh.archived:
                raise NotFoundError(f"Class {template_id} was archived", template_id=template_id)
            future = fresh.future_bookings(today_key)
            summary = (
                self._stage_refunds(tx, fresh, future)
                if future
                else RefundSummary(template_id=template_id)
            )
            tx.update(CLASSES, template_id, {"archived": True, "archived_at": today_key})
            return summary

        summary = self.store.run_transaction(_refund_and_archive)
        logger.info(
            "template_archived",
            template_id=template_id,
            refunded_students=len(summary.refunds),
            refunded_total=str(sum(summary.refunds.values(), Decimal("0"))),
            skipped_students=len(summary.skipped_students),
            actor=principal.user_id,
        )
        return summary
