"""Booking ledger: transactional booking, cancellation and balance changes.

Each booking touches two contended documents, the class roster and the
student's credit balance. Preconditions are first checked against the
cached view (cheap, gives specific errors early), then every invariant that
protects a contended resource is re-checked inside one store transaction
against authoritative state:

    - a roster never holds more than ``capacity`` students
    - a credit balance never goes negative
    - roster change and balance change commit together or not at all

The ledger is the only writer of ``users/*.credits`` and of per-date rosters.
"""

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal

from src.studio.auth import require_admin, require_self_or_admin
from src.studio.config import StudioConfig, get_config
from src.studio.conflicts import find_student_conflict
from src.studio.dates import (
    booking_window_opens,
    date_key,
    next_occurrence_date,
    occurrence_start,
    to_date,
)
from src.studio.errors import (
    AlreadyStartedError,
    ClassFullError,
    InsufficientCreditsError,
    InvalidInputError,
    MembershipInvalidError,
    NotFoundError,
    TimeConflictError,
    TooEarlyError,
)
from src.studio.logging import get_logger
from src.studio.models import (
    BookingResult,
    CancellationResult,
    ClassTemplate,
    MembershipType,
    Occurrence,
    Principal,
    User,
)
from src.studio.projector import project, resolvable_roster
from src.studio.repository import StudioRepository, tx_template, tx_user
from src.studio.store.base import CLASSES, USERS, DocumentStore, Transaction
from src.studio.utils import add_credits, subtract_credits, to_credits

logger = get_logger(__name__)


class BookingLedger:
    """Books and cancels students into class occurrences."""

    def __init__(
        self,
        store: DocumentStore,
        config: StudioConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config or get_config()
        self.repo = StudioRepository(store)
        self._clock = clock or (lambda: datetime.now(self.config.tz))

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def occurrence(self, template_id: str, on: date | str) -> Occurrence:
        """Project one occurrence with ghost roster entries counted."""
        template = self.repo.get_template(template_id)
        known = {user.id for user in self.repo.users()}
        return project(template, on, known)

    # ------------------------------------------------------------------
    # Book
    # ------------------------------------------------------------------
    def book(
        self,
        principal: Principal,
        template_id: str,
        student_id: str | None = None,
        on: date | str | None = None,
        *,
        confirm_override: bool = False,
    ) -> BookingResult:
        """Enrol a student into the occurrence of a class on a date.

        Booking the same student twice is a no-op that charges nothing.

        Args:
            principal: Acting user. Students may only book for themselves.
            template_id: Class to book.
            student_id: Student to enrol; defaults to the principal.
            on: Occurrence date; defaults to the class's next occurrence.
            confirm_override: Admin confirmation to book despite an invalid
                unlimited membership or a low cached credit balance.

        Returns:
            BookingResult with the amount charged and the new balance.

        Raises:
            NotFoundError: Class (or live class) or student does not exist.
            InvalidInputError: Date falls on another weekday than the class.
            TooEarlyError: Student booking before the window opens.
            AlreadyStartedError: Student booking a class that has started.
            MembershipInvalidError: Unlimited membership absent or expired.
            InsufficientCreditsError: Balance cannot cover the cost.
            TimeConflictError: Student holds an overlapping booking that day.
            ClassFullError: Capacity reached at commit time.
            TransactionAbortedError: Store could not commit; retry the call.
        """
        student_id = student_id or principal.user_id
        require_self_or_admin(principal, student_id)
        now = self.now()

        template = self.repo.get_template(template_id)
        if template.archived:
            raise NotFoundError(
                f"Class {template_id} is archived and cannot be booked",
                template_id=template_id,
            )
        student = self.repo.get_user(student_id)

        day = (
            to_date(on)
            if on is not None
            else next_occurrence_date(template.day_of_week, template.start_time, now)
        )
        if day.isoweekday() != template.day_of_week:
            raise InvalidInputError(
                f"{date_key(day)} is not a class day for {template.title}",
                field="date",
                template_id=template_id,
            )
        key = date_key(day)

        if not principal.is_admin:
            self._check_student_timing(template, day, now)

        # Already enrolled: let the transaction confirm the no-op
        if student_id not in template.roster(key):
            if student.is_student:
                self._check_membership(principal, student, template, key, confirm_override)
            conflict = find_student_conflict(
                self.repo.active_templates(), student_id, template, day
            )
            if conflict.conflict:
                raise TimeConflictError(
                    f"Already booked into {conflict.clashing_title} at {conflict.clashing_time}",
                    clashing_title=conflict.clashing_title,
                    clashing_time=conflict.clashing_time,
                    clashing_template_id=conflict.clashing_template_id,
                )

        result = self.store.run_transaction(
            lambda tx: self._book_in_transaction(tx, template_id, student_id, key)
        )
        logger.info(
            "booking_committed" if result.changed else "booking_already_present",
            template_id=template_id,
            student_id=student_id,
            date=key,
            charged=str(result.charged),
            actor=principal.user_id,
        )
        return result

    def _check_student_timing(self, template: ClassTemplate, day: date, now: datetime) -> None:
        opens_at = booking_window_opens(
            day,
            self.config.tz,
            self.config.booking_open_days_before,
            self.config.booking_open_hour,
        )
        if now < opens_at:
            raise TooEarlyError(
                f"Booking for {date_key(day)} opens at {opens_at.isoformat()}",
                opens_at=opens_at.isoformat(),
            )
        if now >= occurrence_start(day, template.start_time, self.config.tz):
            raise AlreadyStartedError(
                f"{template.title} on {date_key(day)} has already started",
                template_id=template.id,
                date=date_key(day),
            )

    def _check_membership(
        self,
        principal: Principal,
        student: User,
        template: ClassTemplate,
        key: str,
        confirm_override: bool,
    ) -> None:
        overridable = principal.is_admin
        if student.membership_type == MembershipType.UNLIMITED:
            expiry = student.unlimited_expiry
            if expiry is not None and expiry >= key:
                return
            if overridable and confirm_override:
                logger.warning(
                    "membership_override",
                    student_id=student.id,
                    expiry=expiry,
                    date=key,
                    actor=principal.user_id,
                )
                return
            reason = "no expiry set" if expiry is None else f"expired on {expiry}"
            raise MembershipInvalidError(
                f"Unlimited membership invalid for {key}: {reason}",
                student_id=student.id,
                expiry=expiry,
                date=key,
                overridable=overridable,
            )

        if student.credits >= template.points_cost:
            return
        if overridable and confirm_override:
            # The authoritative balance check inside the transaction still applies
            logger.warning(
                "credit_check_override",
                student_id=student.id,
                balance=str(student.credits),
                cost=str(template.points_cost),
                actor=principal.user_id,
            )
            return
        raise InsufficientCreditsError(
            f"Balance {student.credits} does not cover cost {template.points_cost}",
            student_id=student.id,
            balance=str(student.credits),
            required=str(template.points_cost),
            overridable=overridable,
            top_up_suggested=not overridable,
        )

    def _book_in_transaction(
        self, tx: Transaction, template_id: str, student_id: str, key: str
    ) -> BookingResult:
        template = tx_template(tx, template_id)
        student = tx_user(tx, student_id)
        if template.archived:
            raise NotFoundError(f"Class {template_id} was archived", template_id=template_id)
        if student is None:
            raise NotFoundError(f"User {student_id} not found", user_id=student_id)

        current_balance = student.credits if student.pays_with_credits else None
        roster = template.roster(key)
        if student_id in roster:
            return BookingResult(
                template_id=template_id,
                student_id=student_id,
                date=key,
                balance=current_balance,
                changed=False,
            )
        if len(roster) >= template.capacity:
            raise ClassFullError(
                f"{template.title} on {key} is full",
                template_id=template_id,
                date=key,
                capacity=template.capacity,
            )

        charged = Decimal("0")
        new_balance = current_balance
        if student.pays_with_credits:
            charged = to_credits(template.points_cost)
            new_balance = subtract_credits(student.credits, charged)
            if new_balance < 0:
                raise InsufficientCreditsError(
                    f"Balance {student.credits} does not cover cost {template.points_cost}",
                    student_id=student_id,
                    balance=str(student.credits),
                    required=str(template.points_cost),
                    overridable=False,
                    top_up_suggested=True,
                )
            tx.update(USERS, student_id, {"credits": new_balance})
        tx.update(CLASSES, template_id, {f"bookings.{key}": [*roster, student_id]})

        return BookingResult(
            template_id=template_id,
            student_id=student_id,
            date=key,
            charged=charged,
            balance=new_balance,
        )

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------
    def cancel(
        self,
        principal: Principal,
        template_id: str,
        on: date | str,
        student_id: str | None = None,
    ) -> CancellationResult:
        """Remove a student from an occurrence and refund credit-based students.

        Cancelling a booking that does not exist is a no-op.

        Raises:
            NotFoundError: Class does not exist.
            AlreadyStartedError: Student cancelling after the class started.
            TransactionAbortedError: Store could not commit; retry the call.
        """
        student_id = student_id or principal.user_id
        require_self_or_admin(principal, student_id)
        template = self.repo.get_template(template_id)
        day = to_date(on)
        key = date_key(day)

        if not principal.is_admin:
            now = self.now()
            if now >= occurrence_start(day, template.start_time, self.config.tz):
                raise AlreadyStartedError(
                    f"{template.title} on {key} has already started",
                    template_id=template_id,
                    date=key,
                )

        result = self.store.run_transaction(
            lambda tx: self._cancel_in_transaction(tx, template_id, student_id, key)
        )
        logger.info(
            "cancellation_committed" if result.changed else "cancellation_not_booked",
            template_id=template_id,
            student_id=student_id,
            date=key,
            refunded=str(result.refunded),
            actor=principal.user_id,
        )
        return result

    def _cancel_in_transaction(
        self, tx: Transaction, template_id: str, student_id: str, key: str
    ) -> CancellationResult:
        template = tx_template(tx, template_id)
        student = tx_user(tx, student_id)
        roster = template.roster(key)
        current_balance = student.credits if student and student.pays_with_credits else None

        if student_id not in roster:
            return CancellationResult(
                template_id=template_id,
                student_id=student_id,
                date=key,
                balance=current_balance,
                changed=False,
            )

        refunded = Decimal("0")
        new_balance = current_balance
        if student is not None and student.pays_with_credits:
            refunded = to_credits(template.points_cost)
            new_balance = add_credits(student.credits, refunded)
            tx.update(USERS, student_id, {"credits": new_balance})
        tx.update(
            CLASSES,
            template_id,
            {f"bookings.{key}": [sid for sid in roster if sid != student_id]},
        )
        return CancellationResult(
            template_id=template_id,
            student_id=student_id,
            date=key,
            refunded=refunded,
            balance=new_balance,
        )

    # ------------------------------------------------------------------
    # Admin balance and roster maintenance
    # ------------------------------------------------------------------
    def adjust_credits(
        self, principal: Principal, student_id: str, delta: Decimal | int | float | str
    ) -> Decimal:
        """Top up (positive delta) or correct (negative delta) a balance.

        Returns:
            The new balance.

        Raises:
            InsufficientCreditsError: The correction would go below zero.
        """
        require_admin(principal)
        amount = to_credits(delta)

        def _adjust(tx: Transaction) -> Decimal:
            student = tx_user(tx, student_id)
            if student is None:
                raise NotFoundError(f"User {student_id} not found", user_id=student_id)
            new_balance = add_credits(student.credits, amount)
            if new_balance < 0:
                raise InsufficientCreditsError(
                    f"Adjustment {amount} would leave a negative balance",
                    student_id=student_id,
                    balance=str(student.credits),
                    required=str(-amount),
                    overridable=False,
                )
            tx.update(USERS, student_id, {"credits": new_balance})
            return new_balance

        balance = self.store.run_transaction(_adjust)
        logger.info(
            "credits_adjusted",
            student_id=student_id,
            delta=str(amount),
            balance=str(balance),
            actor=principal.user_id,
        )
        return balance

    def repair_ghosts(self, principal: Principal, template_id: str, on: date | str) -> int:
        """Rewrite one roster to the entries that still resolve to a user.

        Destructive; the caller is expected to have confirmed it with the admin.

        Returns:
            Number of ghost entries removed.
        """
        require_admin(principal)
        key = date_key(to_date(on))

        def _repair(tx: Transaction) -> int:
            template = tx_template(tx, template_id)
            roster = template.roster(key)
            known = {sid for sid in roster if tx.get(USERS, sid) is not None}
            kept = resolvable_roster(roster, known)
            removed = len(roster) - len(kept)
            if removed:
                tx.update(CLASSES, template_id, {f"bookings.{key}": kept})
            return removed

        removed = self.store.run_transaction(_repair)
        logger.info(
            "ghost_roster_repaired",
            template_id=template_id,
            date=key,
            removed=removed,
            actor=principal.user_id,
        )
        return removed
