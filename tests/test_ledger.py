from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

import pytest

from src.studio.errors import (
    AlreadyStartedError,
    ClassFullError,
    InsufficientCreditsError,
    InvalidInputError,
    MembershipInvalidError,
    NotFoundError,
    PermissionDeniedError,
    TimeConflictError,
    TooEarlyError,
)
from src.studio.ledger import BookingLedger
from src.studio.repository import StudioRepository
from src.studio.store import CLASSES
from tests.conftest import TZ, FakeClock, add_student, add_template, as_student

WED = "2024-03-06"


@pytest.fixture
def ledger(store, config, clock):
    return BookingLedger(store, config, clock)


def _credits(store, student_id):
    return StudioRepository(store).get_user(student_id).credits


def test_book_then_insufficient_then_cancel_restores(store, ledger):
    add_template(store, "class1", capacity=2, points_cost=Decimal("1"))
    add_student(store, "student1", credits="1")
    add_student(store, "student2", credits="0")

    booked = ledger.book(as_student("student1"), "class1", on=WED)
    assert booked.charged == Decimal("1.00")
    assert _credits(store, "student1") == Decimal("0")

    with pytest.raises(InsufficientCreditsError) as excinfo:
        ledger.book(as_student("student2"), "class1", on=WED)
    assert excinfo.value.context["top_up_suggested"] is True

    cancelled = ledger.cancel(as_student("student1"), "class1", WED)
    assert cancelled.refunded == Decimal("1.00")
    assert _credits(store, "student1") == Decimal("1")
    assert store.get(CLASSES, "class1")["bookings"][WED] == []


def test_book_and_cancel_are_decimal_exact_inverses(store, ledger):
    add_template(store, "class1", points_cost=Decimal("0.4"))
    add_student(store, "student1", credits="1.2")

    ledger.book(as_student("student1"), "class1", on=WED)
    assert _credits(store, "student1") == Decimal("0.80")
    ledger.cancel(as_student("student1"), "class1", WED)

    assert _credits(store, "student1") == Decimal("1.20")
    assert str(_credits(store, "student1")) == "1.20"


def test_rebooking_is_a_no_op(store, ledger):
    add_template(store, "class1", points_cost=Decimal("1.5"))
    add_student(store, "student1", credits="5")

    first = ledger.book(as_student("student1"), "class1", on=WED)
    second = ledger.book(as_student("student1"), "class1", on=WED)

    assert first.changed and not second.changed
    assert second.charged == Decimal("0")
    assert _credits(store, "student1") == Decimal("3.50")
    assert store.get(CLASSES, "class1")["bookings"][WED] == ["student1"]


def test_cancelling_absent_booking_is_a_no_op(store, ledger):
    add_template(store, "class1")
    add_student(store, "student1", credits="2")

    result = ledger.cancel(as_student("student1"), "class1", WED)

    assert not result.changed
    assert _credits(store, "student1") == Decimal("2")


def test_booking_window(store, config):
    add_template(store, "class1", day_of_week=5, start_time="10:00")
    add_student(store, "student1", credits="3")
    clock = FakeClock(datetime(2024, 3, 5, 23, 0, tzinfo=TZ))
    ledger = BookingLedger(store, config, clock)

    with pytest.raises(TooEarlyError):
        ledger.book(as_student("student1"), "class1", on="2024-03-08")

    clock.now = datetime(2024, 3, 6, 9, 0, 1, tzinfo=TZ)
    assert ledger.book(as_student("student1"), "class1", on="2024-03-08").changed


def test_admin_ignores_booking_window(store, config, admin):
    add_template(store, "class1", day_of_week=5)
    add_student(store, "student1", credits="3")
    ledger = BookingLedger(store, config, FakeClock(datetime(2024, 3, 1, 8, 0, tzinfo=TZ)))

    assert ledger.book(admin, "class1", "student1", on="2024-03-08").changed


def test_student_cannot_book_or_cancel_started_class(store, config):
    add_template(store, "class1", bookings={WED: ["student1"]})
    add_student(store, "student1", credits="3")
    ledger = BookingLedger(store, config, FakeClock(datetime(2024, 3, 6, 10, 5, tzinfo=TZ)))

    with pytest.raises(AlreadyStartedError):
        ledger.cancel(as_student("student1"), "class1", WED)
    add_student(store, "student2", credits="3")
    with pytest.raises(AlreadyStartedError):
        ledger.book(as_student("student2"), "class1", on=WED)


def test_date_defaults_to_next_occurrence(store, ledger):
    add_template(store, "class1")
    add_student(store, "student1", credits="1")

    result = ledger.book(as_student("student1"), "class1")

    assert result.date == WED


def test_wrong_weekday_is_rejected(store, ledger):
    add_template(store, "class1")
    add_student(store, "student1", credits="1")
    with pytest.raises(InvalidInputError):
        ledger.book(as_student("student1"), "class1", on="2024-03-07")


def test_archived_or_missing_class_is_not_bookable(store, ledger):
    add_template(store, "class1", archived=True, archived_at="2024-03-01")
    add_student(store, "student1", credits="1")
    with pytest.raises(NotFoundError):
        ledger.book(as_student("student1"), "class1", on=WED)
    with pytest.raises(NotFoundError):
        ledger.book(as_student("student1"), "class9", on=WED)


def test_full_class_rejects_booking(store, ledger):
    add_template(store, "class1", capacity=1, bookings={WED: ["student2"]})
    add_student(store, "student1", credits="5")
    add_student(store, "student2", credits="5")
    with pytest.raises(ClassFullError):
        ledger.book(as_student("student1"), "class1", on=WED)
    assert _credits(store, "student1") == Decimal("5")


def test_student_time_conflict_names_clashing_class(store, ledger):
    add_template(store, "class1", title="Yoga", bookings={WED: ["student1"]})
    add_template(store, "class2", start_time="10:30", instructor_id="instructor2")
    add_student(store, "student1", credits="5")

    with pytest.raises(TimeConflictError) as excinfo:
        ledger.book(as_student("student1"), "class2", on=WED)

    assert excinfo.value.context["clashing_title"] == "Yoga"
    assert excinfo.value.context["clashing_time"] == "10:00"


def test_unlimited_membership(store, ledger, admin):
    add_template(store, "class1")
    add_student(store, "student1", membership_type="UNLIMITED", unlimited_expiry="2024-03-31")
    add_student(store, "student2", membership_type="UNLIMITED", unlimited_expiry="2024-03-01")

    valid = ledger.book(as_student("student1"), "class1", on=WED)
    assert valid.charged == Decimal("0") and valid.balance is None

    with pytest.raises(MembershipInvalidError) as excinfo:
        ledger.book(as_student("student2"), "class1", on=WED)
    assert excinfo.value.context["overridable"] is False

    with pytest.raises(MembershipInvalidError) as excinfo:
        ledger.book(admin, "class1", "student2", on=WED)
    assert excinfo.value.context["overridable"] is True
    assert ledger.book(admin, "class1", "student2", on=WED, confirm_override=True).changed


def test_credit_override_never_drives_balance_negative(store, ledger, admin):
    add_template(store, "class1", points_cost=Decimal("2"))
    add_student(store, "student1", credits="1")

    with pytest.raises(InsufficientCreditsError):
        ledger.book(admin, "class1", "student1", on=WED, confirm_override=True)
    assert _credits(store, "student1") == Decimal("1")


def test_students_act_only_for_themselves(store, ledger):
    add_template(store, "class1")
    add_student(store, "student1", credits="1")
    add_student(store, "student2", credits="1")
    with pytest.raises(PermissionDeniedError):
        ledger.book(as_student("student2"), "class1", "student1", on=WED)


def test_concurrent_bookings_never_exceed_capacity(store, ledger, admin):
    capacity, extra = 3, 5
    add_template(store, "class1", capacity=capacity)
    students = [f"student{n}" for n in range(1, capacity + extra + 1)]
    for student_id in students:
        add_student(store, student_id, credits="2")

    def _attempt(student_id):
        try:
            ledger.book(admin, "class1", student_id, on=WED)
        except ClassFullError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=len(students)) as pool:
        outcomes = list(pool.map(_attempt, students))

    roster = store.get(CLASSES, "class1")["bookings"][WED]
    assert sum(outcomes) == capacity
    assert len(roster) == capacity
    charged = [s for s in students if _credits(store, s) == Decimal("1")]
    assert sorted(charged) == sorted(roster)


def test_adjust_credits(store, ledger, admin):
    add_student(store, "student1", credits="1")

    assert ledger.adjust_credits(admin, "student1", "2.5") == Decimal("3.50")
    with pytest.raises(InsufficientCreditsError):
        ledger.adjust_credits(admin, "student1", Decimal("-4"))
    with pytest.raises(PermissionDeniedError):
        ledger.adjust_credits(as_student("student1"), "student1", 10)


def test_ghosts_are_reported_then_repaired(store, ledger, admin):
    add_template(store, "class1", bookings={WED: ["student1", "deleted-student"]})
    add_student(store, "student1", credits="1")

    assert ledger.occurrence("class1", WED).ghost_count == 1
    assert ledger.repair_ghosts(admin, "class1", WED) == 1
    assert store.get(CLASSES, "class1")["bookings"][WED] == ["student1"]
    assert ledger.repair_ghosts(admin, "class1", WED) == 0
