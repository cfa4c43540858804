"""Pydantic models for classes, people and derived scheduling data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Stored entities (templates, instructors, users) round-trip through the document
store as plain dicts via ``model_dump()`` / ``model_validate()``; derived
entities (occurrences, reports) are computed on demand and never stored.
"""

from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.studio.dates import is_date_key, minutes_since_midnight, parse_time


class Role(str, Enum):
    GUEST = "GUEST"
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"


class MembershipType(str, Enum):
    CREDIT = "CREDIT"
    UNLIMITED = "UNLIMITED"


class Difficulty(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


def _check_date_key(value: str | None) -> str | None:
    if value is not None and not is_date_key(value):
        raise ValueError(f"invalid date key {value!r}")
    return value


class ClassTemplateDraft(BaseModel):
    """Fields an admin supplies when creating a recurring class."""

    title: str = Field(min_length=1)
    description: str = ""
    location: str = ""
    difficulty: Difficulty = Difficulty.BEGINNER
    day_of_week: int = Field(ge=1, le=7)  # 1=Monday..7=Sunday
    start_time: str  # "HH:MM" 24h
    duration_minutes: int = Field(gt=0)
    instructor_id: str = Field(min_length=1)
    capacity: int = Field(gt=0)
    points_cost: Decimal = Field(default=Decimal("1"), ge=0, decimal_places=2)

    @field_validator("start_time")
    @classmethod
    def _valid_start_time(cls, value: str) -> str:
        parse_time(value)
        return value

    @property
    def start_minutes(self) -> int:
        return minutes_since_midnight(self.start_time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes


class ClassTemplate(ClassTemplateDraft):
    """A recurring weekly class definition.

    ``bookings`` maps a date-key to the ordered, duplicate-free list of student
    ids enrolled on that date. ``substitutions`` maps a date-key to the
    instructor standing in for the base instructor on that date only.

    A template is effective on date D when ``created_at <= D`` and it was not
    archived before D (``archived_at >= D``). Archived templates are historical
    only and never bookable.
    """

    id: str
    bookings: dict[str, list[str]] = Field(default_factory=dict)
    substitutions: dict[str, str] = Field(default_factory=dict)
    created_at: str
    archived: bool = False
    archived_at: str | None = None

    @field_validator("created_at")
    @classmethod
    def _valid_created_at(cls, value: str) -> str:
        return _check_date_key(value)

    @field_validator("archived_at")
    @classmethod
    def _valid_archived_at(cls, value: str | None) -> str | None:
        return _check_date_key(value or None)

    @field_validator("bookings")
    @classmethod
    def _dedupe_rosters(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        for key in value:
            _check_date_key(key)
        return {key: list(dict.fromkeys(roster)) for key, roster in value.items()}

    @field_validator("substitutions")
    @classmethod
    def _valid_substitution_keys(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            _check_date_key(key)
        return value

    def roster(self, key: str) -> list[str]:
        return list(self.bookings.get(key, []))

    def is_effective_on(self, key: str) -> bool:
        """Whether this version of the class ran on the given date-key."""
        if self.created_at > key:
            return False
        if self.archived and self.archived_at is not None and self.archived_at < key:
            return False
        return True

    def future_bookings(self, today_key: str) -> dict[str, list[str]]:
        return {
            key: list(roster)
            for key, roster in self.bookings.items()
            if key >= today_key and roster
        }


class Occurrence(BaseModel):
    """One concrete, date-resolved instance of a class template."""

    template_id: str
    date: str
    title: str
    location: str = ""
    start_time: str
    duration_minutes: int
    base_instructor_id: str
    effective_instructor_id: str
    is_substitute: bool
    roster: list[str]
    capacity: int
    points_cost: Decimal
    ghost_count: int = 0

    @property
    def enrolled_count(self) -> int:
        """Roster size excluding ghost entries."""
        return len(self.roster) - self.ghost_count

    @property
    def is_full(self) -> bool:
        return len(self.roster) >= self.capacity


class Instructor(BaseModel):
    id: str
    name: str = Field(min_length=1)
    bio: str = ""
    image_url: str = ""
    phone_number: str | None = None
    default_rate: int | None = Field(default=None, ge=0)  # hourly, payroll only


class User(BaseModel):
    """A studio account. Students own a credit balance written only by the ledger."""

    id: str
    name: str = ""
    role: Role = Role.STUDENT
    email: str | None = None
    phone_number: str | None = None
    membership_type: MembershipType = MembershipType.CREDIT
    credits: Decimal = Field(default=Decimal("0"), ge=0)
    unlimited_expiry: str | None = None

    @field_validator("unlimited_expiry", mode="before")
    @classmethod
    def _blank_expiry_is_none(cls, value):
        return _check_date_key(value or None)

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT

    @property
    def pays_with_credits(self) -> bool:
        return self.is_student and self.membership_type == MembershipType.CREDIT


class Principal(BaseModel):
    """The acting identity for one request, supplied by the identity provider."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class ConflictResult(BaseModel):
    conflict: bool
    clashing_title: str | None = None
    clashing_time: str | None = None
    clashing_template_id: str | None = None


class BookingResult(BaseModel):
    template_id: str
    student_id: str
    date: str
    charged: Decimal = Decimal("0")
    balance: Decimal | None = None  # None when the student is not credit-based
    changed: bool = True  # False when the call was an idempotent no-op


class CancellationResult(BaseModel):
    template_id: str
    student_id: str
    date: str
    refunded: Decimal = Decimal("0")
    balance: Decimal | None = None
    changed: bool = True


class RefundSummary(BaseModel):
    template_id: str
    refunds: dict[str, Decimal] = Field(default_factory=dict)  # student id -> credits
    skipped_students: list[str] = Field(default_factory=list)


class SessionLog(BaseModel):
    date: str
    weekday: str
    time: str
    type: Literal["BASE", "SUB"]
    template_id: str
    original_instructor_name: str | None = None
    duration_minutes: int


class InstructorAttendance(BaseModel):
    instructor_id: str
    name: str
    total_minutes: int = 0
    class_count: int = 0
    logs: list[SessionLog] = Field(default_factory=list)


class SalaryLine(BaseModel):
    instructor_id: str
    name: str
    total_minutes: int
    class_count: int
    hourly_rate: int
    salary: int


class SalaryReport(BaseModel):
    start: str
    end: str
    lines: list[SalaryLine]
    total_payout: int


class PruneResult(BaseModel):
    threshold: str
    deleted_docs: int = 0
    cleaned_records: int = 0
    compacted_templates: int = 0


class Recipient(BaseModel):
    name: str
    phone: str


class Notice(BaseModel):
    """A rendered message awaiting the admin's go-ahead to dispatch."""

    message: str
    recipients: list[Recipient] = Field(default_factory=list)
    missing_phone_count: int = 0


class SubstitutionChange(BaseModel):
    occurrence: Occurrence
    notice: Notice | None = None  # set when a newly assigned substitute affects a roster
    dispatched: bool = False
