from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from src.studio.config import StudioConfig
from src.studio.models import Principal, Role
from src.studio.notifications import NotificationDispatcher
from src.studio.store import CLASSES, INSTRUCTORS, USERS, InMemoryStore

TZ = ZoneInfo("Asia/Taipei")

# Monday
NOW = datetime(2024, 3, 4, 12, 0, tzinfo=TZ)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.sent = []

    def dispatch(self, message, recipients) -> None:
        self.sent.append((message, list(recipients)))


def add_template(store, template_id, **overrides):
    document = {
        "id": template_id,
        "title": "Vinyasa Flow",
        "location": "Studio A",
        "day_of_week": 3,
        "start_time": "10:00",
        "duration_minutes": 60,
        "instructor_id": "instructor1",
        "capacity": 10,
        "points_cost": Decimal("1"),
        "bookings": {},
        "substitutions": {},
        "created_at": "2024-01-01",
        "archived": False,
        "archived_at": None,
    }
    document.update(overrides)
    store.set(CLASSES, template_id, document)
    return document


def add_student(store, student_id, credits="0", **overrides):
    document = {
        "id": student_id,
        "name": student_id.title(),
        "role": Role.STUDENT.value,
        "membership_type": "CREDIT",
        "credits": Decimal(credits),
        "phone_number": None,
    }
    document.update(overrides)
    store.set(USERS, student_id, document)
    return document


@pytest.fixture
def config():
    return StudioConfig(
        _env_file=None,
        timezone="Asia/Taipei",
        transaction_max_attempts=20,
        transaction_retry_wait_seconds=0.001,
        default_hourly_rate=800,
        notify_webhook_url="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(config):
    store = InMemoryStore.from_config(config)
    store.set(INSTRUCTORS, "instructor1", {"name": "Amy", "default_rate": 900, "phone_number": "0911000001"})
    store.set(INSTRUCTORS, "instructor2", {"name": "Ben", "default_rate": None})
    return store


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def admin():
    return Principal(user_id="admin1", role=Role.ADMIN)


def as_student(student_id: str) -> Principal:
    return Principal(user_id=student_id, role=Role.STUDENT)
