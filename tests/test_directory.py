from decimal import Decimal

import pytest

from src.studio.directory import StudioDirectory
from src.studio.errors import InvalidInputError, NotFoundError
from src.studio.models import MembershipType
from src.studio.store import INSTRUCTORS, USERS
from tests.conftest import add_template


@pytest.fixture
def directory(store, config):
    return StudioDirectory(store, config)


def test_add_instructor_uses_next_id_and_default_rate(store, directory, admin):
    instructor = directory.add_instructor(admin, "Cleo", phone_number="0911222333")

    assert instructor.id == "instructor3"
    assert instructor.default_rate == 800
    assert store.get(INSTRUCTORS, "instructor3")["name"] == "Cleo"


def test_add_instructor_rejects_invalid_fields_without_writing(store, directory, admin):
    with pytest.raises(InvalidInputError):
        directory.add_instructor(admin, "Cleo", default_rate=-5)
    assert store.get(INSTRUCTORS, "instructor3") is None


def test_update_instructor(store, directory, admin):
    directory.update_instructor(admin, "instructor2", {"default_rate": 750})
    assert store.get(INSTRUCTORS, "instructor2")["default_rate"] == 750
    with pytest.raises(InvalidInputError):
        directory.update_instructor(admin, "instructor2", {"id": "instructor7"})


def test_delete_instructor_reports_live_classes(store, directory, admin):
    add_template(store, "class1")
    add_template(store, "class2", archived=True, archived_at="2024-01-01")

    assert directory.delete_instructor(admin, "instructor1") == 1
    assert store.get(INSTRUCTORS, "instructor1") is None
    with pytest.raises(NotFoundError):
        directory.delete_instructor(admin, "instructor1")


def test_add_student_starts_on_credits(store, directory, admin):
    first = directory.add_student(admin, "Dana", email="dana@example.com")
    second = directory.add_student(admin, "Eli")

    assert (first.id, second.id) == ("student1", "student2")
    assert first.membership_type == MembershipType.CREDIT
    assert first.credits == Decimal("0")


def test_update_student_never_touches_credits(store, directory, admin):
    student = directory.add_student(admin, "Dana")

    with pytest.raises(InvalidInputError):
        directory.update_student(admin, student.id, {"credits": 100})
    directory.update_student(admin, student.id, {"phone_number": "0988777666"})

    assert store.get(USERS, student.id)["phone_number"] == "0988777666"
    assert store.get(USERS, student.id)["credits"] == Decimal("0")


def test_set_unlimited_membership(store, directory, admin):
    student = directory.add_student(admin, "Dana")

    updated = directory.set_unlimited_membership(admin, student.id, "2024-06-30")

    assert updated.membership_type == MembershipType.UNLIMITED
    assert store.get(USERS, student.id)["unlimited_expiry"] == "2024-06-30"


def test_delete_student(store, directory, admin):
    student = directory.add_student(admin, "Dana")
    directory.delete_student(admin, student.id)
    assert store.get(USERS, student.id) is None
