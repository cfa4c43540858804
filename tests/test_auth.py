import pytest

from src.studio.auth import AuthorizationPolicy, require_admin, require_self_or_admin
from src.studio.errors import PermissionDeniedError
from src.studio.models import Principal, Role
from src.studio.store import GLOBAL_SETTINGS_ID, SETTINGS
from tests.conftest import add_student


def test_resolve_roles(store, config):
    add_student(store, "student1")
    store.set(SETTINGS, GLOBAL_SETTINGS_ID, {"admin_ids": ["owner"]})
    config.admin_ids = "ops, "
    policy = AuthorizationPolicy.from_store(store, config)

    assert policy.resolve(store, "owner").role == Role.ADMIN
    assert policy.resolve(store, "ops").role == Role.ADMIN
    assert policy.resolve(store, "student1").role == Role.STUDENT
    assert policy.resolve(store, "stranger").role == Role.GUEST
    assert policy.resolve(store, None).role == Role.GUEST


def test_require_admin():
    require_admin(Principal(user_id="owner", role=Role.ADMIN))
    with pytest.raises(PermissionDeniedError) as excinfo:
        require_admin(Principal(user_id="student1", role=Role.STUDENT))
    assert excinfo.value.to_dict()["kind"] == "FORBIDDEN"


def test_require_self_or_admin():
    student = Principal(user_id="student1", role=Role.STUDENT)
    require_self_or_admin(student, "student1")
    require_self_or_admin(Principal(user_id="owner", role=Role.ADMIN), "student1")
    with pytest.raises(PermissionDeniedError):
        require_self_or_admin(student, "student2")
    with pytest.raises(PermissionDeniedError):
        require_self_or_admin(Principal(user_id="guest", role=Role.GUEST), "guest")
