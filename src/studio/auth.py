"""Role resolution and authorization checks.

The identity provider supplies a user id; the policy decides the role once
per session. Admin rights come from the user document's role or from an
explicit admin list (``settings/global.admin_ids`` or config ``ADMIN_IDS``),
never from a hard-coded identity.
"""

from src.studio.config import StudioConfig
from src.studio.errors import PermissionDeniedError
from src.studio.logging import get_logger
from src.studio.models import Principal, Role
from src.studio.store.base import GLOBAL_SETTINGS_ID, SETTINGS, USERS, DocumentStore

logger = get_logger(__name__)


class AuthorizationPolicy:
    """Resolves principals and enforces who may act on whose behalf."""

    def __init__(self, admin_ids: frozenset[str] = frozenset()) -> None:
        self.admin_ids = admin_ids

    @classmethod
    def from_store(cls, store: DocumentStore, config: StudioConfig) -> "AuthorizationPolicy":
        """Combine config admin ids with the ones kept in ``settings/global``."""
        settings = store.get(SETTINGS, GLOBAL_SETTINGS_ID) or {}
        stored = settings.get("admin_ids") or []
        return cls(admin_ids=config.admin_id_set | frozenset(stored))

    def resolve(self, store: DocumentStore, user_id: str | None) -> Principal:
        """Build the session principal for an authenticated user id.

        Unknown or missing users resolve to a guest.
        """
        if not user_id:
            return Principal(user_id="guest", role=Role.GUEST)
        if user_id in self.admin_ids:
            return Principal(user_id=user_id, role=Role.ADMIN)
        document = store.get(USERS, user_id)
        if document is None:
            logger.info("principal_unknown_user", user_id=user_id)
            return Principal(user_id=user_id, role=Role.GUEST)
        return Principal(user_id=user_id, role=Role(document.get("role", Role.STUDENT)))


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise PermissionDeniedError(
            "Admin rights required", user_id=principal.user_id, role=principal.role.value
        )


def require_self_or_admin(principal: Principal, user_id: str) -> None:
    """Students may only act for themselves; guests may not act at all."""
    if principal.is_admin:
        return
    if principal.role == Role.GUEST or principal.user_id != user_id:
        raise PermissionDeniedError(
            "Not allowed to act for this user",
            user_id=principal.user_id,
            target_user_id=user_id,
        )
