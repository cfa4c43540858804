"""Archive retention: pruning old templates and compacting per-date maps.

Pruning is storage hygiene only. It never touches credit balances, and every
pass is safe to re-run: a second prune over the same threshold finds nothing
left to delete or compact.
"""

from collections.abc import Callable
from datetime import date, datetime

from src.studio.auth import require_admin
from src.studio.config import StudioConfig, get_config
from src.studio.dates import date_key, subtract_months
from src.studio.errors import InvalidInputError
from src.studio.logging import get_logger
from src.studio.models import ClassTemplate, MembershipType, Principal, PruneResult
from src.studio.repository import StudioRepository
from src.studio.store.base import CLASSES, DELETE_FIELD, USERS, DocumentStore
from src.studio.utils import chunked

logger = get_logger(__name__)


def _reference_date(template: ClassTemplate) -> str:
    return template.archived_at or template.created_at


class ArchiveManager:
    """Retention jobs over archived classes and inactive students."""

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

    def today(self) -> date:
        return self._clock().date()

    def fetch_archived(self) -> list[ClassTemplate]:
        """Archived templates, most recently archived first."""
        templates = self.repo.archived_templates()
        templates.sort(key=lambda t: (_reference_date(t), t.id), reverse=True)
        return templates

    def prune(
        self, principal: Principal, months_to_keep: int, *, dry_run: bool = False
    ) -> PruneResult:
        """Delete old archived templates and strip old per-date entries.

        Archived templates whose ``archived_at`` (or ``created_at`` when
        never set) falls before ``today - months_to_keep`` are hard-deleted.
        Live templates keep their documents but lose roster and substitution
        entries dated before the threshold.

        Args:
            principal: Acting admin.
            months_to_keep: Retention window in calendar months.
            dry_run: Count what would change without writing.

        Returns:
            PruneResult with the threshold date-key and counts.
        """
        require_admin(principal)
        if months_to_keep < 0:
            raise InvalidInputError("months_to_keep must not be negative", field="months_to_keep")
        threshold = date_key(subtract_months(self.today(), months_to_keep))
        result = PruneResult(threshold=threshold)
        size = self.store.max_batch_operations

        expired = [t.id for t in self.repo.archived_templates() if _reference_date(t) < threshold]
        result.deleted_docs = len(expired)
        if not dry_run:
            for chunk in chunked(expired, size):
                batch = self.store.batch()
                for template_id in chunk:
                    batch.delete(CLASSES, template_id)
                batch.commit()
                logger.debug("prune_batch_committed", deleted=len(chunk))

        # Stale keys are removed one by one so entries written after the
        # snapshot (new bookings, substitutions) are never overwritten.
        compactions: list[tuple[str, dict[str, object]]] = []
        for template in self.repo.active_templates():
            stale = [f"bookings.{k}" for k in template.bookings if k < threshold]
            stale += [f"substitutions.{k}" for k in template.substitutions if k < threshold]
            if not stale:
                continue
            result.cleaned_records += len(stale)
            compactions.append((template.id, {path: DELETE_FIELD for path in stale}))
        result.compacted_templates = len(compactions)
        if not dry_run:
            for chunk in chunked(compactions, size):
                batch = self.store.batch()
                for template_id, removals in chunk:
                    batch.update(CLASSES, template_id, removals)
                batch.commit()

        logger.info(
            "archive_pruned",
            threshold=threshold,
            deleted_docs=result.deleted_docs,
            cleaned_records=result.cleaned_records,
            compacted_templates=result.compacted_templates,
            dry_run=dry_run,
            actor=principal.user_id,
        )
        return result

    def cleanup_inactive_students(self, principal: Principal, *, dry_run: bool = False) -> int:
        """Delete students with nothing left to use.

        A student is inactive when they hold no bookings from today on, have
        a zero credit balance and no unlimited membership valid today.

        Returns:
            Number of students deleted (or that would be, with ``dry_run``).
        """
        require_admin(principal)
        today_key = date_key(self.today())
        booked: set[str] = set()
        for template in self.repo.active_templates():
            for roster in template.future_bookings(today_key).values():
                booked.update(roster)

        inactive = [
            student.id
            for student in self.repo.students()
            if student.id not in booked
            and student.credits == 0
            and not (
                student.membership_type == MembershipType.UNLIMITED
                and student.unlimited_expiry is not None
                and student.unlimited_expiry >= today_key
            )
        ]
        if not dry_run:
            for chunk in chunked(inactive, self.store.max_batch_operations):
                batch = self.store.batch()
                for student_id in chunk:
                    batch.delete(USERS, student_id)
                batch.commit()
        logger.info(
            "inactive_students_cleaned",
            count=len(inactive),
            dry_run=dry_run,
            actor=principal.user_id,
        )
        return len(inactive)
