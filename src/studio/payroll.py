"""Instructor attendance and salary over a closed date range.

Read-only. Each date is resolved through historical reconstruction, so a
slot counts once even when a fork left two template versions behind, and a
substitute is credited for the minutes they actually taught.
"""

from collections.abc import Callable, Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from src.studio.config import StudioConfig, get_config
from src.studio.dates import WEEKDAY_NAMES, date_key, iter_dates, last_month_range, to_date
from src.studio.errors import InvalidInputError
from src.studio.logging import get_logger
from src.studio.models import (
    InstructorAttendance,
    SalaryLine,
    SalaryReport,
    SessionLog,
)
from src.studio.projector import reconstruct_day
from src.studio.repository import StudioRepository
from src.studio.store.base import DocumentStore

logger = get_logger(__name__)


def compute_salary(total_minutes: int, hourly_rate: int) -> int:
    """``total_minutes / 60 * hourly_rate`` rounded half-up to a whole unit."""
    amount = Decimal(total_minutes) / Decimal(60) * Decimal(hourly_rate)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayrollAggregator:
    """Accrues taught minutes per instructor and prices them."""

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

    def default_period(self) -> tuple[date, date]:
        """The previous calendar month."""
        return last_month_range(self._clock().date())

    def attendance(
        self, start: date | str | None = None, end: date | str | None = None
    ) -> list[InstructorAttendance]:
        """Per-instructor minutes, class count and session log for [start, end].

        Defaults to the previous calendar month. Templates naming an
        instructor who no longer exists, and zero-length classes, are skipped.
        Instructors who taught nothing in the range are included with zero
        totals.
        """
        first, last = self._period(start, end)
        instructors = {i.id: i for i in self.repo.instructors()}
        totals = {
            i.id: InstructorAttendance(instructor_id=i.id, name=i.name)
            for i in instructors.values()
        }
        templates = self.repo.all_templates()
        skipped = 0

        for day in iter_dates(first, last):
            key = date_key(day)
            for template in reconstruct_day(templates, day):
                if template.duration_minutes <= 0:
                    skipped += 1
                    continue
                substitute = template.substitutions.get(key)
                effective = substitute or template.instructor_id
                entry = totals.get(effective)
                if entry is None:
                    skipped += 1
                    continue
                original_name = None
                if substitute:
                    base = instructors.get(template.instructor_id)
                    original_name = base.name if base else template.instructor_id
                entry.total_minutes += template.duration_minutes
                entry.class_count += 1
                entry.logs.append(
                    SessionLog(
                        date=key,
                        weekday=WEEKDAY_NAMES[day.isoweekday()],
                        time=template.start_time,
                        type="SUB" if substitute else "BASE",
                        template_id=template.id,
                        original_instructor_name=original_name,
                        duration_minutes=template.duration_minutes,
                    )
                )

        if skipped:
            logger.warning("payroll_sessions_skipped", skipped=skipped, start=str(first), end=str(last))
        for entry in totals.values():
            entry.logs.sort(key=lambda log: (log.date, log.time))
        return sorted(totals.values(), key=lambda a: a.instructor_id)

    def salary_report(
        self,
        start: date | str | None = None,
        end: date | str | None = None,
        rates: Mapping[str, int] | None = None,
    ) -> SalaryReport:
        """Price attendance at per-instructor hourly rates.

        Rate precedence: ``rates[instructor_id]``, then the instructor's
        ``default_rate``, then config ``default_hourly_rate``.
        """
        first, last = self._period(start, end)
        rates = rates or {}
        instructors = {i.id: i for i in self.repo.instructors()}
        lines: list[SalaryLine] = []
        for entry in self.attendance(first, last):
            rate = rates.get(entry.instructor_id)
            if rate is None:
                rate = instructors[entry.instructor_id].default_rate
            if rate is None:
                rate = self.config.default_hourly_rate
            lines.append(
                SalaryLine(
                    instructor_id=entry.instructor_id,
                    name=entry.name,
                    total_minutes=entry.total_minutes,
                    class_count=entry.class_count,
                    hourly_rate=rate,
                    salary=compute_salary(entry.total_minutes, rate),
                )
            )
        report = SalaryReport(
            start=date_key(first),
            end=date_key(last),
            lines=lines,
            total_payout=sum(line.salary for line in lines),
        )
        logger.info(
            "salary_report_built",
            start=report.start,
            end=report.end,
            instructors=len(lines),
            total_payout=report.total_payout,
        )
        return report

    def _period(self, start: date | str | None, end: date | str | None) -> tuple[date, date]:
        if start is None and end is None:
            return self.default_period()
        if start is None or end is None:
            raise InvalidInputError("Give both start and end, or neither", field="start")
        first, last = to_date(start), to_date(end)
        if first > last:
            raise InvalidInputError(
                f"Start {date_key(first)} is after end {date_key(last)}", field="start"
            )
        return first, last
