"""Calendar projection: recurring templates onto concrete dates.

Pure functions, no I/O. Every read path (schedule board, booking, payroll)
goes through ``project`` to turn a weekly template into the occurrence for
one date, and payroll uses ``reconstruct_day`` to work out which template
version actually ran on a past date.
"""

from collections.abc import Collection, Iterable
from datetime import date, datetime

from src.studio.dates import date_key, is_too_early, next_occurrence_date, to_date
from src.studio.models import ClassTemplate, Occurrence


def project(
    template: ClassTemplate,
    on: date | datetime | str,
    known_student_ids: Collection[str] | None = None,
) -> Occurrence:
    """Resolve a template for one concrete date.

    The substitution entry for the date, when present, replaces the base
    instructor for that date only. Roster entries that no longer resolve to a
    known student are counted as ghosts but kept in the roster.

    Args:
        template: The recurring class.
        on: Target date (date, datetime or date-key).
        known_student_ids: Ids of existing students. None skips ghost detection.
    """
    key = date_key(to_date(on))
    substitute = template.substitutions.get(key)
    roster = template.roster(key)
    ghost_count = 0
    if known_student_ids is not None:
        ghost_count = sum(1 for student_id in roster if student_id not in known_student_ids)

    return Occurrence(
        template_id=template.id,
        date=key,
        title=template.title,
        location=template.location,
        start_time=template.start_time,
        duration_minutes=template.duration_minutes,
        base_instructor_id=template.instructor_id,
        effective_instructor_id=substitute or template.instructor_id,
        is_substitute=substitute is not None,
        roster=roster,
        capacity=template.capacity,
        points_cost=template.points_cost,
        ghost_count=ghost_count,
    )


def resolvable_roster(roster: Iterable[str], known_student_ids: Collection[str]) -> list[str]:
    """The roster with ghost entries removed, order preserved."""
    return [student_id for student_id in roster if student_id in known_student_ids]


def next_occurrence(template: ClassTemplate, now: datetime) -> Occurrence:
    """Project the template onto its next upcoming date."""
    return project(template, next_occurrence_date(template.day_of_week, template.start_time, now))


def booking_is_too_early(
    on: date, now: datetime, days_before: int = 2, open_hour: int = 9
) -> bool:
    """Whether students are still locked out of booking the date."""
    return is_too_early(on, now, days_before, open_hour)


def weekly_board(
    templates: Iterable[ClassTemplate],
    week_dates: Iterable[date],
    known_student_ids: Collection[str] | None = None,
) -> list[Occurrence]:
    """Occurrences of the live (non-archived) templates over the given dates."""
    live = [t for t in templates if not t.archived]
    board: list[Occurrence] = []
    for on in week_dates:
        for template in live:
            if template.day_of_week == on.isoweekday():
                board.append(project(template, on, known_student_ids))
    board.sort(key=lambda o: (o.date, o.start_time, o.template_id))
    return board


def reconstruct_day(
    templates: Iterable[ClassTemplate], on: date | str
) -> list[ClassTemplate]:
    """Which template version ran in each time slot on a (past) date.

    Candidates are all templates, live or archived, on the date's weekday
    that were effective on it. When several versions share a start time
    (an instructor change forks a template), the most recently created one
    wins; ties go to the live version, then the higher id.

    Returns:
        One template per distinct start time, ordered by start time.
    """
    target = to_date(on)
    key = date_key(target)
    weekday = target.isoweekday()
    candidates = [
        t for t in templates if t.day_of_week == weekday and t.is_effective_on(key)
    ]
    candidates.sort(key=lambda t: (t.created_at, not t.archived, t.id), reverse=True)

    by_slot: dict[str, ClassTemplate] = {}
    for template in candidates:
        by_slot.setdefault(template.start_time, template)
    return [by_slot[slot] for slot in sorted(by_slot)]
