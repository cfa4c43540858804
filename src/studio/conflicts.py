"""Instructor and student time-conflict detection.

Pure, side-effect free. Intervals are half-open minutes-since-midnight
ranges, so a class ending at 11:00 does not clash with one starting at 11:00.
"""

from collections.abc import Iterable
from datetime import date

from src.studio.dates import date_key, intervals_overlap, minutes_since_midnight, to_date
from src.studio.models import ClassTemplate, ConflictResult

NO_CONFLICT = ConflictResult(conflict=False)


def check_instructor_conflict(
    templates: Iterable[ClassTemplate],
    instructor_id: str,
    day_of_week: int,
    start_time: str,
    duration_minutes: int,
    exclude_template_id: str | None = None,
    specific_date: date | str | None = None,
) -> ConflictResult:
    """Detect whether an instructor would teach two overlapping classes.

    Only live templates on the same weekday are considered. With a
    ``specific_date`` (substitution assignment) each overlapping template's
    instructor for that date is used, substitutions included. Without one
    (a recurring edit) the base instructor is used, because the weekly
    schedule must not clash with itself on any date.

    Args:
        templates: Templates to check against; archived ones are skipped.
        instructor_id: Instructor being assigned.
        day_of_week: 1=Monday..7=Sunday.
        start_time: ``HH:MM`` start of the slot being assigned.
        duration_minutes: Length of the slot being assigned.
        exclude_template_id: Template being edited, ignored in the scan.
        specific_date: Date of a one-off assignment.

    Returns:
        ConflictResult naming the first clashing class, if any.
    """
    new_start = minutes_since_midnight(start_time)
    new_end = new_start + duration_minutes
    key = date_key(to_date(specific_date)) if specific_date is not None else None

    for template in templates:
        if template.archived or template.id == exclude_template_id:
            continue
        if template.day_of_week != day_of_week:
            continue
        if not intervals_overlap(new_start, new_end, template.start_minutes, template.end_minutes):
            continue
        effective = template.instructor_id
        if key is not None:
            effective = template.substitutions.get(key, template.instructor_id)
        if effective == instructor_id:
            return ConflictResult(
                conflict=True,
                clashing_title=template.title,
                clashing_time=template.start_time,
                clashing_template_id=template.id,
            )
    return NO_CONFLICT


def find_student_conflict(
    templates: Iterable[ClassTemplate],
    student_id: str,
    target: ClassTemplate,
    on: date | str,
) -> ConflictResult:
    """Detect an overlapping booking the student already holds on a date.

    Args:
        templates: Live templates to scan; ``target`` itself is skipped.
        student_id: Student attempting to book.
        target: Template being booked.
        on: Date of the occurrence being booked.
    """
    day = to_date(on)
    key = date_key(day)
    for template in templates:
        if template.archived or template.id == target.id:
            continue
        if template.day_of_week != day.isoweekday():
            continue
        if student_id not in template.bookings.get(key, []):
            continue
        if intervals_overlap(
            target.start_minutes, target.end_minutes, template.start_minutes, template.end_minutes
        ):
            return ConflictResult(
                conflict=True,
                clashing_title=template.title,
                clashing_time=template.start_time,
                clashing_template_id=template.id,
            )
    return NO_CONFLICT
