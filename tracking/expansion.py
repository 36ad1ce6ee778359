"""Expand a weekly schedule into the dated classes it implies."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterator, List, Optional, Sequence

from tracking.models import CalendarInstance
from tracking.schedule import RecurringSlot, day_of_week

logger = logging.getLogger(__name__)

# Ranges longer than this still expand, they are only reported.
LARGE_RANGE_DAYS = 730


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def effective_range(
    enrolled_on: date,
    range_start: Optional[date],
    range_end: date,
):
    """Clamp a requested range so it never starts before enrollment.

    Returns ``(start, end)``; ``start > end`` means nothing to expand.
    """

    start = enrolled_on if range_start is None else max(enrolled_on, range_start)
    return start, range_end


def expand_schedule(
    student_id: int,
    slots: Sequence[RecurringSlot],
    enrolled_on: date,
    range_end: date,
    range_start: Optional[date] = None,
    default_course_id: Optional[int] = None,
) -> List[CalendarInstance]:
    """Return one unsaved recurring class per matching (date, slot) pair.

    Dates before ``enrolled_on`` are never produced, even when
    ``range_start`` is earlier.  Results are ordered by date, then start
    time.
    """

    start, end = effective_range(enrolled_on, range_start, range_end)
    if start > end or not slots:
        return []
    if (end - start).days > LARGE_RANGE_DAYS:
        logger.warning(
            'Expanding %d days of schedule for student %s', (end - start).days, student_id
        )

    by_day = {}
    for slot in slots:
        by_day.setdefault(slot.day_of_week, []).append(slot)
    for day_slots in by_day.values():
        day_slots.sort(key=lambda s: s.start_minutes)

    expected = []
    for current in iter_dates(start, end):
        for slot in by_day.get(day_of_week(current), ()):
            course_id = slot.course_id if slot.course_id is not None else default_course_id
            expected.append(
                CalendarInstance(
                    student_id=student_id,
                    course_id=course_id,
                    date=current,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    is_recurring=True,
                    subject=slot.subject,
                    notes='Generated from fixed schedule',
                )
            )
    return expected
