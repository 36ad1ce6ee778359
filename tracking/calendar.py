"""Week views and the "what occupies this slot" lookup for the calendar."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Container, Dict, Iterable, List, Optional, Sequence

from tracking.models import CalendarInstance
from tracking.schedule import (
    RecurringSlot,
    minutes_to_time,
    normalize_time,
    time_to_minutes,
)

SLOT_MINUTES = 15


def week_dates(d: date) -> List[date]:
    """Monday..Sunday of the week containing ``d``."""

    monday = d - timedelta(days=d.isoweekday() - 1)
    return [monday + timedelta(days=i) for i in range(7)]


def quarter_hours(first: str = '07:00', last: str = '22:00') -> List[str]:
    start = time_to_minutes(first)
    end = time_to_minutes(last)
    return [minutes_to_time(m) for m in range(start, end, SLOT_MINUTES)]


def hidden_key(student_id, day: int, start_time, week: Sequence[date]) -> str:
    """Key identifying one recurring slot within one specific week."""

    return (
        f'{student_id}-{day}-{normalize_time(start_time)}-'
        f'{week[0].isoformat()}-{week[-1].isoformat()}'
    )


@dataclass
class GhostSlot:
    """A recurring slot projected onto the calendar without a saved class."""

    student_id: int
    student_name: str
    start_date: Optional[date]
    slot: RecurringSlot

    def active_on(self, d: date) -> bool:
        return self.start_date is not None and d >= self.start_date

    def to_dict(self, on: Optional[date] = None) -> Dict[str, Any]:
        data = self.slot.to_dict()
        data.update({
            'student_id': self.student_id,
            'student_name': self.student_name,
            'is_recurring': True,
        })
        if on is not None:
            data['date'] = on.isoformat()
        return data


@dataclass
class Occupant:
    type: str
    data: Any

    def to_dict(self, on: Optional[date] = None) -> Dict[str, Any]:
        if self.type == 'scheduled':
            payload = self.data.to_dict()
        else:
            payload = self.data.to_dict(on)
        return {'type': self.type, 'data': payload}


def visible_ghosts(
    ghosts: Iterable[GhostSlot],
    on: date,
    week: Sequence[date],
    hidden: Container[str] = (),
) -> List[GhostSlot]:
    """Ghosts for ``on``'s weekday that the tutor has not hidden that week."""

    day = on.isoweekday()
    return [
        ghost for ghost in ghosts
        if ghost.slot.day_of_week == day
        and ghost.active_on(on)
        and hidden_key(ghost.student_id, day, ghost.slot.start_time, week) not in hidden
    ]


def find_occupant(
    on: date,
    time,
    instances: Iterable[CalendarInstance],
    ghosts: Iterable[GhostSlot] = (),
    hidden: Container[str] = (),
) -> Optional[Occupant]:
    """Return whatever occupies ``time`` on ``on``, if anything.

    A saved class wins over a recurring projection.  Cancelled classes do
    not occupy their slot.
    """

    minutes = time_to_minutes(time)
    for cls in instances:
        if cls.date == on and cls.status != 'cancelled' and cls.contains(minutes):
            return Occupant('scheduled', cls)
    week = week_dates(on)
    for ghost in visible_ghosts(ghosts, on, week, hidden):
        if ghost.slot.contains(minutes):
            return Occupant('fixed', ghost)
    return None


def week_view(
    anchor: date,
    instances: Sequence[CalendarInstance],
    ghosts: Sequence[GhostSlot],
    hidden: Container[str] = (),
) -> Dict[str, Any]:
    """Group a week's classes and visible projections by day.

    A projection is left out when a saved class already sits at the same
    start time for that student, so materialized slots are not drawn
    twice.
    """

    week = week_dates(anchor)
    days = []
    for d in week:
        saved = sorted(
            (cls for cls in instances if cls.date == d),
            key=lambda cls: time_to_minutes(cls.start_time),
        )
        taken = {(cls.student_id, cls.start_time) for cls in saved}
        projected = [
            ghost for ghost in visible_ghosts(ghosts, d, week, hidden)
            if (ghost.student_id, ghost.slot.start_time) not in taken
        ]
        projected.sort(key=lambda g: g.slot.start_minutes)
        days.append({
            'date': d.isoformat(),
            'day_of_week': d.isoweekday(),
            'classes': [cls.to_dict() for cls in saved],
            'fixed': [
                dict(
                    g.to_dict(d),
                    hidden_key=hidden_key(g.student_id, g.slot.day_of_week, g.slot.start_time, week),
                )
                for g in projected
            ],
        })
    return {
        'weekStart': week[0].isoformat(),
        'weekEnd': week[-1].isoformat(),
        'days': days,
    }
