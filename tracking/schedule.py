"""Weekly recurring slots and the time helpers shared by the whole package.

Days of the week use the ISO convention everywhere: 1 is Monday and 7 is
Sunday, matching :meth:`datetime.date.isoweekday`.  Older clients send
0 for Sunday (the JavaScript ``getDay`` numbering); :func:`normalize_day_of_week`
is the only place where that is converted.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from tracking.errors import ValidationError

DAY_NAMES = {
    1: 'Monday',
    2: 'Tuesday',
    3: 'Wednesday',
    4: 'Thursday',
    5: 'Friday',
    6: 'Saturday',
    7: 'Sunday',
}

_TIME_RE = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)(:[0-5]\d(\.\d+)?)?$')
_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def normalize_day_of_week(value) -> int:
    """Return ``value`` as an ISO weekday (1=Monday .. 7=Sunday).

    ``0`` is accepted as Sunday; 1..6 mean the same day in both numberings.
    """

    if isinstance(value, bool):
        raise ValidationError(f'Invalid day_of_week: {value!r}')
    try:
        day = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid day_of_week: {value!r}') from None
    if isinstance(value, float) and value != day:
        raise ValidationError(f'Invalid day_of_week: {value!r}')
    if day == 0:
        return 7
    if not 1 <= day <= 7:
        raise ValidationError(
            f'Invalid day_of_week: {value!r}. Use 1 (Monday) to 7 (Sunday).'
        )
    return day


def day_of_week(d: date) -> int:
    return d.isoweekday()


def normalize_time(value) -> str:
    """Return a time-of-day as ``HH:MM``, dropping seconds if present."""

    if value is None:
        raise ValidationError('Time value is required.')
    text = str(value).strip()
    match = _TIME_RE.match(text)
    if not match:
        raise ValidationError(f'Invalid time {value!r}. Use HH:MM (e.g. 09:30).')
    return f'{int(match.group(1)):02d}:{match.group(2)}'


def time_to_minutes(value) -> int:
    hours, minutes = normalize_time(value).split(':')
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f'{total // 60:02d}:{total % 60:02d}'


def parse_date(value, field: str = 'date') -> date:
    """Parse a ``YYYY-MM-DD`` string (or pass through a ``date``)."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
        raise ValidationError(f'{field} must use the format YYYY-MM-DD.')
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} is not a valid date: {value!r}') from None


def parse_month(value) -> tuple:
    """Parse ``YYYY-MM`` into ``(year, month)``."""

    if not isinstance(value, str):
        raise ValidationError('month must use the format YYYY-MM.')
    try:
        parsed = datetime.strptime(value.strip(), '%Y-%m')
    except ValueError:
        raise ValidationError('month must use the format YYYY-MM.') from None
    return parsed.year, parsed.month


@dataclass(frozen=True)
class RecurringSlot:
    """A weekly commitment declared on a student's fixed schedule."""

    day_of_week: int
    start_time: str
    end_time: str
    subject: str = ''
    course_id: Optional[int] = None

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    def overlaps(self, other: 'RecurringSlot') -> bool:
        return (
            self.day_of_week == other.day_of_week
            and self.start_minutes < other.end_minutes
            and other.start_minutes < self.end_minutes
        )

    def contains(self, minutes: int) -> bool:
        return self.start_minutes <= minutes < self.end_minutes

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], default_course_id: Optional[int] = None) -> 'RecurringSlot':
        if not isinstance(raw, dict):
            raise ValidationError('Each schedule entry must be an object.')
        if raw.get('start_time') in (None, '') or raw.get('end_time') in (None, ''):
            raise ValidationError('start_time and end_time are required for each schedule entry.')
        start = normalize_time(raw['start_time'])
        end = normalize_time(raw['end_time'])
        if time_to_minutes(end) <= time_to_minutes(start):
            raise ValidationError(f'end_time must be after start_time ({start}-{end}).')
        course_id = raw.get('course_id', default_course_id)
        if course_id in ('', None):
            course_id = default_course_id
        return cls(
            day_of_week=normalize_day_of_week(raw.get('day_of_week')),
            start_time=start,
            end_time=end,
            subject=(raw.get('subject') or '').strip(),
            course_id=int(course_id) if course_id is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'day_of_week': self.day_of_week,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'subject': self.subject,
            'course_id': self.course_id,
        }


def validate_schedule(slots: Iterable[RecurringSlot]) -> List[RecurringSlot]:
    """Reject schedules where two slots overlap on the same day.

    Returns the slots ordered by day and start time.
    """

    ordered = sorted(slots, key=lambda s: (s.day_of_week, s.start_minutes))
    for prev, cur in zip(ordered, ordered[1:]):
        if prev.overlaps(cur):
            raise ValidationError(
                f'Schedule slots overlap on {DAY_NAMES[cur.day_of_week]}: '
                f'{prev.start_time}-{prev.end_time} and {cur.start_time}-{cur.end_time}.'
            )
    return ordered


def parse_schedule(raw, default_course_id: Optional[int] = None) -> List[RecurringSlot]:
    """Turn a stored or submitted ``fixed_schedule`` into validated slots.

    ``raw`` may be the JSON text kept on the student row, an already decoded
    list, or ``None``/empty which yields an empty schedule.
    """

    if raw in (None, ''):
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError):
            raise ValidationError('fixed_schedule is not valid JSON.') from None
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(
            'fixed_schedule must be a list of objects with day_of_week, start_time and end_time.'
        )
    slots = []
    for idx, item in enumerate(raw, start=1):
        try:
            slots.append(RecurringSlot.from_dict(item, default_course_id))
        except ValidationError as exc:
            raise ValidationError(f'Schedule entry {idx}: {exc}') from None
    return validate_schedule(slots)


def dump_schedule(slots: Iterable[RecurringSlot]) -> Optional[str]:
    """Serialize slots for the ``students.fixed_schedule`` column."""

    data = [slot.to_dict() for slot in slots]
    if not data:
        return None
    return json.dumps(data)
