"""Records exchanged between the database layer and the reconciliation code."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from tracking.errors import ValidationError
from tracking.schedule import (
    RecurringSlot,
    day_of_week,
    normalize_time,
    parse_date,
    parse_schedule,
    time_to_minutes,
)

CLASS_STATUSES = ('scheduled', 'completed', 'cancelled')
PAYMENT_STATUSES = ('paid', 'unpaid')


@dataclass
class CalendarInstance:
    """A dated class.  ``id`` is ``None`` until the row has been saved."""

    student_id: int
    course_id: int
    date: date
    start_time: str
    end_time: str
    is_recurring: bool = False
    status: str = 'scheduled'
    payment_status: str = 'unpaid'
    price: Optional[float] = None
    subject: str = ''
    notes: str = ''
    id: Optional[int] = None

    @property
    def duration(self) -> int:
        return time_to_minutes(self.end_time) - time_to_minutes(self.start_time)

    @property
    def day_of_week(self) -> int:
        return day_of_week(self.date)

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used when diffing expected against persisted classes."""

        return (self.date.isoformat(), normalize_time(self.start_time))

    def contains(self, minutes: int) -> bool:
        return time_to_minutes(self.start_time) <= minutes < time_to_minutes(self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['date'] = self.date.isoformat()
        data['duration'] = self.duration
        data['day_of_week'] = self.day_of_week
        return data

    @classmethod
    def from_row(cls, row) -> 'CalendarInstance':
        return cls(
            id=row['id'],
            student_id=row['student_id'],
            course_id=row['course_id'],
            date=parse_date(row['date']),
            start_time=normalize_time(row['start_time']),
            end_time=normalize_time(row['end_time']),
            is_recurring=bool(row['is_recurring']),
            status=row['status'] or 'scheduled',
            payment_status=row['payment_status'] or 'unpaid',
            price=row['price'],
            subject=row['subject'] or '',
            notes=row['notes'] or '',
        )

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> 'CalendarInstance':
        """Validate a class submitted through the API.

        Only ``student_id``, ``course_id``, ``date``, ``start_time`` and
        ``end_time`` are required.  ``price`` is kept if given; callers
        decide whether to recompute it.
        """

        if not isinstance(raw, dict):
            raise ValidationError('Class data must be an object.')
        missing = [
            name for name in ('student_id', 'course_id', 'date', 'start_time', 'end_time')
            if raw.get(name) in (None, '')
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        try:
            student_id = int(raw['student_id'])
            course_id = int(raw['course_id'])
        except (TypeError, ValueError):
            raise ValidationError('student_id and course_id must be integers.') from None
        start = normalize_time(raw['start_time'])
        end = normalize_time(raw['end_time'])
        if time_to_minutes(end) <= time_to_minutes(start):
            raise ValidationError('end_time must be after start_time.')
        if raw.get('duration') not in (None, ''):
            try:
                declared = int(raw['duration'])
            except (TypeError, ValueError):
                raise ValidationError('duration must be a whole number of minutes.') from None
            if declared != time_to_minutes(end) - time_to_minutes(start):
                raise ValidationError('duration does not match start_time and end_time.')
        status = raw.get('status') or 'scheduled'
        if status not in CLASS_STATUSES:
            raise ValidationError(f'Invalid status {status!r}.')
        payment_status = raw.get('payment_status') or 'unpaid'
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f'Invalid payment_status {payment_status!r}.')
        price = raw.get('price')
        if price in ('', None):
            price = None
        else:
            try:
                price = float(price)
            except (TypeError, ValueError):
                raise ValidationError('price must be a number.') from None
            if price < 0:
                raise ValidationError('price cannot be negative.')
        is_recurring = raw.get('is_recurring', False)
        if is_recurring is None:
            is_recurring = False
        # bool is a subclass of int, so True/False pass this check as 1/0
        if not isinstance(is_recurring, int) or is_recurring not in (0, 1):
            raise ValidationError('is_recurring must be true or false.')
        return cls(
            student_id=student_id,
            course_id=course_id,
            date=parse_date(raw['date']),
            start_time=start,
            end_time=end,
            is_recurring=bool(is_recurring),
            status=status,
            payment_status=payment_status,
            price=price,
            subject=(raw.get('subject') or '').strip(),
            notes=raw.get('notes') or '',
        )


@dataclass
class Student:
    """The columns of ``students`` that reconciliation and pricing need."""

    id: int
    name: str
    course_id: Optional[int]
    start_date: Optional[date]
    schedule: List[RecurringSlot] = field(default_factory=list)
    has_shared_pricing: bool = False

    @classmethod
    def from_row(cls, row) -> 'Student':
        start = row['start_date']
        return cls(
            id=row['id'],
            name=f"{row['first_name']} {row['last_name']}".strip(),
            course_id=row['course_id'],
            start_date=parse_date(start, 'start_date') if start else None,
            schedule=parse_schedule(row['fixed_schedule'], row['course_id']),
            has_shared_pricing=bool(row['has_shared_pricing']),
        )


@dataclass
class CourseRates:
    price: float
    shared_class_price: Optional[float] = None

    def hourly_rate(self, shared: bool) -> float:
        if shared and self.shared_class_price:
            return self.shared_class_price
        return self.price


def class_price(duration: int, rate: float) -> float:
    """Price of a class lasting ``duration`` minutes at an hourly ``rate``."""

    return round(duration / 60 * rate, 2)
