"""Persist calendar instances, one row at a time.

The ``classes`` table carries ``UNIQUE(student_id, date, start_time)``.  That
constraint is what keeps two concurrent "generate missing classes" requests
from creating the same class twice, so inserts here never check first; they
try and treat a uniqueness failure as "already there".
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from tracking.errors import DuplicateClassError, ValidationError
from tracking.models import CalendarInstance, CourseRates, class_price

logger = logging.getLogger(__name__)


def load_rates(c, course_id) -> Optional[CourseRates]:
    row = c.execute(
        'SELECT price, shared_class_price FROM courses WHERE id=?', (course_id,)
    ).fetchone()
    if row is None:
        return None
    return CourseRates(price=row['price'] or 0, shared_class_price=row['shared_class_price'])


def has_shared_pricing(c, student_id) -> Optional[bool]:
    row = c.execute(
        'SELECT has_shared_pricing FROM students WHERE id=?', (student_id,)
    ).fetchone()
    if row is None:
        return None
    return bool(row['has_shared_pricing'])


def price_instance(c, instance: CalendarInstance) -> float:
    """Set ``instance.price`` from the course's current rates.

    The stored price is never recomputed afterwards, so later edits to the
    course leave existing classes alone.
    """

    shared = has_shared_pricing(c, instance.student_id)
    if shared is None:
        raise ValidationError(f'Student {instance.student_id} not found.')
    rates = load_rates(c, instance.course_id)
    if rates is None:
        raise ValidationError(f'Course {instance.course_id} not found.')
    instance.price = class_price(instance.duration, rates.hourly_rate(shared))
    return instance.price


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return 'UNIQUE' in str(exc).upper()


def insert_class(c, instance: CalendarInstance) -> int:
    """Insert ``instance`` and return the new row id.

    Raises :class:`DuplicateClassError` when the student already has a class
    on that date at that start time.
    """

    try:
        c.execute(
            '''INSERT INTO classes (
                student_id, course_id, date, start_time, end_time, duration,
                day_of_week, is_recurring, status, payment_status, price,
                subject, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            (
                instance.student_id,
                instance.course_id,
                instance.date.isoformat(),
                instance.start_time,
                instance.end_time,
                instance.duration,
                instance.day_of_week,
                int(instance.is_recurring),
                instance.status,
                instance.payment_status,
                instance.price,
                instance.subject,
                instance.notes,
            ),
        )
    except sqlite3.IntegrityError as exc:
        if _is_unique_violation(exc):
            raise DuplicateClassError(
                instance.student_id, instance.date.isoformat(), instance.start_time
            ) from exc
        raise
    instance.id = c.lastrowid
    return instance.id


@dataclass
class MaterializationReport:
    selected: int = 0
    created: int = 0
    skipped: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': {
                'totalSelected': self.selected,
                'created': self.created,
                'skipped': self.skipped,
                'errors': len(self.errors),
            },
            'results': self.results,
            'errors': self.errors,
        }


def materialize(conn, records: Iterable[Any], recurring: bool = True) -> MaterializationReport:
    """Insert each record on its own and report what happened to it.

    ``records`` may be API payload dicts or :class:`CalendarInstance`
    objects.  Invalid records end up in ``errors``, duplicates in
    ``skipped``; neither stops the rest of the batch.  Every successful
    insert is committed straight away.
    """

    report = MaterializationReport()
    c = conn.cursor()
    for raw in records:
        report.selected += 1
        try:
            if isinstance(raw, CalendarInstance):
                instance = raw
            else:
                instance = CalendarInstance.from_payload(raw)
            instance.is_recurring = recurring
            instance.status = 'scheduled'
            instance.payment_status = 'unpaid'
            price_instance(c, instance)
            insert_class(c, instance)
        except DuplicateClassError as exc:
            conn.rollback()
            report.skipped += 1
            report.results.append({
                'studentId': exc.student_id,
                'date': exc.date,
                'startTime': exc.start_time,
                'status': 'skipped',
                'message': 'Class already exists',
            })
            continue
        except ValidationError as exc:
            report.errors.append({'classData': _describe(raw), 'error': str(exc)})
            continue
        except sqlite3.Error as exc:
            conn.rollback()
            logger.exception('Failed to insert class %r', _describe(raw))
            report.errors.append({'classData': _describe(raw), 'error': str(exc)})
            continue
        conn.commit()
        report.created += 1
        report.results.append({
            'studentId': instance.student_id,
            'date': instance.date.isoformat(),
            'startTime': instance.start_time,
            'status': 'created',
            'classId': instance.id,
        })
    return report


def _describe(raw) -> Any:
    if isinstance(raw, CalendarInstance):
        return raw.to_dict()
    return raw
