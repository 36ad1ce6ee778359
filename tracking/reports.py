"""Monthly tracking figures derived from saved classes."""

from __future__ import annotations

from calendar import monthrange
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tracking.models import CalendarInstance

TRACKING_FIELDS = [
    'total_classes_scheduled',
    'total_classes_completed',
    'total_classes_cancelled',
    'recurring_classes_scheduled',
    'recurring_classes_completed',
    'recurring_classes_cancelled',
    'eventual_classes_scheduled',
    'eventual_classes_completed',
    'eventual_classes_cancelled',
    'classes_paid',
    'classes_unpaid',
    'recurring_classes_paid',
    'recurring_classes_unpaid',
    'eventual_classes_paid',
    'eventual_classes_unpaid',
    'total_earned',
    'total_paid',
    'total_unpaid',
    'recurring_earned',
    'recurring_paid',
    'recurring_unpaid',
    'eventual_earned',
    'eventual_paid',
    'eventual_unpaid',
]

REPORT_FIELDS = [
    'total_students',
    'total_classes_scheduled',
    'total_classes_completed',
    'total_classes_cancelled',
    'total_recurring_classes',
    'total_eventual_classes',
    'total_earned',
    'total_paid',
    'total_unpaid',
    'average_earned_per_student',
]


def month_bounds(year: int, month: int):
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def _money(classes: Iterable[CalendarInstance]) -> float:
    return round(sum(cls.price or 0 for cls in classes), 2)


def _earnings(classes: Sequence[CalendarInstance], prefix: str) -> Dict[str, float]:
    # Only completed classes count as earned.
    done = [cls for cls in classes if cls.status == 'completed']
    earned = _money(done)
    paid = _money(cls for cls in done if cls.payment_status == 'paid')
    return {
        f'{prefix}_earned': earned,
        f'{prefix}_paid': paid,
        f'{prefix}_unpaid': round(earned - paid, 2),
    }


def student_month_stats(classes: Sequence[CalendarInstance]) -> Dict[str, Any]:
    """Counts and earnings for one student's classes in one month."""

    recurring = [cls for cls in classes if cls.is_recurring]
    eventual = [cls for cls in classes if not cls.is_recurring]
    stats: Dict[str, Any] = {}
    for prefix, group in (('total', classes), ('recurring', recurring), ('eventual', eventual)):
        stats[f'{prefix}_classes_scheduled'] = len(group)
        stats[f'{prefix}_classes_completed'] = sum(1 for c in group if c.status == 'completed')
        stats[f'{prefix}_classes_cancelled'] = sum(1 for c in group if c.status == 'cancelled')
    for prefix, group in (('classes', classes), ('recurring_classes', recurring), ('eventual_classes', eventual)):
        stats[f'{prefix}_paid'] = sum(1 for c in group if c.payment_status == 'paid')
        stats[f'{prefix}_unpaid'] = sum(1 for c in group if c.payment_status == 'unpaid')
    stats.update(_earnings(classes, 'total'))
    stats.update(_earnings(recurring, 'recurring'))
    stats.update(_earnings(eventual, 'eventual'))
    return stats


def aggregate_month(tracking_rows: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {
        'total_students': len(tracking_rows),
        'total_classes_scheduled': 0,
        'total_classes_completed': 0,
        'total_classes_cancelled': 0,
        'total_recurring_classes': 0,
        'total_eventual_classes': 0,
        'total_earned': 0.0,
        'total_paid': 0.0,
        'total_unpaid': 0.0,
    }
    for row in tracking_rows:
        totals['total_classes_scheduled'] += row['total_classes_scheduled']
        totals['total_classes_completed'] += row['total_classes_completed']
        totals['total_classes_cancelled'] += row['total_classes_cancelled']
        totals['total_recurring_classes'] += row['recurring_classes_scheduled']
        totals['total_eventual_classes'] += row['eventual_classes_scheduled']
        totals['total_earned'] += row['total_earned']
        totals['total_paid'] += row['total_paid']
        totals['total_unpaid'] += row['total_unpaid']
    for key in ('total_earned', 'total_paid', 'total_unpaid'):
        totals[key] = round(totals[key], 2)
    students = totals['total_students']
    totals['average_earned_per_student'] = (
        round(totals['total_earned'] / students, 2) if students else 0.0
    )
    return totals


def dashboard_stats(
    classes: Sequence[CalendarInstance],
    today: date,
    month: Optional[tuple] = None,
    total_students: int = 0,
) -> Dict[str, Any]:
    year, mon = month or (today.year, today.month)
    first, last = month_bounds(year, mon)
    monthly = [cls for cls in classes if first <= cls.date <= last]
    completed = [cls for cls in monthly if cls.status == 'completed']
    return {
        'month': f'{year:04d}-{mon:02d}',
        'todayClasses': sum(
            1 for cls in classes if cls.date == today and cls.status != 'cancelled'
        ),
        'monthlyClasses': sum(1 for cls in monthly if cls.status != 'cancelled'),
        'monthlyIncome': _money(completed),
        'paidAmount': _money(cls for cls in completed if cls.payment_status == 'paid'),
        'unpaidAmount': _money(cls for cls in completed if cls.payment_status == 'unpaid'),
        'totalStudents': total_students,
    }
