"""Compare what a student's schedule implies with the classes on record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tracking.expansion import effective_range, expand_schedule
from tracking.models import CalendarInstance, Student


@dataclass
class ReconciliationResult:
    """Diff between expected and persisted classes for one student."""

    expected: List[CalendarInstance]
    actual: List[CalendarInstance]
    matched: List[CalendarInstance] = field(default_factory=list)
    missing: List[CalendarInstance] = field(default_factory=list)
    extra: List[CalendarInstance] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            'expected': len(self.expected),
            'actual': len(self.actual),
            'match': len(self.matched),
            'missing': len(self.missing),
            'extra': len(self.extra),
        }


def diff_classes(
    expected: Sequence[CalendarInstance],
    actual: Iterable[CalendarInstance],
) -> ReconciliationResult:
    """Partition classes by their ``(date, start time)`` key.

    Any saved class on an expected key satisfies it, but only classes
    flagged ``is_recurring`` can be *extra*.  Matching is exact, so a class
    moved by a minute shows up as both missing and extra.
    """

    actual = list(actual)
    recurring = [cls for cls in actual if cls.is_recurring]
    actual_keys = {cls.key for cls in actual}
    expected_keys = set()
    result = ReconciliationResult(expected=list(expected), actual=recurring)
    for cls in expected:
        if cls.key in expected_keys:
            continue
        expected_keys.add(cls.key)
        if cls.key in actual_keys:
            result.matched.append(cls)
        else:
            result.missing.append(cls)
    result.extra = [cls for cls in recurring if cls.key not in expected_keys]
    return result


@dataclass
class StudentComparison:
    """Reconciliation outcome for one student, as reported by the API."""

    student_id: int
    student_name: str
    status: str
    reason: str = ''
    start: Optional[date] = None
    end: Optional[date] = None
    result: Optional[ReconciliationResult] = None

    def to_dict(self, include_records: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'studentId': self.student_id,
            'studentName': self.student_name,
            'status': self.status,
        }
        if self.reason:
            data['reason'] = self.reason
        if self.result is None:
            return data
        data['dateRange'] = {
            'startDate': self.start.isoformat() if self.start else None,
            'endDate': self.end.isoformat() if self.end else None,
        }
        data['summary'] = self.result.summary
        if include_records:
            data['missing'] = [cls.to_dict() for cls in self.result.missing]
            data['extra'] = [cls.to_dict() for cls in self.result.extra]
        return data


def skip_reason(student: Student) -> Optional[str]:
    if student.start_date is None and not student.schedule:
        return 'No start date or fixed schedule configured'
    if student.start_date is None:
        return 'No start date configured'
    if not student.schedule:
        return 'No fixed schedule configured'
    return None


def compare_student(
    student: Student,
    actual: Iterable[CalendarInstance],
    range_end: date,
    range_start: Optional[date] = None,
) -> StudentComparison:
    """Reconcile one student over ``[range_start, range_end]``.

    ``actual`` should contain the student's persisted classes for at least
    that range; anything outside the clamped range is ignored.
    """

    reason = skip_reason(student)
    if reason:
        return StudentComparison(student.id, student.name, 'skipped', reason)
    start, end = effective_range(student.start_date, range_start, range_end)
    expected = expand_schedule(
        student.id,
        student.schedule,
        student.start_date,
        range_end,
        range_start=range_start,
        default_course_id=student.course_id,
    )
    in_range = [cls for cls in actual if start <= cls.date <= end]
    return StudentComparison(
        student.id,
        student.name,
        'success',
        start=start,
        end=end,
        result=diff_classes(expected, in_range),
    )


def aggregate(comparisons: Sequence[StudentComparison]) -> Dict[str, int]:
    """Totals across students; skipped and failed students add nothing."""

    ok = [c for c in comparisons if c.status == 'success' and c.result is not None]
    return {
        'totalStudents': len(comparisons),
        'studentsWithIssues': sum(
            1 for c in ok if c.result.missing or c.result.extra
        ),
        'totalExpected': sum(len(c.result.expected) for c in ok),
        'totalMatch': sum(len(c.result.matched) for c in ok),
        'totalMissing': sum(len(c.result.missing) for c in ok),
        'totalExtra': sum(len(c.result.extra) for c in ok),
        'skipped': sum(1 for c in comparisons if c.status == 'skipped'),
        'errors': sum(1 for c in comparisons if c.status == 'error'),
    }
