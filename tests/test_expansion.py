import os
import sys
from datetime import date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tracking.expansion import expand_schedule
from tracking.schedule import RecurringSlot

MONDAY = RecurringSlot(1, '16:00', '17:00', subject='Math', course_id=1)


def test_two_weeks_of_a_monday_slot():
    # 2024-01-01 is a Monday
    classes = expand_schedule(1, [MONDAY], date(2024, 1, 1), date(2024, 1, 14))
    assert [c.date for c in classes] == [date(2024, 1, 1), date(2024, 1, 8)]
    first = classes[0]
    assert first.start_time == '16:00'
    assert first.end_time == '17:00'
    assert first.duration == 60
    assert first.day_of_week == 1
    assert first.is_recurring
    assert first.course_id == 1
    assert first.id is None


def test_every_slot_appears_twice_in_any_fourteen_days():
    slots = [
        MONDAY,
        RecurringSlot(3, '10:00', '11:00'),
        RecurringSlot(7, '09:00', '09:45'),
    ]
    for offset in range(7):
        start = date(2024, 3, 1) + timedelta(days=offset)
        classes = expand_schedule(1, slots, date(2024, 1, 1), start + timedelta(days=13), range_start=start)
        assert len(classes) == 6


def test_nothing_before_enrollment():
    classes = expand_schedule(
        1, [MONDAY], date(2024, 1, 3), date(2024, 1, 31), range_start=date(2023, 12, 1)
    )
    assert classes[0].date == date(2024, 1, 8)
    assert all(c.date >= date(2024, 1, 3) for c in classes)


def test_sunday_slot_lands_on_sunday():
    classes = expand_schedule(1, [RecurringSlot(7, '09:00', '10:00')], date(2024, 1, 1), date(2024, 1, 7))
    assert [c.date for c in classes] == [date(2024, 1, 7)]


def test_empty_when_range_ends_before_enrollment():
    assert expand_schedule(1, [MONDAY], date(2024, 2, 1), date(2024, 1, 31)) == []


def test_results_ordered_by_date_then_time():
    slots = [RecurringSlot(1, '18:00', '19:00'), RecurringSlot(1, '08:00', '09:00')]
    classes = expand_schedule(1, slots, date(2024, 1, 1), date(2024, 1, 8))
    assert [(c.date.day, c.start_time) for c in classes] == [
        (1, '08:00'), (1, '18:00'), (8, '08:00'), (8, '18:00'),
    ]


def test_default_course_used_when_slot_has_none():
    classes = expand_schedule(
        1, [RecurringSlot(1, '08:00', '09:00')], date(2024, 1, 1), date(2024, 1, 1), default_course_id=9
    )
    assert classes[0].course_id == 9
