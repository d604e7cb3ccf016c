from datetime import date, timedelta
from decimal import Decimal

import pytest

from dosetrack.errors import ValidationError
from dosetrack.models.dosage_pattern import PatternSpan
from dosetrack.services.schedule_engine import build_schedule, find_governing, resolve


def span(id, sequence, start, end=None, notes=None):
    return PatternSpan(
        id=id,
        public_id=f'pattern-{id}',
        sequence=tuple(Decimal(str(v)) for v in sequence),
        start_date=start,
        end_date=end,
        notes=notes,
    )


def dosages(schedule):
    return [e.dosage for e in schedule.entries]


def test_three_day_cycle_repeats():
    p = span(1, [5, 5, 4], date(2025, 1, 1))

    schedule = build_schedule([p], date(2025, 1, 1), 6)

    assert dosages(schedule) == [Decimal('5'), Decimal('5'), Decimal('4')] * 2
    assert [e.pattern_day_number for e in schedule.entries] == [1, 2, 3, 1, 2, 3]
    assert all(e.pattern_length == 3 for e in schedule.entries)


def test_day_numbers_cycle_with_pattern_period_far_from_start():
    p = span(1, [4, 4, 3, 4, 3, 3], date(2024, 3, 1))

    schedule = build_schedule([p], date(2025, 7, 19), 30)

    numbers = [e.pattern_day_number for e in schedule.entries]
    assert set(numbers) <= set(range(1, 7))
    for i in range(len(numbers) - 6):
        assert numbers[i] == numbers[i + 6]
    for i in range(len(numbers) - 1):
        assert numbers[i + 1] == numbers[i] % 6 + 1


def test_single_value_pattern_is_constant_daily_dose():
    p = span(1, [2.5], date(2025, 1, 1))

    schedule = build_schedule([p], date(2025, 5, 1), 4)

    assert dosages(schedule) == [Decimal('2.5')] * 4
    assert [e.pattern_day_number for e in schedule.entries] == [1, 1, 1, 1]
    assert [e.pattern_length for e in schedule.entries] == [1, 1, 1, 1]


def test_no_patterns_gives_gap_days_not_zero_doses():
    schedule = build_schedule([], date(2025, 3, 10), 3)

    assert dosages(schedule) == [None, None, None]
    assert all(e.pattern_day_number is None and e.pattern_length is None for e in schedule.entries)
    assert schedule.summary.gap_days == 3
    assert schedule.summary.total_dosage == Decimal('0')
    assert schedule.summary.pattern_change_days == 0
    assert schedule.summary.average_daily_dosage is None


def test_transition_between_patterns_is_flagged_with_notes():
    p1 = span(1, [5], date(2025, 1, 1), date(2025, 1, 31))
    p2 = span(2, [4, 4, 3], date(2025, 2, 1), notes='Reduced after INR 3.4')

    schedule = build_schedule([p1, p2], date(2025, 1, 30), 4)

    assert dosages(schedule) == [Decimal('5'), Decimal('5'), Decimal('4'), Decimal('4')]
    assert [e.is_pattern_change for e in schedule.entries] == [False, False, True, False]
    assert schedule.entries[2].pattern_change_note == 'Reduced after INR 3.4'
    assert schedule.entries[2].pattern_day_number == 1
    assert schedule.summary.pattern_change_days == 1


def test_transition_without_notes_describes_new_pattern():
    p1 = span(1, [5], date(2025, 1, 1), date(2025, 1, 31))
    p2 = span(2, [4, 3.5], date(2025, 2, 1))

    schedule = build_schedule([p1, p2], date(2025, 2, 1), 1)

    assert schedule.entries[0].pattern_change_note == 'New pattern starts: 4mg, 3.5mg (2-day cycle)'


def test_pattern_start_and_end_inside_range_count_as_changes():
    p = span(1, [3], date(2025, 4, 2), date(2025, 4, 3))

    schedule = build_schedule([p], date(2025, 4, 1), 4)

    assert dosages(schedule) == [None, Decimal('3'), Decimal('3'), None]
    assert [e.is_pattern_change for e in schedule.entries] == [False, True, False, True]
    assert schedule.entries[3].pattern_change_note is None
    assert schedule.summary.gap_days == 2


def test_transitions_can_be_left_out():
    p1 = span(1, [5], date(2025, 1, 1), date(2025, 1, 31))
    p2 = span(2, [4], date(2025, 2, 1))

    schedule = build_schedule([p1, p2], date(2025, 1, 31), 2, include_transitions=False)

    assert not any(e.is_pattern_change for e in schedule.entries)
    assert schedule.summary.pattern_change_days == 0


def test_first_day_compares_with_the_day_before_range():
    p = span(1, [5, 4], date(2025, 1, 1))

    assert not build_schedule([p], date(2025, 1, 5), 2).entries[0].is_pattern_change
    assert build_schedule([p], date(2025, 1, 1), 2).entries[0].is_pattern_change


def test_summary_statistics():
    p = span(1, [5, 5, 4], date(2025, 1, 1))

    summary = build_schedule([p], date(2025, 1, 1), 6).summary

    assert summary.total_dosage == Decimal('28')
    assert summary.average_daily_dosage == Decimal('4.67')
    assert summary.min_dosage == Decimal('4')
    assert summary.max_dosage == Decimal('5')
    assert summary.pattern_cycles == Decimal('2.00')


def test_entries_carry_calendar_fields():
    p = span(1, [5], date(2025, 1, 1))

    schedule = build_schedule([p], date(2025, 1, 6), 2)

    assert [e.date for e in schedule.entries] == [date(2025, 1, 6), date(2025, 1, 7)]
    assert [e.day_of_week for e in schedule.entries] == ['Monday', 'Tuesday']
    assert schedule.end_date == date(2025, 1, 7)


def test_resolve_rejects_dates_outside_the_pattern():
    p = span(1, [5, 4], date(2025, 1, 10), date(2025, 1, 20))

    assert resolve(date(2025, 1, 12), p) == (Decimal('5'), 1)
    with pytest.raises(ValidationError) as exc:
        resolve(date(2025, 1, 9), p)
    assert exc.value.field == 'date'
    with pytest.raises(ValidationError):
        resolve(date(2025, 1, 21), p)


def test_find_governing_respects_validity_windows():
    p1 = span(1, [5], date(2025, 1, 1), date(2025, 1, 31))
    p2 = span(2, [4], date(2025, 2, 1))

    assert find_governing([p1, p2], date(2025, 1, 31)) is p1
    assert find_governing([p1, p2], date(2025, 2, 1)) is p2
    assert find_governing([p1, p2], date(2024, 12, 31)) is None
    assert find_governing([p1, p2], date(2030, 1, 1) + timedelta(days=1)) is p2


def test_days_must_be_positive():
    with pytest.raises(ValidationError):
        build_schedule([], date(2025, 1, 1), 0)
