"""
Schedule Computation Engine
Day-by-day expected doses resolved from a medication's pattern timeline.

The functions at module level are pure: they take immutable PatternSpan
values and never touch the database, so any number of threads may call them.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from flask import current_app

from dosetrack.errors import ValidationError
from dosetrack.models.dosage_pattern import PatternSpan
from dosetrack.services.pattern_store import PatternStore
from dosetrack.utils.dosage import dose_str

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


@dataclass(frozen=True)
class ScheduleEntry:
    date: date
    day_of_week: str
    dosage: Optional[Decimal] = None
    pattern_day_number: Optional[int] = None
    pattern_length: Optional[int] = None
    is_pattern_change: bool = False
    pattern_change_note: Optional[str] = None
    pattern_id: Optional[str] = None

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'day_of_week': self.day_of_week,
            'dosage': dose_str(self.dosage),
            'pattern_day_number': self.pattern_day_number,
            'pattern_length': self.pattern_length,
            'is_pattern_change': self.is_pattern_change,
            'pattern_change_note': self.pattern_change_note,
            'pattern_id': self.pattern_id,
        }


@dataclass(frozen=True)
class ScheduleSummary:
    total_dosage: Decimal
    gap_days: int
    pattern_change_days: int
    average_daily_dosage: Optional[Decimal] = None
    min_dosage: Optional[Decimal] = None
    max_dosage: Optional[Decimal] = None
    pattern_cycles: Optional[Decimal] = None

    def to_dict(self):
        return {
            'total_dosage': dose_str(self.total_dosage),
            'gap_days': self.gap_days,
            'pattern_change_days': self.pattern_change_days,
            'average_daily_dosage': dose_str(self.average_daily_dosage),
            'min_dosage': dose_str(self.min_dosage),
            'max_dosage': dose_str(self.max_dosage),
            'pattern_cycles': dose_str(self.pattern_cycles),
        }


@dataclass(frozen=True)
class Schedule:
    start_date: date
    end_date: date
    entries: List[ScheduleEntry] = field(default_factory=list)
    summary: Optional[ScheduleSummary] = None

    def to_dict(self):
        return {
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'total_days': len(self.entries),
            'days': [e.to_dict() for e in self.entries],
            'summary': self.summary.to_dict() if self.summary else None,
        }


def resolve(day: date, span: PatternSpan) -> Tuple[Decimal, int]:
    """
    Dose and 1-based cycle day for a date governed by span.

    Example: [4, 4, 3] starting 2025-11-01
        2025-11-01 -> (4, 1), 2025-11-03 -> (3, 3), 2025-11-04 -> (4, 1)
    """
    if not span.sequence:
        raise ValidationError('sequence', 'Pattern sequence is empty')
    if not span.covers(day):
        raise ValidationError(
            'date',
            f'{day} is outside pattern {span.public_id} ({span.start_date} to {span.end_date or "open"})'
        )
    offset = (day - span.start_date).days
    index = offset % span.length
    return span.sequence[index], index + 1


def find_governing(spans: Sequence[PatternSpan], day: date) -> Optional[PatternSpan]:
    """The single span covering day; latest start wins if history is inconsistent"""
    governing = None
    for span in spans:
        if span.covers(day) and (governing is None or span.start_date > governing.start_date):
            governing = span
    return governing


def change_note(span: Optional[PatternSpan]) -> Optional[str]:
    if span is None:
        return None
    if span.notes:
        return span.notes
    return f'New pattern starts: {span.display()}'


def build_schedule(spans: Sequence[PatternSpan], start_date: date, days: int,
                   include_transitions: bool = True) -> Schedule:
    """One ScheduleEntry per date in [start_date, start_date + days) plus a summary"""
    if days < 1:
        raise ValidationError('days', 'Days must be at least 1')

    entries = []
    previous = find_governing(spans, start_date - timedelta(days=1))

    for i in range(days):
        day = start_date + timedelta(days=i)
        current = find_governing(spans, day)

        dosage = day_number = length = None
        if current is not None:
            dosage, day_number = resolve(day, current)
            length = current.length

        is_change = False
        note = None
        if include_transitions and _span_key(current) != _span_key(previous):
            is_change = True
            note = change_note(current)

        entries.append(ScheduleEntry(
            date=day,
            day_of_week=day.strftime('%A'),
            dosage=dosage,
            pattern_day_number=day_number,
            pattern_length=length,
            is_pattern_change=is_change,
            pattern_change_note=note,
            pattern_id=current.public_id if current else None,
        ))
        previous = current

    first = find_governing(spans, start_date)
    return Schedule(
        start_date=start_date,
        end_date=start_date + timedelta(days=days - 1),
        entries=entries,
        summary=summarize(entries, first),
    )


def summarize(entries: Sequence[ScheduleEntry], first_span: Optional[PatternSpan] = None) -> ScheduleSummary:
    dosages = [e.dosage for e in entries if e.dosage is not None]
    total = sum(dosages, Decimal('0'))

    average = minimum = maximum = None
    if dosages:
        average = (total / len(dosages)).quantize(TWO_PLACES)
        minimum = min(dosages)
        maximum = max(dosages)

    cycles = None
    if first_span is not None:
        cycles = (Decimal(len(entries)) / first_span.length).quantize(TWO_PLACES)

    return ScheduleSummary(
        total_dosage=total,
        gap_days=len(entries) - len(dosages),
        pattern_change_days=sum(1 for e in entries if e.is_pattern_change),
        average_daily_dosage=average,
        min_dosage=minimum,
        max_dosage=maximum,
        pattern_cycles=cycles,
    )


def _span_key(span):
    return span.id if span is not None else None


class ScheduleEngine:
    """Loads a medication's pattern timeline and computes schedules over it"""

    def __init__(self, store=None):
        self.store = store or PatternStore()

    def compute_schedule(self, medication_id, start_date, days, include_transitions=True):
        max_days = current_app.config['SCHEDULE_MAX_DAYS']
        if not isinstance(days, int) or isinstance(days, bool) or days < 1 or days > max_days:
            raise ValidationError('days', f'Days must be between 1 and {max_days}')
        if not isinstance(start_date, date):
            raise ValidationError('start_date', 'Start date is required')
        if isinstance(start_date, datetime):
            start_date = start_date.date()

        # One extra day back so the first entry can be compared with its predecessor
        window_start = start_date - timedelta(days=1)
        window_end = start_date + timedelta(days=days - 1)
        spans = [p.to_span() for p in self.store.find_in_range(medication_id, window_start, window_end)]

        schedule = build_schedule(spans, start_date, days, include_transitions)
        logger.info(
            "Generated %d-day schedule for medication %s from %s, total dosage %s",
            days, medication_id, start_date, schedule.summary.total_dosage
        )
        return schedule
