"""
Adherence / Variance Tracker
Compares logged doses with the dose the pattern timeline expected on that date.
Read-only with respect to dosage patterns.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app

from dosetrack.errors import ValidationError
from dosetrack.models import db
from dosetrack.models.dose_log import DoseLog, DOSE_LOG_STATUSES
from dosetrack.services.schedule_engine import ScheduleEngine
from dosetrack.utils.dosage import dose_str, to_dose
from dosetrack.utils.timezone import local_date, to_local

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
PERCENT_PLACES = Decimal('0.01')


@dataclass(frozen=True)
class DoseVariance:
    expected_dosage: Optional[Decimal] = None
    pattern_day_number: Optional[int] = None
    has_variance: bool = False
    variance_amount: Optional[Decimal] = None
    variance_percentage: Optional[Decimal] = None


def compute_variance(actual, expected, pattern_day_number=None, tolerance=Decimal('0.01')):
    """
    Deviation of an actual dose from the expected one.

    No expected dose means no data: every derived field stays None.
    """
    if expected is None:
        return DoseVariance()
    if actual is None:
        return DoseVariance(expected_dosage=expected, pattern_day_number=pattern_day_number)

    amount = actual - expected
    percentage = None
    if expected != 0:
        percentage = (amount / expected * HUNDRED).quantize(PERCENT_PLACES)
    return DoseVariance(
        expected_dosage=expected,
        pattern_day_number=pattern_day_number,
        has_variance=abs(amount) > tolerance,
        variance_amount=amount,
        variance_percentage=percentage,
    )


@dataclass(frozen=True)
class EnrichedDoseLog:
    entry: DoseLog
    variance: DoseVariance
    time_variance_minutes: Optional[int] = None
    taken_on_time: bool = False
    adherence_score: float = 0.0

    def to_dict(self):
        d = self.entry.to_dict()
        d.update({
            'expected_dosage': dose_str(self.variance.expected_dosage),
            'pattern_day_number': self.variance.pattern_day_number,
            'has_variance': self.variance.has_variance,
            'variance_amount': dose_str(self.variance.variance_amount),
            'variance_percentage': dose_str(self.variance.variance_percentage),
            'time_variance_minutes': self.time_variance_minutes,
            'taken_on_time': self.taken_on_time,
            'adherence_score': self.adherence_score,
        })
        return d


@dataclass(frozen=True)
class AdherenceSummary:
    total: int
    with_expected: int
    variance_count: int
    on_time_count: int
    adherence_rate: Optional[Decimal] = None

    def to_dict(self):
        return {
            'total': self.total,
            'with_expected': self.with_expected,
            'variance_count': self.variance_count,
            'on_time_count': self.on_time_count,
            'adherence_rate': dose_str(self.adherence_rate),
        }


def timing(entry, window_minutes=60):
    """(minutes late or early, taken on time, adherence score) for a log entry"""
    minutes = None
    if entry.actual_time is not None and entry.scheduled_time is not None:
        delta = to_local(entry.actual_time) - to_local(entry.scheduled_time)
        minutes = int(delta.total_seconds() / 60)

    on_time = entry.status == 'taken' and minutes is not None and abs(minutes) <= window_minutes
    if entry.status == 'taken':
        score = 1.0 if on_time else 0.8
    elif entry.status == 'partially_taken':
        score = 0.5
    else:
        score = 0.0
    return minutes, on_time, score


class VarianceTracker:
    """Attaches expected-dose variance and timing analytics to dose logs"""

    def __init__(self, engine=None):
        self.engine = engine or ScheduleEngine()

    def attach_variance(self, entry):
        """Enrich one dose log with the expected dose for its scheduled date"""
        day = local_date(entry.scheduled_time)
        schedule = self.engine.compute_schedule(entry.medication_id, day, 1, include_transitions=False)
        scheduled = schedule.entries[0]

        variance = compute_variance(
            entry.actual_dosage,
            scheduled.dosage,
            scheduled.pattern_day_number,
            tolerance=current_app.config['VARIANCE_TOLERANCE'],
        )
        minutes, on_time, score = timing(entry, current_app.config['ON_TIME_WINDOW_MINUTES'])
        return EnrichedDoseLog(
            entry=entry,
            variance=variance,
            time_variance_minutes=minutes,
            taken_on_time=on_time,
            adherence_score=score,
        )

    def enrich_many(self, entries):
        return [self.attach_variance(e) for e in entries]

    def summarize(self, enriched):
        """Adherence figures over a set of enriched logs"""
        total = len(enriched)
        with_expected = sum(1 for e in enriched if e.variance.expected_dosage is not None)
        variance_count = sum(1 for e in enriched if e.variance.has_variance)
        on_time_count = sum(1 for e in enriched if e.taken_on_time)

        rate = None
        if total:
            score_total = sum(Decimal(str(e.adherence_score)) for e in enriched)
            rate = (score_total / total * HUNDRED).quantize(PERCENT_PLACES)
        return AdherenceSummary(
            total=total,
            with_expected=with_expected,
            variance_count=variance_count,
            on_time_count=on_time_count,
            adherence_rate=rate,
        )

    def record_dose(self, medication, scheduled_time, actual_dosage=None, actual_time=None,
                    status='taken', notes=None):
        """
        Persist a dose log on behalf of the logging collaborator and
        return it enriched. Patterns are not touched.
        """
        if scheduled_time is None:
            raise ValidationError('scheduled_time', 'Scheduled time is required')
        if status not in DOSE_LOG_STATUSES:
            raise ValidationError('status', f'Status must be one of {", ".join(DOSE_LOG_STATUSES)}')
        dose = None
        if actual_dosage is not None:
            dose = to_dose(actual_dosage, 'actual_dosage')
            if dose <= 0:
                raise ValidationError('actual_dosage', 'Actual dosage must be greater than 0 if specified')
        if status == 'partially_taken' and dose is None:
            raise ValidationError('actual_dosage', 'Actual dosage is required when a dose is partially taken')
        if notes is not None and not isinstance(notes, str):
            raise ValidationError('notes', 'Notes must be text')

        entry = DoseLog(
            medication=medication,
            scheduled_time=to_local(scheduled_time),
            actual_time=to_local(actual_time),
            actual_dosage=dose,
            status=status,
            notes=notes,
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        enriched = self.attach_variance(entry)
        if enriched.variance.has_variance:
            logger.info(
                "Dose log %s for medication %s deviates from expected %s by %s",
                entry.public_id, medication.public_id,
                enriched.variance.expected_dosage, enriched.variance.variance_amount
            )
        return enriched
