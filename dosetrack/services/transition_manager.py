"""
Pattern Transition Manager
Creates and closes dosage patterns while keeping each medication's
pattern timeline free of overlaps, with at most one open pattern
"""
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from dosetrack.errors import ConflictError, NotFoundError, ValidationError
from dosetrack.models import db
from dosetrack.models.dosage_pattern import DosagePattern
from dosetrack.services.audit_sink import build_audit_event, emit_safely, get_audit_sink
from dosetrack.services.pattern_store import PatternStore, validate_pattern
from dosetrack.utils.timezone import now as tz_now

logger = logging.getLogger(__name__)


class PatternTransitionManager:
    """Applies pattern transitions as single all-or-nothing transactions"""

    def __init__(self, store=None, audit_sink=None):
        self.store = store or PatternStore()
        self._audit_sink = audit_sink

    @property
    def audit_sink(self):
        return self._audit_sink or get_audit_sink()

    def create_pattern(self, medication_id, sequence, start_date, notes=None,
                       close_previous=False, end_date=None):
        """
        Create a new dosage pattern for a medication.

        With close_previous the currently open pattern is closed the day
        before start_date in the same transaction. Without it, any overlap
        with existing history is a ConflictError.
        """
        audit_events = []
        try:
            medication = self.store.lock_medication(medication_id)
            doses = validate_pattern(sequence, start_date, end_date, notes, medication.dose_ceiling)

            if close_previous:
                previous = self.store.find_active(medication.id)
                if previous is not None and (end_date is None or previous.start_date <= end_date):
                    if previous.start_date >= start_date:
                        raise ConflictError(
                            f'Active pattern {previous.public_id} starts on {previous.start_date}; '
                            f'a new pattern starting {start_date} cannot close it'
                        )
                    before = previous.to_dict()
                    previous.end_date = start_date - timedelta(days=1)
                    # Closing must hit the database before the new open pattern is inserted
                    db.session.flush()
                    audit_events.append(build_audit_event('close', medication, before, previous.to_dict()))
                    logger.info(
                        "Closed previous pattern %s for medication %s, end date set to %s",
                        previous.public_id, medication.public_id, previous.end_date
                    )

            overlapping = self.store.find_overlapping(medication.id, start_date, end_date)
            if overlapping:
                if close_previous:
                    detail = 'it would overlap closed pattern history'
                else:
                    detail = 'a pattern already exists for that date range; set closePrevious to close it'
                raise ConflictError(
                    f'Cannot start a pattern on {start_date}: {detail} '
                    f'({", ".join(p.public_id for p in overlapping)})'
                )

            pattern = DosagePattern(
                medication=medication,
                start_date=start_date,
                end_date=end_date,
                notes=notes,
            )
            pattern.sequence = doses
            self.store.save(pattern)

            medication.patterns_updated_at = tz_now()
            db.session.commit()
        except (StaleDataError, IntegrityError) as e:
            db.session.rollback()
            logger.warning("Pattern transition for medication %s lost a concurrent update", medication_id)
            raise ConflictError(
                'The pattern history changed while this transition was being applied',
                cause=e
            )
        except Exception:
            db.session.rollback()
            raise

        audit_events.append(build_audit_event('create', medication, None, pattern.to_dict()))
        emit_safely(self.audit_sink, audit_events)

        logger.info(
            "Created dosage pattern %s for medication %s, pattern length %d, start date %s",
            pattern.public_id, medication.public_id, pattern.pattern_length, pattern.start_date
        )
        return pattern

    def close_pattern(self, medication_id, pattern_public_id, end_date):
        """Close an open pattern on end_date; a closed pattern is never reopened"""
        try:
            medication = self.store.lock_medication(medication_id)
            pattern = DosagePattern.query.filter_by(
                medication_id=medication.id,
                public_id=pattern_public_id
            ).first()

            if pattern is None:
                raise NotFoundError(f'Pattern {pattern_public_id} does not exist or you do not have access.')
            if not pattern.is_open:
                raise ConflictError(f'Pattern {pattern_public_id} was already closed on {pattern.end_date}')
            if end_date is None or end_date < pattern.start_date:
                raise ValidationError('end_date', 'End date must be on or after the start date')

            before = pattern.to_dict()
            pattern.end_date = end_date
            medication.patterns_updated_at = tz_now()
            db.session.commit()
        except (StaleDataError, IntegrityError) as e:
            db.session.rollback()
            raise ConflictError(
                'The pattern history changed while this pattern was being closed',
                cause=e
            )
        except Exception:
            db.session.rollback()
            raise

        emit_safely(self.audit_sink, [build_audit_event('close', medication, before, pattern.to_dict())])
        logger.info("Closed pattern %s for medication %s on %s",
                    pattern.public_id, medication.public_id, end_date)
        return pattern
