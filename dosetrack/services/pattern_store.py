"""
Pattern Store
Durable storage and retrieval of dosage patterns scoped to a medication,
plus the validation rules every saved pattern must satisfy
"""
from datetime import date

from flask import current_app

from dosetrack.errors import ValidationError, NotFoundError
from dosetrack.models import db
from dosetrack.models.medication import Medication
from dosetrack.models.dosage_pattern import DosagePattern
from dosetrack.utils.dosage import to_dose

HISTORY_MAX_LIMIT = 100


def validate_pattern(sequence, start_date, end_date=None, notes=None, max_dose=None):
    """
    Validate pattern fields and return the sequence as quantized Decimals.

    Raises ValidationError naming the offending field.
    """
    if sequence is None or isinstance(sequence, (str, bytes)) or not hasattr(sequence, '__iter__'):
        raise ValidationError('sequence', 'Pattern sequence is required')
    doses = [to_dose(value, f'sequence[{i}]') for i, value in enumerate(sequence)]
    if not doses:
        raise ValidationError('sequence', 'Pattern must contain at least one dosage value')

    max_length = current_app.config['MAX_PATTERN_LENGTH']
    if len(doses) > max_length:
        raise ValidationError('sequence', f'Pattern cannot exceed {max_length} dosages')

    if max_dose is None:
        max_dose = current_app.config['DEFAULT_MAX_SINGLE_DOSE']
    for i, dose in enumerate(doses):
        if dose <= 0:
            raise ValidationError(f'sequence[{i}]', f'Dosage must be greater than 0, got {dose}')
        if dose > max_dose:
            raise ValidationError(
                f'sequence[{i}]',
                f'Dosage {dose} exceeds the maximum single dose of {max_dose} for this medication'
            )

    if not isinstance(start_date, date):
        raise ValidationError('start_date', 'Start date is required')
    if end_date is not None:
        if not isinstance(end_date, date):
            raise ValidationError('end_date', 'End date must be a date')
        if end_date < start_date:
            raise ValidationError('end_date', 'End date must be on or after the start date')

    notes_max = current_app.config['PATTERN_NOTES_MAX_LENGTH']
    if notes is not None and not isinstance(notes, str):
        raise ValidationError('notes', 'Notes must be text')
    if notes is not None and len(notes) > notes_max:
        raise ValidationError('notes', f'Notes cannot exceed {notes_max} characters')

    return doses


class PatternStore:
    """SQLAlchemy-backed store for DosagePattern records"""

    def get_medication(self, public_id, owner_id=None):
        """Look up a medication by public id, scoped to its owner when given"""
        query = Medication.query.filter_by(public_id=public_id)
        if owner_id is not None:
            query = query.filter_by(owner_id=str(owner_id))
        medication = query.first()
        if medication is None:
            # Missing and foreign medications are indistinguishable on purpose
            raise NotFoundError(f'Medication {public_id} does not exist or you do not have access.')
        return medication

    def lock_medication(self, medication_id):
        """Load a medication with a row lock for the rest of the transaction"""
        medication = Medication.query.filter_by(id=medication_id) \
            .with_for_update().populate_existing().first()
        if medication is None:
            raise NotFoundError(f'Medication {medication_id} does not exist or you do not have access.')
        return medication

    def save(self, pattern):
        """Validate and stage a pattern; flushed so the caller sees its id"""
        medication = pattern.medication or db.session.get(Medication, pattern.medication_id)
        max_dose = medication.dose_ceiling if medication else None
        validate_pattern(pattern.sequence, pattern.start_date, pattern.end_date, pattern.notes, max_dose)
        db.session.add(pattern)
        db.session.flush()
        return pattern

    def find_active(self, medication_id):
        """The open-ended pattern for a medication, or None"""
        return DosagePattern.query.filter(
            DosagePattern.medication_id == medication_id,
            DosagePattern.end_date.is_(None)
        ).order_by(DosagePattern.start_date.desc()).first()

    def find_history(self, medication_id, active_only=False, limit=10, offset=0):
        """Page of patterns, newest start date first. Returns (patterns, total_count, limit, offset)"""
        limit = max(1, min(int(limit), HISTORY_MAX_LIMIT))
        offset = max(int(offset), 0)

        query = DosagePattern.query.filter(DosagePattern.medication_id == medication_id)
        if active_only:
            query = query.filter(DosagePattern.end_date.is_(None))

        total_count = query.count()
        patterns = query.order_by(DosagePattern.start_date.desc()) \
            .offset(offset).limit(limit).all()
        return patterns, total_count, limit, offset

    def find_covering(self, medication_id, day):
        """The pattern governing a calendar date, or None"""
        return DosagePattern.query.filter(
            DosagePattern.medication_id == medication_id,
            DosagePattern.start_date <= day,
            db.or_(DosagePattern.end_date.is_(None), DosagePattern.end_date >= day)
        ).order_by(DosagePattern.start_date.desc()).first()

    def find_overlapping(self, medication_id, start_date, end_date=None, exclude_id=None):
        """Patterns whose validity window intersects [start_date, end_date] (end None = unbounded)"""
        query = DosagePattern.query.filter(
            DosagePattern.medication_id == medication_id,
            db.or_(DosagePattern.end_date.is_(None), DosagePattern.end_date >= start_date)
        )
        if end_date is not None:
            query = query.filter(DosagePattern.start_date <= end_date)
        if exclude_id is not None:
            query = query.filter(DosagePattern.id != exclude_id)
        return query.order_by(DosagePattern.start_date).all()

    def find_in_range(self, medication_id, start_date, end_date):
        """Patterns touching [start_date, end_date], oldest first"""
        return self.find_overlapping(medication_id, start_date, end_date)
