import json
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from dosetrack.models import db
from dosetrack.utils.dosage import format_dose, dose_str
from dosetrack.utils.timezone import now as tz_now


@dataclass(frozen=True)
class PatternSpan:
    """Immutable view of a dosage pattern used by the schedule engine."""

    id: int
    public_id: str
    sequence: Tuple[Decimal, ...]
    start_date: date
    end_date: Optional[date] = None
    notes: Optional[str] = None
    unit: str = 'mg'

    @property
    def length(self):
        return len(self.sequence)

    def covers(self, day):
        return self.start_date <= day and (self.end_date is None or self.end_date >= day)

    def display(self):
        return display_pattern(self.sequence, self.unit)


def display_pattern(sequence, unit='mg'):
    """Human-readable pattern, e.g. '4mg, 4mg, 3mg (3-day cycle)'"""
    if not sequence:
        return 'Empty pattern'
    values = ', '.join(f'{format_dose(d)}{unit}' for d in sequence)
    return f'{values} ({len(sequence)}-day cycle)'


class DosagePattern(db.Model):
    __tablename__ = 'dosage_patterns'

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    medication_id = db.Column(db.Integer, db.ForeignKey('medications.id'), nullable=False, index=True)
    sequence_json = db.Column(db.Text, nullable=False)  # JSON list of decimal strings, e.g. ["5", "5", "4"]
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)  # NULL = open-ended, currently active
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=tz_now)
    updated_at = db.Column(db.DateTime, default=tz_now, onupdate=tz_now)

    __table_args__ = (
        # At most one open-ended pattern per medication
        db.Index(
            'uq_dosage_patterns_open_per_medication',
            'medication_id',
            unique=True,
            sqlite_where=db.text('end_date IS NULL'),
            postgresql_where=db.text('end_date IS NULL'),
        ),
        db.CheckConstraint('end_date IS NULL OR end_date >= start_date', name='ck_dosage_patterns_dates'),
    )

    def __repr__(self):
        return f'<DosagePattern {self.public_id} - Medication {self.medication_id} from {self.start_date}>'

    @property
    def sequence(self):
        if not self.sequence_json:
            return []
        return [Decimal(v) for v in json.loads(self.sequence_json)]

    @sequence.setter
    def sequence(self, values):
        self.sequence_json = json.dumps([str(v) for v in values])

    @property
    def pattern_length(self):
        return len(self.sequence)

    @property
    def is_open(self):
        return self.end_date is None

    @property
    def average_dosage(self):
        seq = self.sequence
        if not seq:
            return Decimal('0')
        return (sum(seq) / len(seq)).quantize(Decimal('0.01'))

    def display_pattern(self):
        unit = self.medication.dosage_unit if self.medication else 'mg'
        return display_pattern(self.sequence, unit)

    def to_span(self):
        return PatternSpan(
            id=self.id,
            public_id=self.public_id,
            sequence=tuple(self.sequence),
            start_date=self.start_date,
            end_date=self.end_date,
            notes=self.notes,
            unit=self.medication.dosage_unit if self.medication else 'mg',
        )

    def to_dict(self):
        return {
            'id': self.public_id,
            'medication_id': self.medication.public_id if self.medication else None,
            'sequence': [dose_str(d) for d in self.sequence],
            'pattern_length': self.pattern_length,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'notes': self.notes,
            'is_open': self.is_open,
            'average_dosage': dose_str(self.average_dosage),
            'display_pattern': self.display_pattern(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
