import uuid
from flask import current_app
from dosetrack.models import db
from dosetrack.utils.dosage import dose_str
from dosetrack.utils.timezone import now as tz_now


class Medication(db.Model):
    __tablename__ = 'medications'

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(100), nullable=False, index=True)  # supplied by the identity provider
    name = db.Column(db.String(200), nullable=False)
    dosage_unit = db.Column(db.String(20), nullable=False, default='mg')
    max_single_dose = db.Column(db.Numeric(10, 3, asdecimal=True), nullable=True)  # falls back to DEFAULT_MAX_SINGLE_DOSE
    pattern_version = db.Column(db.Integer, nullable=False, default=1)  # bumped on every pattern transition
    patterns_updated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=tz_now)

    # Relationships
    dosage_patterns = db.relationship('DosagePattern', backref='medication', lazy=True,
                                      order_by='DosagePattern.start_date')
    dose_logs = db.relationship('DoseLog', backref='medication', lazy=True)

    # UPDATE ... WHERE pattern_version = <loaded>; a concurrent transition raises StaleDataError
    __mapper_args__ = {'version_id_col': pattern_version}

    def __repr__(self):
        return f'<Medication {self.name} - {self.public_id}>'

    @property
    def dose_ceiling(self):
        """Largest single dose a pattern for this medication may contain"""
        if self.max_single_dose is not None:
            return self.max_single_dose
        return current_app.config['DEFAULT_MAX_SINGLE_DOSE']

    def to_dict(self):
        return {
            'id': self.public_id,
            'name': self.name,
            'dosage_unit': self.dosage_unit,
            'max_single_dose': dose_str(self.max_single_dose),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
