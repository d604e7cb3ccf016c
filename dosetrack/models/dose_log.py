import uuid
from dosetrack.models import db
from dosetrack.utils.dosage import dose_str
from dosetrack.utils.timezone import now as tz_now

DOSE_LOG_STATUSES = ('scheduled', 'taken', 'skipped', 'partially_taken')


class DoseLog(db.Model):
    __tablename__ = 'dose_logs'

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    medication_id = db.Column(db.Integer, db.ForeignKey('medications.id'), nullable=False, index=True)
    scheduled_time = db.Column(db.DateTime, nullable=False)
    actual_time = db.Column(db.DateTime, nullable=True)
    actual_dosage = db.Column(db.Numeric(10, 3, asdecimal=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='taken')
    notes = db.Column(db.String(1000), nullable=True)
    created_at = db.Column(db.DateTime, default=tz_now)

    def __repr__(self):
        return f'<DoseLog {self.public_id} - Medication {self.medication_id} at {self.scheduled_time}>'

    def to_dict(self):
        return {
            'id': self.public_id,
            'medication_id': self.medication.public_id if self.medication else None,
            'scheduled_time': self.scheduled_time.isoformat() if self.scheduled_time else None,
            'actual_time': self.actual_time.isoformat() if self.actual_time else None,
            'actual_dosage': dose_str(self.actual_dosage),
            'status': self.status,
            'notes': self.notes,
        }
