"""Shared pytest fixtures: app factory on a temporary SQLite file, seeded medication."""
from decimal import Decimal

import pytest

from dosetrack import create_app
from dosetrack.config import TestConfig
from dosetrack.models import db
from dosetrack.models.medication import Medication
from dosetrack.services.transition_manager import PatternTransitionManager

OWNER_ID = 'user-1'


class RecordingAuditSink:
    """Collects audit events instead of shipping them anywhere."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)
        return True


@pytest.fixture
def app(tmp_path):
    class FileDbConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{tmp_path / "dosetrack-test.db"}'

    app = create_app(FileDbConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def medication(app):
    med = Medication(owner_id=OWNER_ID, name='Warfarin', dosage_unit='mg', max_single_dose=Decimal('20'))
    db.session.add(med)
    db.session.commit()
    return med


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def manager(app, audit_sink):
    return PatternTransitionManager(audit_sink=audit_sink)


@pytest.fixture
def client(app):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user_id'] = OWNER_ID
    return client
