from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import text

from dosetrack.errors import ConflictError, NotFoundError, ValidationError
from dosetrack.models import db
from dosetrack.models.dosage_pattern import DosagePattern
from dosetrack.services.pattern_store import PatternStore
from dosetrack.services.schedule_engine import ScheduleEngine
from dosetrack.services.transition_manager import PatternTransitionManager


def all_patterns(medication_id):
    db.session.expire_all()
    return DosagePattern.query.filter_by(medication_id=medication_id) \
        .order_by(DosagePattern.start_date).all()


def test_create_first_pattern_is_open_ended(manager, medication):
    pattern = manager.create_pattern(medication.id, [5, 5, 4], date(2025, 1, 1), notes='Initial')

    assert pattern.end_date is None
    assert pattern.sequence == [Decimal('5'), Decimal('5'), Decimal('4')]
    assert PatternStore().find_active(medication.id).id == pattern.id


def test_close_previous_sets_end_date_day_before(manager, medication):
    first = manager.create_pattern(medication.id, [5], date(2025, 1, 1))
    second = manager.create_pattern(
        medication.id, [4, 4, 3], date(2025, 2, 1),
        notes='Lower dose after INR 3.4', close_previous=True
    )

    patterns = all_patterns(medication.id)
    assert [p.id for p in patterns] == [first.id, second.id]
    assert patterns[0].end_date == date(2025, 1, 31)
    assert patterns[1].end_date is None

    schedule = ScheduleEngine().compute_schedule(medication.id, date(2025, 1, 30), 4, True)
    assert [e.dosage for e in schedule.entries] == [Decimal('5'), Decimal('5'), Decimal('4'), Decimal('4')]
    assert [e.is_pattern_change for e in schedule.entries] == [False, False, True, False]
    assert schedule.entries[2].date == date(2025, 2, 1)
    assert schedule.entries[2].pattern_change_note == 'Lower dose after INR 3.4'


def test_overlap_without_close_previous_is_a_conflict(manager, medication):
    manager.create_pattern(medication.id, [5], date(2025, 1, 1))

    with pytest.raises(ConflictError):
        manager.create_pattern(medication.id, [4], date(2025, 2, 1))

    patterns = all_patterns(medication.id)
    assert len(patterns) == 1
    assert patterns[0].end_date is None


def test_bounded_pattern_before_history_needs_no_closing(manager, medication):
    manager.create_pattern(medication.id, [5], date(2025, 3, 1))

    earlier = manager.create_pattern(medication.id, [4], date(2025, 1, 1), end_date=date(2025, 2, 28))

    assert earlier.end_date == date(2025, 2, 28)
    assert len(all_patterns(medication.id)) == 2


def test_start_before_closed_pattern_end_is_rejected(manager, medication):
    manager.create_pattern(medication.id, [5], date(2025, 1, 1))
    manager.create_pattern(medication.id, [4], date(2025, 2, 1), close_previous=True)
    before = [(p.id, p.start_date, p.end_date) for p in all_patterns(medication.id)]

    with pytest.raises(ConflictError):
        manager.create_pattern(medication.id, [3], date(2025, 1, 15), close_previous=True)

    after = [(p.id, p.start_date, p.end_date) for p in all_patterns(medication.id)]
    assert after == before


def test_start_inside_closed_history_without_open_pattern_is_rejected(manager, medication):
    manager.create_pattern(medication.id, [5], date(2025, 1, 1), end_date=date(2025, 1, 31))

    with pytest.raises(ConflictError):
        manager.create_pattern(medication.id, [3], date(2025, 1, 20), close_previous=True)

    assert len(all_patterns(medication.id)) == 1


def test_invalid_input_changes_nothing(manager, medication):
    manager.create_pattern(medication.id, [5], date(2025, 1, 1))

    with pytest.raises(ValidationError) as exc:
        manager.create_pattern(medication.id, [5, 25], date(2025, 2, 1), close_previous=True)
    assert exc.value.field == 'sequence[1]'

    patterns = all_patterns(medication.id)
    assert len(patterns) == 1
    assert patterns[0].end_date is None


def test_unknown_medication_is_not_found(manager):
    with pytest.raises(NotFoundError):
        manager.create_pattern(9999, [5], date(2025, 1, 1))


def test_lost_race_raises_conflict_and_rolls_back(manager, medication, monkeypatch):
    first = manager.create_pattern(medication.id, [5], date(2025, 1, 1))
    medication_id = medication.id
    find_active = manager.store.find_active

    def racing_find_active(med_id):
        # A concurrent transition for the same medication commits first
        with db.engine.begin() as conn:
            conn.execute(
                text('UPDATE medications SET pattern_version = pattern_version + 1 WHERE id = :id'),
                {'id': med_id}
            )
        return find_active(med_id)

    monkeypatch.setattr(manager.store, 'find_active', racing_find_active)

    with pytest.raises(ConflictError):
        manager.create_pattern(medication_id, [4, 4, 3], date(2025, 2, 1), close_previous=True)

    patterns = all_patterns(medication_id)
    assert [p.id for p in patterns] == [first.id]
    assert patterns[0].end_date is None


def test_transition_bumps_pattern_version(manager, medication):
    version = medication.pattern_version

    manager.create_pattern(medication.id, [5], date(2025, 1, 1))
    db.session.expire_all()

    assert medication.pattern_version == version + 1
    assert medication.patterns_updated_at is not None


def test_audit_snapshots_for_close_and_create(manager, medication, audit_sink):
    first = manager.create_pattern(medication.id, [5], date(2025, 1, 1))
    second = manager.create_pattern(medication.id, [4], date(2025, 2, 1), close_previous=True)

    actions = [(e['action'], e['entity_public_id']) for e in audit_sink.events]
    assert actions == [('create', first.public_id), ('close', first.public_id), ('create', second.public_id)]

    close_event = audit_sink.events[1]
    assert close_event['before']['end_date'] is None
    assert close_event['after']['end_date'] == '2025-01-31'
    assert close_event['medication_id'] == medication.public_id
    assert audit_sink.events[2]['before'] is None


def test_audit_failure_does_not_block_transition(medication, caplog):
    class BrokenSink:
        def emit(self, event):
            raise RuntimeError('collector down')

    manager = PatternTransitionManager(audit_sink=BrokenSink())
    pattern = manager.create_pattern(medication.id, [5], date(2025, 1, 1))

    assert PatternStore().find_active(medication.id).id == pattern.id
    assert 'Audit sink failed' in caplog.text


def test_close_pattern_once(manager, medication, audit_sink):
    pattern = manager.create_pattern(medication.id, [5], date(2025, 1, 1))

    closed = manager.close_pattern(medication.id, pattern.public_id, date(2025, 3, 31))
    assert closed.end_date == date(2025, 3, 31)
    assert PatternStore().find_active(medication.id) is None
    assert audit_sink.events[-1]['action'] == 'close'

    with pytest.raises(ConflictError):
        manager.close_pattern(medication.id, pattern.public_id, date(2025, 4, 30))


def test_close_pattern_validates_end_date(manager, medication):
    pattern = manager.create_pattern(medication.id, [5], date(2025, 1, 1))

    with pytest.raises(ValidationError) as exc:
        manager.close_pattern(medication.id, pattern.public_id, date(2024, 12, 31))
    assert exc.value.field == 'end_date'

    with pytest.raises(NotFoundError):
        manager.close_pattern(medication.id, 'no-such-pattern', date(2025, 2, 1))
