"""
API Routes for dosage patterns, schedules and dose logs
"""
from datetime import datetime
from functools import wraps

from flask import Blueprint, request, jsonify, session, current_app

from dosetrack.errors import DosingError, ValidationError
from dosetrack.models import db
from dosetrack.models.medication import Medication
from dosetrack.models.dose_log import DoseLog
from dosetrack.services.pattern_store import PatternStore
from dosetrack.services.schedule_engine import ScheduleEngine
from dosetrack.services.transition_manager import PatternTransitionManager
from dosetrack.services.variance_tracker import VarianceTracker
from dosetrack.utils.dosage import to_dose
from dosetrack.utils.timezone import today as tz_today, to_local

api_bp = Blueprint('api', __name__, url_prefix='/api')


def login_required_api(f):
    """Decorator for API routes requiring an identity supplied by the auth layer"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


@api_bp.errorhandler(DosingError)
def handle_dosing_error(e):
    return jsonify(e.to_dict()), e.status_code


def parse_date(value, field, required=True):
    """Parse a YYYY-MM-DD string"""
    if value in (None, ''):
        if required:
            raise ValidationError(field, f'{field} is required')
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError) as e:
        raise ValidationError(field, f'{field} must be a date in YYYY-MM-DD format', cause=e)


def parse_datetime(value, field, required=True):
    """Parse an ISO 8601 timestamp into a naive app-local datetime"""
    if value in (None, ''):
        if required:
            raise ValidationError(field, f'{field} is required')
        return None
    try:
        return to_local(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except (AttributeError, TypeError, ValueError) as e:
        raise ValidationError(field, f'{field} must be an ISO 8601 timestamp', cause=e)


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes')


def parse_int(value, field, default):
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(field, f'{field} must be an integer', cause=e)


def current_medication(medication_id):
    """Medication owned by the session user (404 otherwise)"""
    return PatternStore().get_medication(medication_id, owner_id=session['user_id'])


@api_bp.route('/medications', methods=['POST'])
@login_required_api
def create_medication():
    """Register a medication whose dosing will be tracked by patterns"""
    data = request.get_json() or {}

    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('name', 'Medication name is required')

    max_dose = data.get('maxSingleDose')
    medication = Medication(
        owner_id=str(session['user_id']),
        name=name,
        dosage_unit=data.get('dosageUnit') or 'mg',
        max_single_dose=to_dose(max_dose, 'maxSingleDose') if max_dose is not None else None,
    )
    try:
        db.session.add(medication)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return jsonify({'success': True, 'medication': medication.to_dict()}), 201


@api_bp.route('/medications/<string:medication_id>/patterns', methods=['POST'])
@login_required_api
def create_pattern(medication_id):
    """Create a dosage pattern, optionally closing the active one"""
    data = request.get_json() or {}
    medication = current_medication(medication_id)

    pattern = PatternTransitionManager().create_pattern(
        medication.id,
        sequence=data.get('sequence'),
        start_date=parse_date(data.get('startDate'), 'startDate'),
        end_date=parse_date(data.get('endDate'), 'endDate', required=False),
        notes=data.get('notes'),
        close_previous=parse_bool(data.get('closePrevious')),
    )

    return jsonify({'success': True, 'pattern': pattern.to_dict()}), 201


@api_bp.route('/medications/<string:medication_id>/patterns/active', methods=['GET'])
@login_required_api
def get_active_pattern(medication_id):
    """Currently open pattern for a medication"""
    medication = current_medication(medication_id)
    pattern = PatternStore().find_active(medication.id)

    if not pattern:
        return jsonify({
            'error': 'No active pattern',
            'message': f'No active dosage pattern found for medication {medication_id}'
        }), 404

    return jsonify({'success': True, 'pattern': pattern.to_dict()}), 200


@api_bp.route('/medications/<string:medication_id>/patterns', methods=['GET'])
@login_required_api
def get_pattern_history(medication_id):
    """Pattern history, newest start date first"""
    medication = current_medication(medication_id)

    patterns, total_count, limit, offset = PatternStore().find_history(
        medication.id,
        active_only=parse_bool(request.args.get('activeOnly')),
        limit=parse_int(request.args.get('limit'), 'limit', 10),
        offset=parse_int(request.args.get('offset'), 'offset', 0),
    )

    return jsonify({
        'success': True,
        'medication_id': medication.public_id,
        'total_count': total_count,
        'limit': limit,
        'offset': offset,
        'patterns': [p.to_dict() for p in patterns]
    }), 200


@api_bp.route('/medications/<string:medication_id>/patterns/<string:pattern_id>/close', methods=['POST'])
@login_required_api
def close_pattern(medication_id, pattern_id):
    """Close an open pattern on the given end date"""
    data = request.get_json() or {}
    medication = current_medication(medication_id)

    pattern = PatternTransitionManager().close_pattern(
        medication.id,
        pattern_id,
        parse_date(data.get('endDate'), 'endDate'),
    )

    return jsonify({'success': True, 'pattern': pattern.to_dict()}), 200


@api_bp.route('/medications/<string:medication_id>/schedule', methods=['GET'])
@login_required_api
def get_schedule(medication_id):
    """Day-by-day expected doses with summary statistics"""
    medication = current_medication(medication_id)

    start_date = parse_date(request.args.get('startDate'), 'startDate', required=False) or tz_today()
    days = parse_int(request.args.get('days'), 'days', current_app.config['SCHEDULE_DEFAULT_DAYS'])
    include_transitions = parse_bool(request.args.get('includeTransitions'), default=True)

    schedule = ScheduleEngine().compute_schedule(medication.id, start_date, days, include_transitions)

    response = schedule.to_dict()
    response.update({
        'success': True,
        'medication_id': medication.public_id,
        'medication_name': medication.name,
        'dosage_unit': medication.dosage_unit,
    })
    return jsonify(response), 200


@api_bp.route('/medications/<string:medication_id>/logs', methods=['POST'])
@login_required_api
def log_dose(medication_id):
    """Record a taken dose and return it with variance attached"""
    data = request.get_json() or {}
    medication = current_medication(medication_id)

    enriched = VarianceTracker().record_dose(
        medication,
        scheduled_time=parse_datetime(data.get('scheduledTime'), 'scheduledTime'),
        actual_time=parse_datetime(data.get('actualTime'), 'actualTime', required=False),
        actual_dosage=data.get('actualDosage'),
        status=data.get('status') or 'taken',
        notes=data.get('notes'),
    )

    return jsonify({'success': True, 'log': enriched.to_dict()}), 201


@api_bp.route('/medications/<string:medication_id>/logs', methods=['GET'])
@login_required_api
def get_dose_logs(medication_id):
    """Dose logs in a date range with variance and an adherence summary"""
    medication = current_medication(medication_id)

    from_date = parse_date(request.args.get('from'), 'from', required=False)
    to_date = parse_date(request.args.get('to'), 'to', required=False)

    query = DoseLog.query.filter(DoseLog.medication_id == medication.id)
    if from_date:
        query = query.filter(DoseLog.scheduled_time >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        query = query.filter(DoseLog.scheduled_time <= datetime.combine(to_date, datetime.max.time()))
    logs = query.order_by(DoseLog.scheduled_time).all()

    tracker = VarianceTracker()
    enriched = tracker.enrich_many(logs)

    return jsonify({
        'success': True,
        'medication_id': medication.public_id,
        'logs': [e.to_dict() for e in enriched],
        'summary': tracker.summarize(enriched).to_dict()
    }), 200
