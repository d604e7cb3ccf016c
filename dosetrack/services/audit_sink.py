"""
Audit sink for dosage pattern snapshots
Every pattern create/close emits a before/after snapshot; delivery is best effort
"""
import logging
import requests
from flask import current_app

from dosetrack.utils.timezone import now as tz_now

logger = logging.getLogger(__name__)


def build_audit_event(action, medication, before, after):
    """Audit payload for one pattern record"""
    entity = after or before or {}
    return {
        'type': 'dosage_pattern_audit',
        'action': action,
        'entity_type': 'DosagePattern',
        'entity_public_id': entity.get('id'),
        'medication_id': medication.public_id,
        'performed_by': medication.owner_id,
        'occurred_at': tz_now().isoformat(),
        'before': before,
        'after': after,
    }


class LoggingAuditSink:
    """Writes audit events to the application log"""

    def emit(self, event):
        logger.info(
            "Audit %s %s for medication %s",
            event['action'], event['entity_public_id'], event['medication_id']
        )
        return True


class HttpAuditSink:
    """POSTs audit events as JSON to an external collector"""

    def __init__(self, url, timeout=5):
        self.url = url
        self.timeout = timeout

    def emit(self, event):
        try:
            response = requests.post(self.url, json=event, timeout=self.timeout)
            if response.status_code >= 400:
                logger.warning(
                    "Audit sink rejected %s event for %s: HTTP %s",
                    event['action'], event['entity_public_id'], response.status_code
                )
                return False
            return True
        except requests.exceptions.RequestException as e:
            logger.warning("Audit sink unreachable for %s event: %s", event['action'], e)
            return False


def get_audit_sink():
    """Sink configured for the current app (stored under app.extensions)"""
    sink = current_app.extensions.get('dosetrack_audit_sink')
    if sink is None:
        url = current_app.config.get('AUDIT_SINK_URL')
        if url:
            sink = HttpAuditSink(url, timeout=current_app.config.get('AUDIT_SINK_TIMEOUT', 5))
        else:
            sink = LoggingAuditSink()
        current_app.extensions['dosetrack_audit_sink'] = sink
    return sink


def emit_safely(sink, events):
    """Deliver events, logging and swallowing any sink failure"""
    delivered = 0
    for event in events:
        try:
            if sink.emit(event):
                delivered += 1
        except Exception:
            logger.exception("Audit sink failed for %s event", event.get('action'))
    return delivered
