"""
Logging configuration for dosetrack.

Two formatters:
- ConsoleFormatter: human-readable output (default)
- JSONFormatter: one JSON object per line (LOG_JSON=1), for log shippers

Usage:
    from dosetrack.utils.logging_config import configure_logging
    configure_logging(json_mode=app.config['LOG_JSON'], level=app.config['LOG_LEVEL'])
"""
import json
import logging
import sys

PACKAGE_LOGGER = 'dosetrack'


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': self.formatTime(record, '%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if hasattr(record, 'medication_id'):
            entry['medication_id'] = record.medication_id
        if record.exc_info and record.exc_info[1]:
            entry['error'] = {
                'type': type(record.exc_info[1]).__name__,
                'message': str(record.exc_info[1]),
            }
        return json.dumps(entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter with level-based prefixes."""

    FORMATS = {
        logging.DEBUG: '[DEBUG] %(name)s: %(message)s',
        logging.INFO: '[INFO] %(name)s: %(message)s',
        logging.WARNING: '[WARN] %(name)s: %(message)s',
        logging.ERROR: '[ERROR] %(name)s: %(message)s',
        logging.CRITICAL: '[CRIT] %(name)s: %(message)s',
    }

    def format(self, record: logging.LogRecord) -> str:
        fmt = self.FORMATS.get(record.levelno, '[%(levelname)s] %(message)s')
        return logging.Formatter(fmt).format(record)


def configure_logging(*, json_mode: bool = False, level='INFO') -> logging.Logger:
    """
    Configure the package logger with a single stderr handler.

    Records still propagate to the root logger, so test log capture
    and host application handlers keep working.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(JSONFormatter() if json_mode else ConsoleFormatter())
    logger.addHandler(console)
    return logger
