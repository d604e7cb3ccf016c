import os
from decimal import Decimal
from pathlib import Path


class Config:
    # Base directory
    BASE_DIR = Path(__file__).parent.parent

    # Secret key for session management
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database configuration
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        f'sqlite:///{BASE_DIR / "instance" / "dosetrack.db"}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # All calendar dates (schedule days, dose log dates) are taken in this zone
    APP_TIMEZONE = os.environ.get('APP_TIMEZONE') or 'UTC'

    # Dosage pattern rules
    DEFAULT_MAX_SINGLE_DOSE = Decimal(os.environ.get('DEFAULT_MAX_SINGLE_DOSE') or '1000')
    MAX_PATTERN_LENGTH = 365
    PATTERN_NOTES_MAX_LENGTH = 500

    # Schedule computation
    SCHEDULE_DEFAULT_DAYS = 14
    SCHEDULE_MAX_DAYS = 365

    # Variance / adherence analytics
    VARIANCE_TOLERANCE = Decimal('0.01')
    ON_TIME_WINDOW_MINUTES = 60

    # Audit sink (best effort, never blocks a pattern transaction)
    AUDIT_SINK_URL = os.environ.get('AUDIT_SINK_URL')
    AUDIT_SINK_TIMEOUT = 5  # seconds

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_JSON = os.environ.get('LOG_JSON', '').lower() in ('1', 'true', 'yes')


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    AUDIT_SINK_URL = None
