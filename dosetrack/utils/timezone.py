"""
Timezone utilities for dosetrack
Calendar dates are evaluated in the configured APP_TIMEZONE
Database stores naive timestamps already expressed in that zone
"""
from datetime import datetime
import pytz
from flask import current_app, has_app_context

DEFAULT_TZ_NAME = 'UTC'


def app_tz():
    """Get the configured pytz timezone (UTC outside an app context)"""
    name = DEFAULT_TZ_NAME
    if has_app_context():
        name = current_app.config.get('APP_TIMEZONE') or DEFAULT_TZ_NAME
    return pytz.timezone(name)


def now():
    """Get current datetime in the app timezone as naive datetime for database compatibility"""
    local_time = datetime.now(app_tz())
    # Return as naive datetime (remove timezone info for database storage)
    return local_time.replace(tzinfo=None)


def today():
    """Get today's calendar date in the app timezone"""
    return now().date()


def to_local(dt):
    """Convert any datetime to the app timezone and return as naive"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Already naive, assume it's in app time
        return dt
    return dt.astimezone(app_tz()).replace(tzinfo=None)


def local_date(dt):
    """Calendar date a datetime falls on in the app timezone"""
    if dt is None:
        return None
    return to_local(dt).date()
