#!/usr/bin/env python3
"""
Development server runner for dosetrack
Loads .env, reports the dosing configuration and pattern timeline state, then serves the API

    python start.py           # report and serve with debug and reload
    python start.py --check   # report and exit

Schema changes go through Flask-Migrate:

    flask --app dosetrack:create_app db migrate -m "..."
    flask --app dosetrack:create_app db upgrade
"""
import os
import sys
from pathlib import Path


def load_environment():
    """Load .env before the Config class reads os.environ"""
    env_file = Path(__file__).parent / '.env'

    if env_file.exists():
        from dotenv import load_dotenv
        load_dotenv(env_file)
        print(f"✓ Environment variables loaded from {env_file.name}")
    else:
        print("ℹ️  No .env file found (using defaults)")

    os.environ.setdefault('FLASK_APP', 'dosetrack:create_app')


def ensure_sqlite_directory(uri):
    """Create the parent directory of a file-backed SQLite database"""
    prefix = 'sqlite:///'
    if not uri.startswith(prefix) or uri == prefix:
        return
    db_path = Path(uri[len(prefix):])
    db_path.parent.mkdir(parents=True, exist_ok=True)
    state = "existing" if db_path.exists() else "new"
    print(f"✓ SQLite database ({state}): {db_path}")


def report_configuration(app):
    cfg = app.config
    audit = cfg['AUDIT_SINK_URL'] or 'application log'

    print("\n" + "="*60)
    print("⚙️  dosetrack configuration")
    print("="*60)
    print(f"Timezone for calendar dates: {cfg['APP_TIMEZONE']}")
    print(f"Default max single dose: {cfg['DEFAULT_MAX_SINGLE_DOSE']}")
    print(f"Pattern length limit: {cfg['MAX_PATTERN_LENGTH']} days")
    print(f"Schedule window: default {cfg['SCHEDULE_DEFAULT_DAYS']}, max {cfg['SCHEDULE_MAX_DAYS']} days")
    print(f"Variance tolerance: {cfg['VARIANCE_TOLERANCE']}")
    print(f"Audit sink: {audit} (timeout {cfg['AUDIT_SINK_TIMEOUT']}s)")
    print(f"Logging: {cfg['LOG_LEVEL']}{' as JSON' if cfg['LOG_JSON'] else ''}")


def report_timeline_state(app):
    """Counts of medications and patterns, warning about medications with no open pattern"""
    from dosetrack.models import db
    from dosetrack.models.medication import Medication
    from dosetrack.models.dosage_pattern import DosagePattern

    with app.app_context():
        medications = Medication.query.count()
        patterns = DosagePattern.query.count()
        open_ids = {
            row[0] for row in db.session.query(DosagePattern.medication_id)
            .filter(DosagePattern.end_date.is_(None)).all()
        }

    print(f"Medications: {medications}")
    print(f"Dosage patterns: {patterns} ({len(open_ids)} open)")
    without_open = medications - len(open_ids)
    if without_open:
        print(f"⚠️  {without_open} medication(s) have no open pattern; future schedule days will be gaps")
    print("="*60)


def run_development_server(app):
    """Run Flask development server with debug and reload"""
    port = int(os.environ.get('PORT', 7878))
    host = os.environ.get('HOST', '0.0.0.0')

    print(f"\n🚀 Serving /api on http://localhost:{port} (debug, auto-reload)\n")
    app.run(host=host, port=port, debug=True, use_reloader=True)


def main():
    check_only = '--check' in sys.argv[1:]

    try:
        load_environment()

        from dosetrack import create_app
        from dosetrack.config import Config

        ensure_sqlite_directory(Config.SQLALCHEMY_DATABASE_URI)
        app = create_app()

        report_configuration(app)
        report_timeline_state(app)

        if not check_only:
            run_development_server(app)
    except KeyboardInterrupt:
        print("\n\n👋 Server stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"\n❌ Fatal error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
