from flask import Flask
from dosetrack.models import db
from dosetrack.config import Config
from dosetrack.utils.logging_config import configure_logging
from flask_migrate import Migrate

migrate = Migrate()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(json_mode=app.config['LOG_JSON'], level=app.config['LOG_LEVEL'])

    # Initialize database
    db.init_app(app)

    # Initialize Flask-Migrate
    migrate.init_app(app, db)

    # Register blueprints
    from dosetrack.api.routes import api_bp
    app.register_blueprint(api_bp)

    # Import models to register them with SQLAlchemy
    with app.app_context():
        from dosetrack.models.medication import Medication
        from dosetrack.models.dosage_pattern import DosagePattern
        from dosetrack.models.dose_log import DoseLog
        db.create_all()

    return app
