# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, current_app, jsonify
from flask_login import LoginManager
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from roster_app.importer import init_roster_importer  # noqa: E402
from roster_app.models import User, db  # noqa: E402
from roster_app.routes import init_routes  # noqa: E402
from roster_app.utils.logging_config import setup_logging  # noqa: E402
from roster_app.utils.monitoring import init_monitoring  # noqa: E402

logger = logging.getLogger(__name__)

_CONFIGS = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}


def _configure_sqlite_connection_factory(*, enable_foreign_keys: bool):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)
        finally:
            cursor.close()

    return _configure_sqlite_connection


def _begin_sqlite_transaction(conn):  # pragma: no cover - instrumentation
    conn.exec_driver_sql("BEGIN")


def _configure_sqlite(app):
    engine = db.engine
    if not engine.url.drivername.startswith("sqlite"):
        return
    if getattr(engine, "_sqlite_pragmas_configured", False):
        return
    pragma_hook = _configure_sqlite_connection_factory(enable_foreign_keys=not app.config.get("TESTING", False))
    event.listen(engine, "connect", pragma_hook)
    event.listen(engine, "begin", _begin_sqlite_transaction)
    engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]


def create_app(config_overrides=None):
    """Build the Flask application for FLASK_ENV, applying optional config overrides."""
    flask_env = os.environ.get("FLASK_ENV", "development")
    # Validate environment variables (only fatal in production)
    if flask_env == "production":
        validate_and_exit(flask_env)

    app = Flask(__name__)
    config_class, monitoring_class = _CONFIGS.get(flask_env, _CONFIGS["development"])
    app.config.from_object(config_class)
    app.config.from_object(monitoring_class)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    login_manager = LoginManager()
    login_manager.init_app(app)

    # Register login manager in app extensions for testing
    app.extensions["login_manager"] = login_manager

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(User, int(user_id))
        except (ValueError, TypeError):
            # Invalid user_id format
            return None
        except SQLAlchemyError as e:
            current_app.logger.error(f"Error loading user {user_id}: {str(e)}")
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required."}), 401

    # Initialize monitoring and logging systems
    setup_logging(app)
    init_monitoring(app)

    with app.app_context():
        _configure_sqlite(app)
        # Create the database tables only if not in testing mode
        if not app.config.get("TESTING", False):
            db.create_all()

    init_routes(app)
    init_roster_importer(app)

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
