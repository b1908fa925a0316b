"""
School Results Portal

Administrators manage classes, subjects, students and marks; the public
looks up a single student's marksheet by register number.
"""

from flask import Flask
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect

from result_portal.auth import LoginThrottle
from result_portal.config import PortalConfig, configure_logging
from result_portal.db import Database, verify_schema_version
from result_portal.store import ResultStore

__version__ = '1.0.0'

csrf = CSRFProtect()
migrate = Migrate(directory='migrations')


def create_app(config=None, database=None):
    """Build the Flask app from an explicit config and database client."""
    config = config or PortalConfig.from_env()
    configure_logging(config)

    app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
    app.secret_key = config.secret_key
    app.config['WTF_CSRF_TIME_LIMIT'] = None
    app.config['PORTAL_CONFIG'] = config

    database = database or Database.from_config(config)
    if config.verify_schema_on_startup:
        verify_schema_version(database, strict=config.schema_check_strict)

    app.extensions['result_store'] = ResultStore(
        database,
        grade_config=config.grade_config,
        max_classes=config.max_classes,
    )
    app.extensions['login_throttle'] = LoginThrottle(
        database,
        max_attempts=config.login_max_attempts,
        lock_minutes=config.login_lock_minutes,
    )

    csrf.init_app(app)
    migrate.init_app(app)

    from result_portal.views import bp
    app.register_blueprint(bp)
    return app
