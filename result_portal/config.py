import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

from result_portal.grading import (
    DEFAULT_MARKS_MAX,
    DEFAULT_PASS_MARK,
    PERCENTAGE_POLICY,
    get_grade_config,
)

DEFAULT_MAX_CLASSES = 12
LOGIN_MAX_ATTEMPTS = 4
LOGIN_LOCK_MINUTES = 15


def _env_flag(environ, name, default=''):
    return environ.get(name, default).strip().lower() in ('1', 'true', 'yes')


def _env_int(environ, name, default):
    raw = environ.get(name, '').strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


@dataclass
class PortalConfig:
    """Runtime settings for one portal deployment."""

    secret_key: str
    database_url: str
    admin_email: str
    admin_password_hash: str
    grading_policy: str = PERCENTAGE_POLICY
    pass_mark: int = DEFAULT_PASS_MARK
    marks_max: int = DEFAULT_MARKS_MAX
    max_classes: int = DEFAULT_MAX_CLASSES
    log_file: str = 'app.log'
    log_level: str = 'INFO'
    verify_schema_on_startup: bool = True
    schema_check_strict: bool = False
    db_connect_timeout: int = 10
    trust_proxy_headers: bool = False
    login_max_attempts: int = LOGIN_MAX_ATTEMPTS
    login_lock_minutes: int = LOGIN_LOCK_MINUTES
    grade_config: dict = field(init=False, repr=False)

    def __post_init__(self):
        self.admin_email = (self.admin_email or '').strip().lower()
        if not self.admin_email:
            raise RuntimeError("ADMIN_EMAIL is required. Set it in environment variables.")
        try:
            self.grade_config = get_grade_config(self.grading_policy, self.pass_mark, self.marks_max)
        except ValueError as exc:
            raise RuntimeError(f"Invalid grading configuration: {exc}") from exc
        self.grading_policy = self.grade_config['policy']
        if not 1 <= self.max_classes <= 100:
            raise RuntimeError("MAX_CLASSES must be between 1 and 100.")

    @classmethod
    def from_env(cls, environ=None):
        """Read settings from the process environment (and .env when present)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        allow_insecure = _env_flag(environ, 'ALLOW_INSECURE_DEFAULTS')
        secret_key = environ.get('SECRET_KEY', '').strip()
        if not secret_key:
            if allow_insecure:
                secret_key = 'dev-secret-key-change-me'
            else:
                raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
        if not allow_insecure and len(secret_key) < 32:
            raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")

        database_url = environ.get('DATABASE_URL', '').strip()
        if not database_url.startswith(('postgres://', 'postgresql://')):
            raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")

        admin_password = environ.get('ADMIN_PASSWORD', '').strip()
        if not admin_password:
            raise RuntimeError("ADMIN_PASSWORD is required. Set it in environment variables.")
        if len(admin_password) < 12:
            raise RuntimeError("ADMIN_PASSWORD is too short. Use at least 12 characters.")

        if allow_insecure:
            logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

        return cls(
            secret_key=secret_key,
            database_url=database_url,
            admin_email=environ.get('ADMIN_EMAIL', ''),
            admin_password_hash=generate_password_hash(admin_password),
            grading_policy=environ.get('GRADING_POLICY', PERCENTAGE_POLICY),
            pass_mark=_env_int(environ, 'PASS_MARK', DEFAULT_PASS_MARK),
            marks_max=_env_int(environ, 'MARKS_MAX', DEFAULT_MARKS_MAX),
            max_classes=_env_int(environ, 'MAX_CLASSES', DEFAULT_MAX_CLASSES),
            log_file=environ.get('LOG_FILE', 'app.log').strip(),
            log_level=environ.get('LOG_LEVEL', 'INFO').strip().upper() or 'INFO',
            verify_schema_on_startup=_env_flag(environ, 'VERIFY_SCHEMA_ON_STARTUP', '1'),
            schema_check_strict=_env_flag(environ, 'SCHEMA_CHECK_STRICT', '0'),
            db_connect_timeout=_env_int(environ, 'DB_CONNECT_TIMEOUT', 10),
            trust_proxy_headers=_env_flag(environ, 'TRUST_PROXY_HEADERS'),
            login_max_attempts=_env_int(environ, 'LOGIN_MAX_ATTEMPTS', LOGIN_MAX_ATTEMPTS),
            login_lock_minutes=_env_int(environ, 'LOGIN_LOCK_MINUTES', LOGIN_LOCK_MINUTES),
        )


def configure_logging(config):
    """Configure root logging once per process."""
    level = getattr(logging, config.log_level, logging.INFO)
    options = {
        'level': level,
        'format': '%(asctime)s - %(levelname)s - %(message)s',
    }
    if config.log_file:
        options['filename'] = config.log_file
    logging.basicConfig(**options)
