# config/base.py
import os
import warnings
from datetime import timedelta

DEFAULT_SENIOR_POSITION_KEYWORDS = "会長,社長,副社長,専務,常務,取締役,執行役員,監査役,相談役,顧問"
DEV_SECRET_KEY = "dev-secret-key-change-in-production"

_CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.dirname(_CONFIG_DIR)

SQLITE_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 5}}


def _coerce_bool(value, default=False):
    """Map environment strings such as ``"1"``/``"off"`` to bool; anything else yields ``default``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in {"1", "true", "yes", "on"}:
        return True
    if token in {"0", "false", "no", "off"}:
        return False
    return default


def parse_keyword_list(value):
    """
    Split a comma-separated keyword list (or any iterable of keywords),
    dropping blanks and repeats.

    Order matters: earlier keywords rank as more senior.

    Returns:
        tuple[str, ...]: Keywords in declaration order.
    """
    if not value:
        return ()

    if isinstance(value, str):
        value = value.split(",")
    keywords = []
    for token in (str(part).strip() for part in value):
        if token and token not in keywords:
            keywords.append(token)
    return tuple(keywords)


def _parse_positive_number(value, default, cast=int):
    try:
        parsed = cast(value) if value not in (None, "") else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _resolve_secret_key(flask_env):
    """
    SECRET_KEY from the environment.

    Production refuses to start without one; development falls back to a
    fixed key with a warning and testing to a placeholder.
    """
    secret_key = os.environ.get("SECRET_KEY")
    if secret_key:
        return secret_key
    if flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if flask_env == "testing":
        return "test-secret-key-placeholder"
    warnings.warn(
        "SECRET_KEY not set. Using default for development only. "
        "This is insecure and should not be used in production.",
        UserWarning,
    )
    return DEV_SECRET_KEY


def _development_database_uri():
    """``DATABASE_URL`` or a SQLite file under ``instance/``."""
    instance_path = os.path.join(_PROJECT_ROOT, "instance")
    os.makedirs(instance_path, exist_ok=True)
    # SQLite URIs need forward slashes on Windows too
    db_path = os.path.join(instance_path, "roster_dev.db").replace("\\", "/")
    return os.environ.get("DATABASE_URL", f"sqlite:///{db_path}")


def _production_database_uri():
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    return uri


class Config:
    SECRET_KEY = _resolve_secret_key(os.environ.get("FLASK_ENV", "development"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Roster importer
    ROSTER_IMPORT_ENABLED = _coerce_bool(os.environ.get("ROSTER_IMPORT_ENABLED"), default=True)
    ROSTER_IMPORT_TIMEOUT_SECONDS = _parse_positive_number(
        os.environ.get("ROSTER_IMPORT_TIMEOUT_SECONDS"), 300.0, cast=float
    )
    ROSTER_MAX_BATCH_ROWS = _parse_positive_number(os.environ.get("ROSTER_MAX_BATCH_ROWS"), 5000)
    ROSTER_ADVISORY_UNIT_NAME = os.environ.get("ROSTER_ADVISORY_UNIT_NAME", "役員・顧問")
    ROSTER_ADVISORY_CODE_PREFIX = os.environ.get("ROSTER_ADVISORY_CODE_PREFIX", "999999")
    ROSTER_SENIOR_POSITION_KEYWORDS = parse_keyword_list(
        os.environ.get("ROSTER_SENIOR_POSITION_KEYWORDS", DEFAULT_SENIOR_POSITION_KEYWORDS)
    )
    ROSTER_COLUMN_MAPPING_PATH = os.environ.get(
        "ROSTER_COLUMN_MAPPING_PATH",
        os.path.join(_CONFIG_DIR, "mappings", "roster_columns_v1.yaml"),
    )
    ROSTER_ORG_LOCK_ENABLED = _coerce_bool(os.environ.get("ROSTER_ORG_LOCK_ENABLED"), default=False)

    # Session cookies; only the admin API uses them
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _development_database_uri()
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    SQLALCHEMY_ENGINE_OPTIONS = SQLITE_ENGINE_OPTIONS if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = SQLITE_ENGINE_OPTIONS
    ROSTER_IMPORT_ENABLED = True
    ROSTER_ORG_LOCK_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _production_database_uri()
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
