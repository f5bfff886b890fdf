# config/validation.py

"""
Environment variable validation for the roster admin application.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def _is_positive_number(raw: str) -> bool:
    try:
        return float(raw) > 0
    except ValueError:
        return False


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Importer settings are validated in every environment
    for key in ("ROSTER_IMPORT_TIMEOUT_SECONDS", "ROSTER_MAX_BATCH_ROWS"):
        raw = os.environ.get(key)
        if raw not in (None, "") and not _is_positive_number(raw):
            errors.append(f"{key} must be a positive number (got {raw!r})")

    mapping_path = os.environ.get("ROSTER_COLUMN_MAPPING_PATH")
    if mapping_path and not os.path.exists(mapping_path):
        errors.append(f"ROSTER_COLUMN_MAPPING_PATH points to a missing file: {mapping_path}")

    if flask_env != "production":
        return len(errors) == 0, errors

    # Production validations
    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )

    is_valid = len(errors) == 0
    return is_valid, errors


def format_validation_report(errors: List[str]) -> str:
    """Numbered, banner-framed list of validation errors for stderr."""
    rule = "=" * 80
    lines = [rule, "ROSTER ADMIN: ENVIRONMENT VALIDATION FAILED", rule, ""]
    lines.extend(f"{index}. {error}" for index, error in enumerate(errors, 1))
    lines.extend(["", "Check the .env file or the process environment.", rule])
    return "\n".join(lines)


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate the environment and exit with status 1 when anything is wrong.

    Called by the application factory before a production app is built.
    """
    is_valid, errors = validate_environment(flask_env)
    if not is_valid:
        print(format_validation_report(errors), file=sys.stderr)
        sys.exit(1)
