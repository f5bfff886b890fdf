"""
Utility helpers for reading roster importer configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from flask import current_app

from config.base import DEFAULT_SENIOR_POSITION_KEYWORDS as _DEFAULT_KEYWORD_LIST
from config.base import parse_keyword_list

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_ADVISORY_UNIT_NAME = "役員・顧問"
DEFAULT_ADVISORY_CODE_PREFIX = "999999"
DEFAULT_SENIOR_POSITION_KEYWORDS = parse_keyword_list(_DEFAULT_KEYWORD_LIST)


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_roster_import_enabled(app=None) -> bool:
    """Return True when the roster importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("ROSTER_IMPORT_ENABLED", True))


@dataclass(frozen=True)
class RosterImportSettings:
    """Typed view over the ``ROSTER_*`` configuration keys."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_batch_rows: int = 5000
    advisory_unit_name: str = DEFAULT_ADVISORY_UNIT_NAME
    advisory_code_prefix: str = DEFAULT_ADVISORY_CODE_PREFIX
    senior_position_keywords: Tuple[str, ...] = DEFAULT_SENIOR_POSITION_KEYWORDS
    org_lock_enabled: bool = False

    @classmethod
    def from_config(cls, app=None) -> "RosterImportSettings":
        config = _get_config(app)
        try:
            timeout = float(config.get("ROSTER_IMPORT_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        except (TypeError, ValueError):
            timeout = DEFAULT_TIMEOUT_SECONDS
        try:
            max_rows = int(config.get("ROSTER_MAX_BATCH_ROWS", 5000))
        except (TypeError, ValueError):
            max_rows = 5000
        return cls(
            timeout_seconds=timeout if timeout > 0 else DEFAULT_TIMEOUT_SECONDS,
            max_batch_rows=max(1, max_rows),
            advisory_unit_name=config.get("ROSTER_ADVISORY_UNIT_NAME") or DEFAULT_ADVISORY_UNIT_NAME,
            advisory_code_prefix=config.get("ROSTER_ADVISORY_CODE_PREFIX") or DEFAULT_ADVISORY_CODE_PREFIX,
            senior_position_keywords=parse_keyword_list(config.get("ROSTER_SENIOR_POSITION_KEYWORDS"))
            or DEFAULT_SENIOR_POSITION_KEYWORDS,
            org_lock_enabled=bool(config.get("ROSTER_ORG_LOCK_ENABLED", False)),
        )
