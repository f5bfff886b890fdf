"""Utilities for loading and applying roster column mappings."""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import yaml
from flask import current_app


class MappingLoadError(RuntimeError):
    """Raised when a mapping specification cannot be loaded or validated."""


@dataclass(frozen=True)
class MappingField:
    target: str
    source: str | None = None
    aliases: tuple[str, ...] = ()
    required: bool = False
    default: Any | None = None
    transform: str | None = None

    @property
    def accepted_keys(self) -> tuple[str, ...]:
        keys = (self.source,) if self.source else ()
        return keys + tuple(alias for alias in self.aliases if alias != self.source)


@dataclass(frozen=True)
class MappingTransform:
    name: str
    description: str | None = None


@dataclass(frozen=True)
class MappingSpec:
    version: int
    adapter: str
    object_name: str
    fields: Sequence[MappingField]
    transforms: Mapping[str, MappingTransform]
    checksum: str
    path: Path


def load_mapping(path: str | Path) -> MappingSpec:
    """
    Load and validate a YAML mapping specification.
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Mapping file not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise MappingLoadError(f"Failed to parse mapping YAML at {path}: {exc}") from exc

    try:
        version = int(raw["version"])
        adapter = str(raw["adapter"]).strip()
        object_name = str(raw.get("object", "")).strip() or "Employee"
        fields_payload = raw["fields"]
    except KeyError as exc:
        raise MappingLoadError(f"Missing required mapping attribute: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise MappingLoadError(f"Invalid mapping attribute: {exc}") from exc

    if not adapter:
        raise MappingLoadError("Mapping adapter value cannot be empty.")

    transforms_payload = raw.get("transforms", {}) or {}
    transforms: dict[str, MappingTransform] = {}
    for name, details in transforms_payload.items():
        description = details.get("description") if isinstance(details, Mapping) else None
        transforms[str(name)] = MappingTransform(name=str(name), description=description)

    fields: list[MappingField] = []
    seen_targets: set[str] = set()
    for entry in fields_payload:
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Field definition must be a mapping, got {entry!r}")
        target = entry.get("target")
        if not target:
            raise MappingLoadError(f"Field entry missing 'target': {entry!r}")
        target = str(target).strip()
        if target in seen_targets:
            raise MappingLoadError(f"Duplicate target '{target}' in mapping.")
        seen_targets.add(target)
        source = entry.get("source")
        aliases = tuple(str(alias).strip() for alias in entry.get("aliases") or () if str(alias).strip())
        transform = entry.get("transform")
        if transform and str(transform) not in TRANSFORMS:
            raise MappingLoadError(f"Field '{target}' references unknown transform '{transform}'.")
        mapping_field = MappingField(
            target=target,
            source=str(source).strip() if source else None,
            aliases=aliases,
            required=bool(entry.get("required", False)),
            default=entry.get("default"),
            transform=str(transform).strip() if transform else None,
        )
        if not mapping_field.accepted_keys and mapping_field.default is None:
            raise MappingLoadError(f"Field '{target}' requires either source or default.")
        fields.append(mapping_field)

    return MappingSpec(
        version=version,
        adapter=adapter,
        object_name=object_name,
        fields=tuple(fields),
        transforms=transforms,
        checksum=_compute_checksum(raw),
        path=path,
    )


def get_active_roster_mapping() -> MappingSpec:
    """
    Load the configured roster mapping spec, cached on the app until the file changes.
    """

    config_path = current_app.config.get("ROSTER_COLUMN_MAPPING_PATH")
    if not config_path:
        raise MappingLoadError("ROSTER_COLUMN_MAPPING_PATH is not configured.")
    config_path = Path(config_path)
    if not config_path.exists():
        raise MappingLoadError(f"Mapping file not found at {config_path}")

    cache: dict[str, tuple[MappingSpec, float]] = current_app.extensions.setdefault("_roster_mapping_cache", {})
    current_mtime = config_path.stat().st_mtime
    cached_entry = cache.get(str(config_path))
    if cached_entry and cached_entry[1] == current_mtime:
        return cached_entry[0]

    current_app.logger.debug("Loading roster column mapping from %s", config_path)
    spec = load_mapping(config_path)
    cache[str(config_path)] = (spec, current_mtime)
    return spec


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


# Transforms ------------------------------------------------------------------

EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MAX = 73050
ERA_OFFSETS = {"R": 2018, "H": 1988, "S": 1925}

_ERA_PATTERN = re.compile(r"^([RHS])(\d+)\.(\d+)\.(\d+)$")
_KANJI_DATE_PATTERN = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日")
_WESTERN_DATE_PATTERN = re.compile(r"^(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})$")
_SERIAL_PATTERN = re.compile(r"^\d{5}$")


def strip_value(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_zenkaku_kana(value: Any) -> str | None:
    """Fold half-width katakana (including voiced marks) to full-width."""
    text = strip_value(value)
    if text is None:
        return None
    return unicodedata.normalize("NFKC", text)


def parse_date(value: Any) -> date | None:
    """
    Parse the date notations found in HR exports.

    Unrecognised or out-of-range values yield ``None`` rather than an error.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_excel_serial(int(value))

    text = str(value).strip()
    if not text:
        return None

    try:
        if _SERIAL_PATTERN.match(text):
            return _from_excel_serial(int(text))

        era_match = _ERA_PATTERN.match(text)
        if era_match:
            era, year, month, day = era_match.groups()
            return date(int(year) + ERA_OFFSETS[era], int(month), int(day))

        match = _KANJI_DATE_PATTERN.search(text) or _WESTERN_DATE_PATTERN.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return date(year, month, day)
    except ValueError:
        return None
    return None


def _from_excel_serial(serial: int) -> date | None:
    if serial < 1 or serial > EXCEL_SERIAL_MAX:
        return None
    return EXCEL_EPOCH + timedelta(days=serial)


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "strip": strip_value,
    "zenkaku_kana": to_zenkaku_kana,
    "parse_date": parse_date,
}


# Transformer -----------------------------------------------------------------


@dataclass
class TransformResult:
    canonical: dict[str, Any]
    unmapped_fields: dict[str, Any]
    errors: list[str] = field(default_factory=list)


class RosterMappingTransformer:
    """Apply a mapping spec to one raw roster row."""

    def __init__(self, spec: MappingSpec):
        self.spec = spec

    def transform(self, payload: Mapping[str, Any]) -> TransformResult:
        canonical: dict[str, Any] = {}
        unmapped = dict(payload)
        errors: list[str] = []

        for mapping_field in self.spec.fields:
            raw_value = None
            for key in mapping_field.accepted_keys:
                if key in payload:
                    unmapped.pop(key, None)
                    if raw_value is None or strip_value(raw_value) is None:
                        raw_value = payload[key]

            value = raw_value
            if mapping_field.transform:
                value = TRANSFORMS[mapping_field.transform](raw_value)
            elif isinstance(value, str):
                value = strip_value(value)

            if value is None and mapping_field.default is not None:
                value = mapping_field.default
            if value is None and mapping_field.required:
                errors.append(f"Missing required field '{mapping_field.source or mapping_field.target}'")
            canonical[mapping_field.target] = value

        return TransformResult(canonical=canonical, unmapped_fields=unmapped, errors=errors)
