"""Importer bookkeeping models."""

from .schema import ChangeLogEntry, ChangeType, EntityType

__all__ = ["ChangeLogEntry", "ChangeType", "EntityType"]
