"""
Roster importer feature package.

Mounts the admin blueprint and the ``flask roster`` CLI group when the
importer is enabled, and records its state in ``app.extensions``.
"""

from __future__ import annotations

from flask import Flask

from roster_app.utils.importer import RosterImportSettings, is_roster_import_enabled

from .cli import get_disabled_roster_group, roster_cli
from .errors import RosterImportError
from .pipeline import ImportExecutor, ImportPreviewService, RollbackEngine
from .views import roster_import_blueprint

ROSTER_IMPORTER_EXTENSION_KEY = "roster_importer"

__all__ = [
    "init_roster_importer",
    "ROSTER_IMPORTER_EXTENSION_KEY",
    "ImportExecutor",
    "ImportPreviewService",
    "RollbackEngine",
    "RosterImportError",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        ROSTER_IMPORTER_EXTENSION_KEY,
        {"enabled": False, "settings": None, "_blueprint_registered": False},
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = roster_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(roster_cli)
    else:
        app.cli.add_command(get_disabled_roster_group())


def init_roster_importer(app: Flask) -> None:
    """
    Conditionally mount the roster import blueprint and CLI.
    """
    enabled = is_roster_import_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "settings": RosterImportSettings.from_config(app)})

    if not state["_blueprint_registered"]:
        # The blueprint answers 404 on its own while the flag is off
        app.register_blueprint(roster_import_blueprint)
        state["_blueprint_registered"] = True

    _set_cli(app, enabled=enabled)
    if not enabled:
        app.logger.info("Roster importer disabled via ROSTER_IMPORT_ENABLED flag.")
        return

    settings = state["settings"]
    app.logger.info(
        "Roster importer enabled (timeout=%ss, max_rows=%s, org_lock=%s)",
        settings.timeout_seconds,
        settings.max_batch_rows,
        settings.org_lock_enabled,
    )
