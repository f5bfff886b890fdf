"""Application factory, configuration validation, logging and auth tests"""

import json
import logging

import pytest

from app import create_app
from config.base import _coerce_bool, _parse_positive_number, parse_keyword_list
from config.validation import validate_and_exit, validate_environment
from roster_app.models import AdminLog
from roster_app.utils.importer import DEFAULT_SENIOR_POSITION_KEYWORDS, RosterImportSettings
from roster_app.utils.logging_config import JsonFormatter, setup_logging


class TestConfigParsing:
    """Environment value coercion used by config.base"""

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("maybe", True), (None, True)])
    def test_coerce_bool_defaults(self, raw, expected):
        assert _coerce_bool(raw, default=True) is expected

    def test_keyword_list_keeps_order_and_drops_duplicates(self):
        assert parse_keyword_list("社長, 会長,社長,,顧問") == ("社長", "会長", "顧問")

    def test_positive_number_falls_back(self):
        assert _parse_positive_number("12", 5) == 12
        assert _parse_positive_number("-3", 5) == 5
        assert _parse_positive_number("abc", 5) == 5
        assert _parse_positive_number("2.5", 1.0, cast=float) == 2.5


class TestEnvironmentValidation:
    """validate_environment checks importer and production settings"""

    def test_development_passes_without_overrides(self, monkeypatch):
        monkeypatch.delenv("ROSTER_IMPORT_TIMEOUT_SECONDS", raising=False)
        monkeypatch.delenv("ROSTER_MAX_BATCH_ROWS", raising=False)
        monkeypatch.delenv("ROSTER_COLUMN_MAPPING_PATH", raising=False)

        assert validate_environment("development") == (True, [])

    def test_invalid_importer_values_are_reported(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ROSTER_IMPORT_TIMEOUT_SECONDS", "0")
        monkeypatch.setenv("ROSTER_MAX_BATCH_ROWS", "lots")
        monkeypatch.setenv("ROSTER_COLUMN_MAPPING_PATH", str(tmp_path / "missing.yaml"))

        is_valid, errors = validate_environment("development")

        assert is_valid is False
        assert len(errors) == 3
        assert any("ROSTER_MAX_BATCH_ROWS" in error for error in errors)

    def test_production_requires_secret_and_database(self, monkeypatch):
        monkeypatch.delenv("ROSTER_COLUMN_MAPPING_PATH", raising=False)
        monkeypatch.delenv("ROSTER_IMPORT_TIMEOUT_SECONDS", raising=False)
        monkeypatch.delenv("ROSTER_MAX_BATCH_ROWS", raising=False)
        monkeypatch.setenv("SECRET_KEY", "your-secret-key")
        monkeypatch.delenv("DATABASE_URL", raising=False)

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert any("SECRET_KEY" in error for error in errors)
        assert any("DATABASE_URL" in error for error in errors)

    def test_validate_and_exit_exits_on_errors(self, monkeypatch, capsys):
        monkeypatch.setenv("ROSTER_MAX_BATCH_ROWS", "-1")

        with pytest.raises(SystemExit):
            validate_and_exit("development")

        assert "ROSTER_MAX_BATCH_ROWS" in capsys.readouterr().err


class TestRosterImportSettings:
    """Typed settings read from app.config"""

    def test_settings_from_config(self, app):
        app.config.update(
            ROSTER_IMPORT_TIMEOUT_SECONDS="12.5",
            ROSTER_MAX_BATCH_ROWS="0",
            ROSTER_SENIOR_POSITION_KEYWORDS="社長,会長",
            ROSTER_ORG_LOCK_ENABLED=True,
        )

        settings = RosterImportSettings.from_config(app)

        assert settings.timeout_seconds == 12.5
        assert settings.max_batch_rows == 1
        assert settings.senior_position_keywords == ("社長", "会長")
        assert settings.org_lock_enabled is True

    def test_blank_keywords_fall_back_to_defaults(self, app):
        app.config["ROSTER_SENIOR_POSITION_KEYWORDS"] = ""

        assert RosterImportSettings.from_config(app).senior_position_keywords == DEFAULT_SENIOR_POSITION_KEYWORDS

    def test_keyword_sequence_uses_config_parser(self, app):
        app.config["ROSTER_SENIOR_POSITION_KEYWORDS"] = ("社長", " 会長", "社長", "")

        assert RosterImportSettings.from_config(app).senior_position_keywords == ("社長", "会長")
        assert DEFAULT_SENIOR_POSITION_KEYWORDS == parse_keyword_list(DEFAULT_SENIOR_POSITION_KEYWORDS)
        assert DEFAULT_SENIOR_POSITION_KEYWORDS[0] == "会長"


class TestLogging:
    """JSON formatter and handler wiring"""

    def test_json_formatter_includes_extra_fields(self):
        formatter = JsonFormatter(app_name="Roster Admin")
        record = logging.LogRecord("roster", logging.INFO, __file__, 1, "imported %s", ("BATCH-1",), None)
        record.batch_id = "BATCH-1"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "imported BATCH-1"
        assert payload["batch_id"] == "BATCH-1"
        assert payload["app"] == "Roster Admin"
        assert "msg" not in payload

    def test_file_logging_writes_rotating_log(self, app, tmp_path):
        app.config.update(ENABLE_FILE_LOGGING=True, ENABLE_CONSOLE_LOGGING=False, LOG_DIR=str(tmp_path), LOG_FORMAT="json")

        logger = setup_logging(app)
        logger.warning("roster warning", extra={"organization_id": 3})
        for handler in logger.handlers:
            handler.flush()

        lines = (tmp_path / "roster.log").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["organization_id"] == 3

    def test_disabled_handlers_install_null_handler(self, app):
        logger = setup_logging(app)

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.NullHandler)


class TestApplication:
    """Factory wiring, health check and session login"""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json() == {"status": "ok", "database": "ok"}

    def test_unknown_route_returns_json_404(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}

    def test_metrics_endpoint_when_enabled(self, tmp_path):
        metrics_app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'metrics.db'}",
                "MONITORING_ENABLED": True,
            }
        )

        response = metrics_app.test_client().get("/metrics")

        assert response.status_code == 200
        assert b"roster_import_batches_total" in response.data

    def test_login_and_list_organizations(self, client, admin_user, test_organization):
        assert client.get("/api/organizations").status_code == 401

        response = client.post("/api/auth/login", json={"username": "admin", "password": "adminpass123"})
        assert response.status_code == 200
        assert response.get_json()["isAdmin"] is True
        assert AdminLog.query.filter_by(action="LOGIN").count() == 1

        organizations = client.get("/api/organizations").get_json()["results"]
        assert organizations == [{"id": test_organization.id, "name": "Test Company", "slug": "test-company", "status": "DRAFT"}]

    def test_login_rejects_bad_password(self, client, admin_user):
        response = client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})

        assert response.status_code == 401
