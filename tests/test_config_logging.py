"""Config classes, structured log formatting and the demo seed command."""

import json
import logging

import pytest

from querydesk.config import ProductionConfig, TestingConfig, config
from querydesk.middleware.logging_config import JSONFormatter, ReadableFormatter, configure_logging
from querydesk.services import demo_seed


class TestConfig:
    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["RATELIMIT_ENABLED"] is False
        assert app.config["SQLALCHEMY_DATABASE_URI"] == TestingConfig.SQLALCHEMY_DATABASE_URI

    def test_config_names(self):
        assert set(config) == {"development", "testing", "production", "default"}

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            ProductionConfig()

    def test_production_requires_secret_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/querydesk")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError, match="SECRET_KEY"):
            ProductionConfig()


class TestJSONFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("querydesk.test", logging.INFO, __file__, 10, "Query %s approved", (7,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_keys_are_kept(self):
        out = json.loads(JSONFormatter().format(self._record(query_id=7, action="approve", unrelated="x")))

        assert out["message"] == "Query 7 approved"
        assert out["level"] == "INFO"
        assert out["query_id"] == 7
        assert out["action"] == "approve"
        assert "unrelated" not in out

    def test_missing_context_is_omitted(self):
        out = json.loads(JSONFormatter().format(self._record()))
        assert "query_id" not in out

    def test_location_field(self):
        out = json.loads(JSONFormatter().format(self._record()))
        assert out["location"].endswith(":10")


class TestReadableFormatter:
    def test_context_tags(self):
        record = logging.LogRecord("querydesk.test", logging.INFO, __file__, 10, "Query approved", (), None)
        record.query_id = 7
        record.user_id = "OPS001"
        record.duration_ms = 12.4

        line = ReadableFormatter().format(record)

        assert "Query approved [query=7 user=OPS001] (12ms)" in line

    def test_no_tags_without_context(self):
        record = logging.LogRecord("querydesk.test", logging.INFO, __file__, 10, "plain", (), None)
        assert ReadableFormatter().format(record).endswith("plain")


class TestConfigureLogging:
    def test_log_format_override(self, app, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "warning")

        configure_logging(app)

        [handler] = logging.getLogger().handlers
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, app, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "chatty")

        configure_logging(app)

        assert logging.getLogger().level == logging.INFO
        assert isinstance(logging.getLogger().handlers[0].formatter, ReadableFormatter)


class TestDemoSeed:
    def test_seed_is_idempotent(self):
        first = demo_seed.seed_demo()
        second = demo_seed.seed_demo()

        assert first == {"users": 6, "branch_assignments": 3, "queries": 5}
        assert second == {"users": 0, "branch_assignments": 0, "queries": 0}

    def test_seed_cli(self, app):
        result = app.test_cli_runner().invoke(args=["seed-demo"])
        assert result.exit_code == 0
        assert "Seeded demo data" in result.output
