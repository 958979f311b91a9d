"""Tests for environment-driven process settings."""

import pytest
from pydantic import ValidationError

from cronspine.core.settings import CronSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in (
        "DATABASE_URL",
        "TABLE_PREFIX",
        "LOG_LEVEL",
        "BATCH_SIZE",
        "HANDLER_MODULES",
        "ENFORCE_TIME_LIMIT",
    ):
        monkeypatch.delenv(f"CRONSPINE_{name}", raising=False)
    # No stray .env in the working directory
    monkeypatch.chdir(tmp_path)


class TestCronSettings:
    def test_defaults(self):
        settings = CronSettings()
        assert settings.database_url == "cron.db"
        assert settings.table_prefix == "cron__"
        assert settings.batch_size == 1
        assert settings.handler_modules == []
        assert settings.enforce_time_limit is False

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("CRONSPINE_DATABASE_URL", "postgresql://u@h/db")
        monkeypatch.setenv("CRONSPINE_BATCH_SIZE", "5")
        monkeypatch.setenv("CRONSPINE_HANDLER_MODULES", '["app.tasks", "app.more"]')
        monkeypatch.setenv("CRONSPINE_LOG_LEVEL", "debug")
        settings = CronSettings()
        assert settings.database_url == "postgresql://u@h/db"
        assert settings.batch_size == 5
        assert settings.handler_modules == ["app.tasks", "app.more"]
        assert settings.log_level == "DEBUG"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("CRONSPINE_TABLE_PREFIX=acme_\n")
        assert CronSettings().table_prefix == "acme_"

    @pytest.mark.parametrize(
        "field, value",
        [("table_prefix", "bad-prefix"), ("log_level", "LOUD"), ("batch_size", 0)],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            CronSettings(**{field: value})
