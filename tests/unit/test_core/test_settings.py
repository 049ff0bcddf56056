"""Unit tests for settings classes and loaders."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from notify_service.core.settings import (
    DatabaseSettings,
    NotificationSettings,
    RabbitSettings,
    clear_settings_cache,
    get_notification_settings,
)
from notify_service.core.settings.database import SQLITE_FALLBACK_URL


class TestNotificationSettings:
    """Test engine policy defaults and overrides."""

    def test_defaults(self) -> None:
        settings = NotificationSettings()

        assert settings.default_channels == ["in_app"]
        assert settings.max_retries == 3
        assert settings.retention_days == 90
        assert settings.lane_parallelism["critical"] == 10
        assert settings.batch_delays == {"critical": 0, "high": 30, "normal": 120, "low": 300}

    def test_partial_lane_override_keeps_defaults(self) -> None:
        settings = NotificationSettings(lane_parallelism={"critical": 20})

        assert settings.lane_parallelism["critical"] == 20
        assert settings.lane_parallelism["retry"] == 2

    def test_rejects_zero_parallelism(self) -> None:
        with pytest.raises(ValidationError, match="at least 1"):
            NotificationSettings(lane_parallelism={"low": 0})

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTIFY_MAX_RETRIES", "5")
        clear_settings_cache()
        try:
            assert get_notification_settings().max_retries == 5
        finally:
            clear_settings_cache()

    def test_frozen(self) -> None:
        settings = NotificationSettings()

        with pytest.raises(ValidationError):
            settings.max_retries = 9


class TestDatabaseSettings:
    def test_sqlite_fallback(self) -> None:
        settings = DatabaseSettings(enabled=True, database_url=None)

        assert settings.get_sqlalchemy_url() == SQLITE_FALLBACK_URL
        assert settings.is_sqlite

    def test_explicit_url(self) -> None:
        settings = DatabaseSettings(enabled=True, database_url="postgresql+psycopg://u:p@db:5432/notify")

        assert settings.get_sqlalchemy_url() == "postgresql+psycopg://u:p@db:5432/notify"
        assert not settings.is_sqlite


class TestRabbitSettings:
    def test_url_from_components(self) -> None:
        settings = RabbitSettings(host="mq", username="svc", password="p@ss", vhost="/notify")

        assert settings.get_url() == "amqp://svc:p%40ss@mq:5672/notify"
        assert settings.queue_name("retry") == "notifications-retry"

    def test_uri_override(self) -> None:
        settings = RabbitSettings(amqp_uri="amqp://other:5672/")

        assert settings.get_url() == "amqp://other:5672/"
