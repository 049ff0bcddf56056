"""Modular Pydantic Settings v2 configuration.

One settings class per domain, each with its own environment prefix:
APP_, DB_, RABBIT_, EMAIL_, LOG_ and NOTIFY_.

Import settings via the cached loaders:
    from notify_service.core.settings import get_notification_settings
"""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .email import EmailSettings
from .loader import (
    clear_settings_cache,
    get_app_settings,
    get_db_settings,
    get_email_settings,
    get_logging_settings,
    get_notification_settings,
    get_rabbit_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .rabbit import RabbitSettings

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "EmailSettings",
    "LoggingSettings",
    "NotificationSettings",
    "RabbitSettings",
    "clear_settings_cache",
    "get_app_settings",
    "get_db_settings",
    "get_email_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_rabbit_settings",
]
