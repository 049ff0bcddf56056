"""Service layer base classes."""

from notify_service.core.services.base import BaseService

__all__ = ["BaseService"]
