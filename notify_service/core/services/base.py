"""Base service class for business logic."""

from __future__ import annotations

import logging

from notify_service.infra.logging import get_lazy_logger


class BaseService:
    """Base class for all service classes.

    Loggers:
        - self.logger: Standard logger for INFO/WARNING/ERROR
        - self._lazy: Lazy logger for DEBUG (callables evaluated only when enabled)

    Example:
        class DigestService(BaseService):
            async def build(self, session, tenant_id: str) -> Digest:
                self.logger.info("Building digest", extra={"tenant_id": tenant_id})
                self._lazy.debug(lambda: f"Pending: {await_count()}")
    """

    def __init__(self) -> None:
        """Initialize base service with loggers."""
        class_name = self.__class__.__name__
        self.logger = logging.getLogger(class_name)
        self._lazy = get_lazy_logger(class_name)
