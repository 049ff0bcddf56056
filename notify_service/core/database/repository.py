"""Minimal generic repository for SQLAlchemy models.

Session is always explicit. For queries not covered here, feature
repositories issue statements against the session directly.

Example:
    class TemplateRepository(BaseRepository[NotificationTemplate]):
        async def find_by_type(self, session: AsyncSession, type_: str) -> Sequence[NotificationTemplate]:
            stmt = select(NotificationTemplate).where(NotificationTemplate.type == type_)
            return (await session.execute(stmt)).scalars().all()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository[T]:
    """Generic operations with explicit session passing.

    Provides:
        - get(session, id) -> T | None
        - create(session, instance) -> T
    """

    __slots__ = ("_lazy", "model")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(
        self,
        session: AsyncSession,
        id: Any,  # noqa: A002
        *,
        options: Iterable[Any] | None = None,
    ) -> T | None:
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value
            options: SQLAlchemy loader options (e.g., selectinload)

        Returns:
            Entity if found, None otherwise
        """
        if options:
            stmt = select(self.model).where(self.model.id == id).options(*options)  # type: ignore[attr-defined]
            instance = (await session.execute(stmt)).scalar_one_or_none()
        else:
            instance = await session.get(self.model, id)

        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add and flush a new entity so generated values are populated."""
        session.add(instance)
        await session.flush()
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}({getattr(instance, 'id', '?')})")
        return instance
