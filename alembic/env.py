"""Alembic migration environment with async engine support.

Enhanced with:
- compare_type support for the custom UTCDateTime and StringArray columns
- Batch mode auto-detection for SQLite compatibility
- Object filtering to exclude system tables
- Empty migration detection to skip no-op revisions

Configuration can be passed via config.attributes when alembic is driven
programmatically; CLI usage falls back to the defaults below.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import TYPE_CHECKING, Any

from sqlalchemy import Column, pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Import the models module so Base.metadata knows every mapped table.
from notify_service.core.database.base import Base
from notify_service.core.database.types import StringArray, UTCDateTime
from notify_service.core.settings import get_db_settings
from notify_service.features.notifications import models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from alembic.autogenerate.api import AutogenContext
    from alembic.operations.ops import MigrationScript
    from alembic.runtime.migration import MigrationContext
    from sqlalchemy.engine import Connection
    from sqlalchemy.sql.type_api import TypeEngine

_ = models

# Alembic Config object
config = context.config

# Setup Python logging from alembic.ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Override URL from settings (CLI usage)
db_settings = get_db_settings()
config.set_main_option("sqlalchemy.url", db_settings.get_sqlalchemy_url())


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value passed via config.attributes, or a default."""
    return config.attributes.get(key, default)


COMPARE_TYPE = get_config_value("compare_type", True)
COMPARE_SERVER_DEFAULT = get_config_value("compare_server_default", False)
RENDER_AS_BATCH = get_config_value("render_as_batch", False)


# =============================================================================
# Custom Type Comparison
# =============================================================================


def compare_type(
    context: MigrationContext,
    inspected_column: Column[Any],
    metadata_column: Column[Any],
    inspected_type: TypeEngine[Any],
    metadata_type: TypeEngine[Any],
) -> bool | None:
    """Compare column types including the custom decorators.

    Returns:
        True if types are different (should generate migration)
        False if types are the same
        None to use default comparison
    """
    _ = context, inspected_column, metadata_column
    from sqlalchemy import DateTime, Text
    from sqlalchemy.dialects.postgresql import ARRAY

    if isinstance(metadata_type, UTCDateTime):
        return not isinstance(inspected_type, DateTime)

    if isinstance(metadata_type, StringArray):
        return not isinstance(inspected_type, (ARRAY, Text))

    return None


def include_object(
    obj: Any,
    name: str | None,
    type_: str,
    reflected: bool,
    compare_to: Any,
) -> bool:
    """Skip alembic's own table and PostgreSQL system schemas."""
    _ = reflected, compare_to
    if type_ == "table" and name == "alembic_version":
        return False
    return not (hasattr(obj, "schema") and obj.schema in ("pg_catalog", "information_schema"))


def render_item(type_: str, obj: Any, autogen_context: AutogenContext) -> str | bool:
    """Render the custom column types with their import.

    Returns:
        String representation or False to use default
    """
    if type_ == "type":
        if isinstance(obj, UTCDateTime):
            autogen_context.imports.add("from notify_service.core.database.types import UTCDateTime")
            return "UTCDateTime()"
        if isinstance(obj, StringArray):
            autogen_context.imports.add("from notify_service.core.database.types import StringArray")
            return "StringArray()"
    return False


def process_revision_directives(
    context: MigrationContext,
    revision: str | tuple[str, ...] | Iterable[str | None] | Iterable[str],
    directives: list[MigrationScript],
) -> None:
    """Skip writing a revision when autogenerate detects no changes."""
    _ = context, revision
    if getattr(config.cmd_opts, "autogenerate", False) and directives:
        script = directives[0]
        if script.upgrade_ops is not None and script.upgrade_ops.is_empty():
            directives[:] = []
            print("No changes detected, skipping migration creation")


# =============================================================================
# Migration Runners
# =============================================================================


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generate SQL only)."""
    url = config.get_main_option("sqlalchemy.url")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=compare_type if COMPARE_TYPE else None,
        compare_server_default=COMPARE_SERVER_DEFAULT,
        include_object=include_object,
        render_item=render_item,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Configure and run migrations on a connection.

    SQLite always uses batch mode so ALTER TABLE operations work.
    """
    use_batch_mode = connection.dialect.name == "sqlite" or RENDER_AS_BATCH

    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=compare_type if COMPARE_TYPE else None,
        compare_server_default=COMPARE_SERVER_DEFAULT,
        include_object=include_object,
        render_item=render_item,
        render_as_batch=use_batch_mode,
        process_revision_directives=process_revision_directives,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations with an async engine, provided or built from config."""
    engine = get_config_value("engine")

    if engine is not None:
        async with engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    else:
        connectable = async_engine_from_config(
            config.get_section(config.config_ini_section, {}),
            prefix="sqlalchemy.",
            poolclass=pool.NullPool,
        )

        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)

        await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
