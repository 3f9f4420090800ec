"""Schema provisioning for the plan tables.

ensure_schema() is safe to call on every process start: tables, CHECK
constraints, indexes and the partial unique index are created only when
missing, and existing rows are never touched.
"""

import structlog
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from plan_engine.core.exceptions import SchemaError
from plan_engine.db.base import Base

logger = structlog.get_logger(__name__)


def _load_models() -> None:
    # Import all models so metadata is populated before create_all
    import plan_engine.db.models  # noqa: F401


def schema_objects() -> dict[str, list[str]]:
    """Return the managed table names mapped to their index names."""
    _load_models()
    return {
        table.name: sorted(index.name for index in table.indexes)
        for table in Base.metadata.sorted_tables
    }


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create any missing tables and indexes.

    Raises:
        SchemaError: The database rejected the DDL or was unreachable.
    """
    _load_models()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    except SQLAlchemyError as e:
        logger.error("schema_provision_failed", error=str(e), error_type=type(e).__name__)
        raise SchemaError(str(e)) from e

    logger.info("schema_ensured", tables=sorted(Base.metadata.tables))


async def drop_schema(engine: AsyncEngine) -> None:
    """Drop every managed table (test teardown only)."""
    _load_models()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all, checkfirst=True)
    except SQLAlchemyError as e:
        raise SchemaError(str(e)) from e


async def existing_tables(engine: AsyncEngine) -> set[str]:
    """Names of the tables currently present in the database."""
    async with engine.connect() as conn:
        names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    return set(names)


async def existing_indexes(engine: AsyncEngine, table_name: str) -> set[str]:
    """Names of the indexes currently present on ``table_name``."""
    async with engine.connect() as conn:
        indexes = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_indexes(table_name))
    return {index["name"] for index in indexes}
