"""Shared SQLAlchemy base and database handle."""

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from plan_engine.core.config import Settings, get_settings


class Base(DeclarativeBase):
    pass


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Enable foreign keys (for ON DELETE CASCADE) and lock tolerance on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def create_engine_from_url(url: str, echo: bool = False, command_timeout: float | None = None) -> AsyncEngine:
    """Create an async engine with per-dialect connection settings."""
    backend = make_url(url).get_backend_name()
    connect_args: dict = {}
    if backend == "postgresql" and command_timeout:
        connect_args["command_timeout"] = command_timeout

    engine = create_async_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
    if backend == "sqlite":
        _configure_sqlite(engine)
    return engine


class Database:
    """Engine plus session factory, constructed once and passed explicitly.

    There is no module-level engine: the application lifespan (or a test
    fixture) owns one Database and hands it to the PlanStore.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str, echo: bool = False, command_timeout: float | None = None) -> "Database":
        return cls(create_engine_from_url(url, echo=echo, command_timeout=command_timeout))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        settings = settings or get_settings()
        return cls.from_url(
            settings.database_url,
            echo=settings.database_echo,
            command_timeout=settings.db_command_timeout_seconds,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def dispose(self) -> None:
        """Dispose of the engine and release all connections."""
        await self.engine.dispose()
