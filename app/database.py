"""Database utilities for the BingeBoard service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

from sqlalchemy import MetaData, event
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Register the mapped tables on the shared metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a session scope around a series of operations."""

        async with self.session_factory() as session:
            yield session


async def upsert(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    *,
    conflict_columns: Sequence[str],
) -> None:
    """Insert ``values`` or update the row sharing ``conflict_columns``."""

    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        statement = sqlite_insert(model).values(**values)
    elif dialect == "postgresql":
        statement = postgresql_insert(model).values(**values)
    else:  # pragma: no cover - only sqlite and postgresql are deployed
        raise NotImplementedError(f"Upsert is not supported for {dialect}")

    updates = {
        name: statement.excluded[name]
        for name in values
        if name not in conflict_columns
    }
    await session.execute(
        statement.on_conflict_do_update(index_elements=list(conflict_columns), set_=updates)
    )


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    """SQLite ignores ``ON DELETE CASCADE`` unless foreign keys are switched on."""

    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
