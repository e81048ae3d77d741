"""Database utilities for the hero pool service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Import models so their tables are registered on the metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()

        def _ensure_column(
            table: str, name: str, ddl: str, init_sql: str | None = None
        ) -> None:
            if table not in table_names:
                return
            existing = {column["name"] for column in inspector.get_columns(table)}
            if name in existing:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

        _ensure_column(
            "hero_pools",
            "policy_hash",
            "ALTER TABLE hero_pools ADD COLUMN policy_hash VARCHAR(64) DEFAULT ''",
            "UPDATE hero_pools SET policy_hash = '' WHERE policy_hash IS NULL",
        )
        _ensure_column(
            "hero_pools",
            "history",
            "ALTER TABLE hero_pools ADD COLUMN history JSON",
            "UPDATE hero_pools SET history = '[]' WHERE history IS NULL",
        )
        _ensure_column(
            "media_items",
            "audience_rating",
            "ALTER TABLE media_items ADD COLUMN audience_rating FLOAT",
        )
        _ensure_column(
            "media_items",
            "originally_available_at",
            "ALTER TABLE media_items ADD COLUMN originally_available_at VARCHAR(32)",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
