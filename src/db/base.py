"""Database engine and base declarative models."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from config.settings import get_settings


class Base(DeclarativeBase):
    """Declarative base model."""


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; SQLite files get a fresh connection per checkout."""

    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["poolclass"] = NullPool
    return create_async_engine(database_url, echo=False, future=True, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


settings = get_settings()
engine = build_engine(settings.database_url)
AsyncSessionFactory = build_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database schema.

    In local/dev environments we can auto-create tables. In higher environments,
    prefer Alembic migrations and set `AUTO_CREATE_DB_SCHEMA=false`.
    """

    if bind is None and not settings.auto_create_db_schema:
        return

    # Import models so every table is registered on the metadata.
    import db.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
