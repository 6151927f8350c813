"""Database engines and session management."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

MONITOR_SCHEMA = "hs"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def create_engine(url: str, schema_translate_map: Optional[dict] = None) -> AsyncEngine:
    """Create an async engine.

    Args:
        url: SQLAlchemy async URL, e.g. ``mssql+aioodbc://...``
        schema_translate_map: Optional schema remapping (SQLite has no ``hs`` schema)

    Returns:
        AsyncEngine with pre-ping enabled
    """
    execution_options = {}
    if schema_translate_map is not None:
        execution_options["schema_translate_map"] = schema_translate_map
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        execution_options=execution_options,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
