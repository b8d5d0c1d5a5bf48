"""
SQLAlchemy 2.0 Database Configuration

Simple, standard SQLAlchemy setup for the billing tables.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from urllib.parse import quote_plus

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from telehealth.platform.settings import settings

# ==========================================
# Database URLs from settings
# ==========================================


def get_database_url() -> str:
    """Get the sync database URL from settings."""
    if settings.database.url:
        return str(settings.database.url)

    # In development, use SQLite if PostgreSQL is not configured
    if (settings.is_development or settings.is_testing) and not settings.database.password:
        return "sqlite:///./telehealth_dev.sqlite"

    username = quote_plus(settings.database.username)
    password = quote_plus(settings.database.password) if settings.database.password else ""
    host = settings.database.host
    port = settings.database.port
    database = settings.database.database

    return f"postgresql://{username}:{password}@{host}:{port}/{database}"


def get_async_database_url() -> str:
    """Get the async database URL from settings."""
    sync_url = get_database_url()
    if sync_url.startswith("postgresql://"):
        return sync_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if sync_url.startswith("sqlite://"):
        return sync_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return sync_url


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


# ==========================================
# Engine and Session Management
# ==========================================

_async_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Get or create the asynchronous engine."""
    global _async_engine
    if _async_engine is None:
        url = get_async_database_url()
        if url.startswith("sqlite"):
            _async_engine = create_async_engine(url, echo=settings.database.echo)
        else:
            _async_engine = create_async_engine(
                url,
                echo=settings.database.echo,
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
                pool_timeout=settings.database.pool_timeout,
                pool_recycle=settings.database.pool_recycle,
                pool_pre_ping=settings.database.pool_pre_ping,
            )
    return _async_engine


def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            autoflush=False,
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_maker


@asynccontextmanager
async def get_async_db() -> AsyncIterator[AsyncSession]:
    """Get an asynchronous database session."""
    async with get_async_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ==========================================
# Database Initialization
# ==========================================


async def create_all_tables_async() -> None:
    """Create all tables in the database asynchronously."""
    # Importing the entities registers them on Base.metadata
    from telehealth.platform.billing.core import entities  # noqa: F401

    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _async_engine, _async_session_maker
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_maker = None


__all__ = [
    "Base",
    "TimestampMixin",
    "get_database_url",
    "get_async_database_url",
    "get_async_engine",
    "get_async_session_maker",
    "get_async_db",
    "create_all_tables_async",
    "dispose_engine",
]
