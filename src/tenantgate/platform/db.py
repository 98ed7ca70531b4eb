"""
SQLAlchemy 2.0 Database Configuration

Declarative base, shared mixins and async engine/session management.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote_plus
from uuid import uuid4

from sqlalchemy import DateTime, String, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tenantgate.platform.settings import get_settings

# ==========================================
# Database URLs from settings
# ==========================================


def get_database_url() -> str:
    """Get the async database URL from settings."""
    settings = get_settings()
    if settings.database.url:
        url = str(settings.database.url)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # In development, use SQLite if PostgreSQL is not configured
    if settings.is_development and not settings.database.password:
        return "sqlite+aiosqlite:///./tenantgate_dev.sqlite"

    # URL-encode password to handle special characters safely
    username = quote_plus(settings.database.username)
    password = quote_plus(settings.database.password) if settings.database.password else ""
    host = settings.database.host
    port = settings.database.port
    database = settings.database.database

    return f"postgresql+asyncpg://{username}:{password}@{host}:{port}/{database}"


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


def generate_id() -> str:
    """Primary keys are UUID4 strings so they travel unchanged through JWTs and webhooks."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


# ==========================================
# Common Mixins
# ==========================================
#
# Tenant-owned rows always carry a non-null tenant_id and every query on
# them goes through a TenantScope (see tenantgate.platform.tenant.context).
# ==========================================


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


class StrictTenantMixin:
    """Adds tenant_id for strict multi-tenancy (required tenant)."""

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)


class SoftDeleteMixin:
    """Adds soft delete support."""

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        """Check if the record is soft deleted."""
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        """Mark this record as soft deleted."""
        self.deleted_at = datetime.now(UTC)

    def restore(self) -> None:
        """Restore this record from soft deletion."""
        self.deleted_at = None


# ==========================================
# Engine and Session Management
# ==========================================

# Lazily created; tests replace both with their own engine.
_async_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Get or create the asynchronous engine."""
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        url = get_database_url()
        kwargs: dict[str, Any] = {"echo": settings.database.echo}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
                pool_timeout=settings.database.pool_timeout,
                pool_recycle=settings.database.pool_recycle,
                pool_pre_ping=settings.database.pool_pre_ping,
            )
        _async_engine = create_async_engine(url, **kwargs)
    return _async_engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
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


def configure_session_maker(
    engine: AsyncEngine, session_maker: async_sessionmaker[AsyncSession] | None = None
) -> async_sessionmaker[AsyncSession]:
    """Point the module at an existing engine (used by tests and workers)."""
    global _async_engine, _async_session_maker
    _async_engine = engine
    _async_session_maker = session_maker or async_sessionmaker(
        autoflush=False, bind=engine, class_=AsyncSession, expire_on_commit=False
    )
    return _async_session_maker


async def dispose_async_engine() -> None:
    """Dispose the engine so the next call builds one on the current event loop."""
    global _async_engine, _async_session_maker
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_maker = None


# ==========================================
# Session Context Managers
# ==========================================


@asynccontextmanager
async def get_async_db() -> AsyncIterator[AsyncSession]:
    """Get an asynchronous database session that commits on success."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency for getting an async database session."""
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def is_postgresql(session: AsyncSession) -> bool:
    """Whether the session is bound to PostgreSQL (RLS and row locks available)."""
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


# ==========================================
# Database Initialization
# ==========================================


async def create_all_tables_async() -> None:
    """Create all tables in the database asynchronously."""
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables_async() -> None:
    """Drop all tables from the database asynchronously. Use with caution!"""
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def check_database_health() -> bool:
    """Check if the database is accessible."""
    try:
        async with get_async_db() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


__all__ = [
    "Base",
    "TimestampMixin",
    "StrictTenantMixin",
    "SoftDeleteMixin",
    "generate_id",
    "get_database_url",
    "get_async_engine",
    "get_session_maker",
    "configure_session_maker",
    "dispose_async_engine",
    "get_async_db",
    "get_async_session",
    "is_postgresql",
    "create_all_tables_async",
    "drop_all_tables_async",
    "check_database_health",
]
