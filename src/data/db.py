"""PostgreSQL connection and schema definitions for the tenant store."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Tables ───────────────────────────────────────────────────────

tenants = Table(
    "tenants",
    metadata,
    # Same value as the originating identity id
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("org_number", String, nullable=False, unique=True),
    Column("email", String, nullable=False, unique=True),
    Column("subscription_status", String, nullable=False, server_default="trialing"),
    Column("stripe_customer_id", String, nullable=True, index=True),
    Column("stripe_subscription_id", String, nullable=True),
    Column("accounting_provider", String, nullable=True),
    Column("accounting_access_token", Text, nullable=True),
    Column("accounting_refresh_token", Text, nullable=True),
    Column("accounting_token_expires_at", DateTime(timezone=True), nullable=True),
    Column("settings", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            connect_args={"timeout": settings.http_timeout_seconds},
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema() -> None:
    """Create all tables."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    log.info("schema_initialized")


async def drop_schema() -> None:
    """Drop all tables. Destroys tenant data."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)

    log.warning("schema_dropped")


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
