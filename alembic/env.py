import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
# This line sets up loggers basically.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# =============================================================================
# Import all models to ensure they're registered with Base.metadata
# This ensures alembic autogenerate can detect all tables
# =============================================================================

# Core database
from tenantgate.platform.db import Base  # noqa: E402
from tenantgate.platform.db import get_database_url as get_settings_database_url  # noqa: E402

# Tenant directory
from tenantgate.platform.tenant.models import *  # noqa: F401,F403,E402

# Auth and user management
from tenantgate.platform.auth.models import *  # noqa: F401,F403,E402

# Billing
from tenantgate.platform.billing.models import *  # noqa: F401,F403,E402

# Workspace and usage
from tenantgate.platform.workspace.models import *  # noqa: F401,F403,E402
from tenantgate.platform.usage.models import *  # noqa: F401,F403,E402

# Use Base.metadata for autogeneration
target_metadata = Base.metadata


def get_database_url() -> str:
    """Get database URL from environment variable or application settings."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url
    return get_settings_database_url()


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Emits the SQL to the script output without connecting.
    """
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    if connection.dialect.name == "postgresql":
        connection.exec_driver_sql("SET lock_timeout = '5s'")
        connection.exec_driver_sql("SET statement_timeout = '60s'")
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations in 'online' mode against the async engine."""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
        await connection.commit()

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
