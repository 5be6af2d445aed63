import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import create_engine, pool

from alembic import context

# Project root on sys.path so ``backend.app`` imports resolve
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from backend.app.core.base import Base
from backend.app.core.config import DB_URL

# Register every table in Base.metadata
from backend.app.models import admin, cep_zone, coupon, customer, event, notification, order, policy  # noqa: F401

# Same database as the app, through the synchronous psycopg2 driver
SYNC_DB_URL = DB_URL.replace("+asyncpg", "+psycopg2", 1)

config = context.config
# ConfigParser interpolates %, escape it
config.set_main_option("sqlalchemy.url", SYNC_DB_URL.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a database connection."""
    context.configure(
        url=SYNC_DB_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(SYNC_DB_URL, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=Base.metadata, compare_type=True)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
