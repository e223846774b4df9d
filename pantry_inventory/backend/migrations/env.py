import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context
from dotenv import load_dotenv

# -- load .env --
load_dotenv()

# -- make the pantry package importable when run from backend/ --
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# -- register models on Base.metadata --
from pantry.database import Base, sync_url  # noqa: E402
from pantry import models  # noqa: E402,F401

config = context.config

# -- logging setup --
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# -- `alembic -x url=...` wins over DATABASE_URL --
database_url = context.get_x_argument(as_dictionary=True).get("url") or os.getenv("DATABASE_URL")
if not database_url:
    raise ValueError("DATABASE_URL is not set in .env file")

# -- async driver -> sync driver for Alembic --
sync_database_url = sync_url(database_url)
# SQLite cannot ALTER most constraints in place
render_as_batch = sync_database_url.startswith("sqlite")
config.set_main_option("sqlalchemy.url", sync_database_url)


def run_migrations_offline() -> None:
    """Run migrations without a live connection (emit SQL)."""
    context.configure(
        url=sync_database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against the configured database."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=render_as_batch,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
