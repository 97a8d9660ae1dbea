"""
Alembic Environment

The database URL comes from server_directory settings (DATABASE_URL), never
from alembic.ini, so migrations run against the same database as the app.

    alembic upgrade head
    alembic upgrade head --sql > migration.sql   # offline
    alembic revision --autogenerate -m "..."
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from server_directory.config import get_settings
from server_directory.database import Base
from server_directory.models import Rating, ReviewFlag, ReviewVote, Server  # noqa: F401 - registers tables

config = context.config
config.set_main_option("sqlalchemy.url", get_settings().database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without connecting to the database."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Connect and apply migrations."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite can't ALTER most columns in place
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
