"""Alembic environment for the settlement schema.

The database comes from ``-x url=...`` when given, otherwise from ``DB_URL``
resolved the same way :func:`drawsettle.db.engine.make_engine` resolves it.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import make_url

from drawsettle.db.engine import make_engine
from drawsettle.db.schema import configured_database_url, migration_options
from drawsettle.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata

DATABASE_URL = (
    context.get_x_argument(as_dictionary=True).get("url") or configured_database_url()
)
# ConfigParser interpolation treats '%' specially.
config.set_main_option("sqlalchemy.url", DATABASE_URL.replace("%", "%%"))


def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **migration_options(make_url(DATABASE_URL).get_backend_name()),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = make_engine(database_url=DATABASE_URL)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                **migration_options(connection.dialect.name),
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
