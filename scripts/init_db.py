from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from drawsettle.db.engine import make_engine
from drawsettle.db.schema import configured_database_url
from drawsettle.logging_config import configure_logging
from drawsettle.models import Base

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _alembic_config() -> Config:
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return alembic_cfg


def has_revisions() -> bool:
    return any((PROJECT_ROOT / "alembic" / "versions").glob("*.py"))


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    command.upgrade(_alembic_config(), target_revision)


def create_schema() -> None:
    """Create every table from the models and stamp the Alembic head."""
    engine = make_engine(database_url=configured_database_url())
    Base.metadata.create_all(engine)
    if has_revisions():
        command.stamp(_alembic_config(), "head")


def print_tables() -> None:
    engine = make_engine(database_url=configured_database_url())
    insp = inspect(engine)
    print("Current tables:", ", ".join(sorted(insp.get_table_names())))


def main() -> None:
    """Migrate when revisions exist, otherwise create tables from the models."""
    configure_logging()
    if has_revisions():
        upgrade_db()
    else:
        create_schema()
    print_tables()


if __name__ == "__main__":
    main()
