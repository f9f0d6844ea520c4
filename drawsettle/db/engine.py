import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .utils import resolve_sqlite_url

# Get DB url
load_dotenv()
# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)


def make_engine(database_url: Optional[str] = None, echo: bool = False):
    url = database_url or DEFAULT_SQLITE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # Settlement workers write concurrently; wait for the lock instead of failing.
        connect_args["timeout"] = 30
    engine = create_engine(
        url,
        echo=echo,
        future=True,
        connect_args=connect_args,
    )
    if url.startswith("sqlite"):
        enable_sqlite_foreign_keys(engine)
    return engine


def enable_sqlite_foreign_keys(engine) -> None:
    """Turn on FK enforcement for every new SQLite connection of ``engine``."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_sessionmaker(engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep objects accessible after commit
        future=True,
    )
