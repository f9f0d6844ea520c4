"""Schema helpers shared by the Alembic environment and the maintenance scripts."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from alembic.autogenerate import compare_metadata
from alembic.runtime.migration import MigrationContext
from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Connection

from .engine import DEFAULT_SQLITE_URL, ROOT_DIR
from .utils import resolve_sqlite_url


def configured_database_url(project_root: Path = ROOT_DIR) -> str:
    """Return ``DB_URL`` from the environment, or the package default.

    Relative SQLite paths are resolved against ``project_root`` so migrations,
    scripts and the engine all open the same file.
    """
    env_url = os.getenv("DB_URL")
    if env_url:
        return resolve_sqlite_url(env_url, project_root)
    return DEFAULT_SQLITE_URL


def migration_options(dialect_name: str) -> dict[str, Any]:
    """Options for :meth:`MigrationContext.configure` and ``context.configure``."""
    return {
        "compare_type": True,
        # SQLite cannot ALTER constraints in place.
        "render_as_batch": dialect_name == "sqlite",
    }


@dataclass(frozen=True)
class SchemaDrift:
    """Differences between a live database and the mapped models.

    Attributes
    ----------
    operations : tuple[str, ...]
        One ``"<kind> <table>[.<column>]"`` line per difference, in the order
        Alembic reports them.
    tables : tuple[str, ...]
        Sorted names of the tables touched by at least one difference.
    """

    operations: tuple[str, ...]
    tables: tuple[str, ...]

    @property
    def is_clean(self) -> bool:
        return not self.operations


def _table_of(diff: tuple) -> Optional[str]:
    target = diff[1]
    if isinstance(target, Table):
        return target.name
    table = getattr(target, "table", None)
    if table is not None:
        return table.name
    if len(diff) > 2 and isinstance(diff[2], str):
        return diff[2]
    return None


def _column_of(diff: tuple) -> Optional[str]:
    if len(diff) < 4:
        return None
    column = diff[3]
    return column if isinstance(column, str) else getattr(column, "name", None)


def detect_drift(connection: Connection, metadata: MetaData) -> SchemaDrift:
    """Compare the database behind ``connection`` with ``metadata``."""

    context = MigrationContext.configure(
        connection=connection,
        opts=migration_options(connection.dialect.name),
    )
    operations = []
    tables = set()
    for diff in compare_metadata(context, metadata):
        # Column modifications come grouped per column.
        if isinstance(diff, list):
            diff = diff[0]
        table = _table_of(diff)
        column = _column_of(diff)
        line = diff[0]
        if table:
            tables.add(table)
            line = f"{line} {table}.{column}" if column else f"{line} {table}"
        operations.append(line)
    return SchemaDrift(operations=tuple(operations), tables=tuple(sorted(tables)))


__all__ = ["SchemaDrift", "configured_database_url", "detect_drift", "migration_options"]
