"""Logging configuration shared by scripts and services."""

from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from ``level`` or the ``LOG_LEVEL`` env var."""

    load_dotenv()
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # SQL echo is opt-in through make_engine(echo=True).
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
