"""Report whether a database still matches the settlement models.

Exit status: 0 when the schema matches, 1 when it drifted, 2 when the check
itself failed.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from drawsettle.db.engine import make_engine
from drawsettle.db.schema import configured_database_url, detect_drift
from drawsettle.logging_config import configure_logging
from drawsettle.models import Base

logger = logging.getLogger("drawsettle.scripts.check_schema_drift")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--url", help="Database URL (defaults to DB_URL)")
    args = parser.parse_args(argv)

    configure_logging()
    engine = make_engine(database_url=args.url or configured_database_url())
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            drift = detect_drift(connection, Base.metadata)
    except Exception:
        logger.exception("Could not compare %s with the settlement models", url_display)
        return 2
    finally:
        engine.dispose()

    if drift.is_clean:
        logger.info("%s matches the settlement models", url_display)
        return 0

    logger.warning(
        "%s differs from the settlement models in: %s",
        url_display,
        ", ".join(drift.tables) or "(schema level)",
    )
    for line in drift.operations:
        print(f"- {line}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
