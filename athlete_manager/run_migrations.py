#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations.

- Always run `alembic upgrade head` on startup.
- If migrations fail, fail fast (don't start with an unknown schema).
"""
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config

from athlete_manager.core.database import check_db_connection
from athlete_manager.core.logging import setup_logging

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _get_alembic_config(database_url: Optional[str] = None) -> Config:
    """Load Alembic config for programmatic migrations."""
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    # script_location in alembic.ini is relative to the project root
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    if database_url:
        cfg.set_main_option("sqlalchemy.url", database_url)
    # Keep the application's logging setup intact
    cfg.attributes["configure_logger"] = False
    return cfg


def alembic_upgrade_head(database_url: Optional[str] = None) -> None:
    """Apply all pending migrations."""
    command.upgrade(_get_alembic_config(database_url), "head")


def alembic_downgrade_base(database_url: Optional[str] = None) -> None:
    command.downgrade(_get_alembic_config(database_url), "base")


def wait_for_db(max_retries: int = 30, delay: float = 1.0) -> bool:
    for attempt in range(1, max_retries + 1):
        if check_db_connection():
            return True
        logger.warning(f"Database is unavailable - sleeping (attempt {attempt}/{max_retries})")
        time.sleep(delay)
    return False


def main() -> None:
    setup_logging()
    logger.info("Waiting for database to be ready...")
    if not wait_for_db():
        logger.error("Database is not ready after maximum retries")
        sys.exit(1)

    try:
        alembic_upgrade_head()
    except Exception as e:
        logger.error(f"Alembic upgrade failed: {e}", exc_info=True)
        sys.exit(1)
    logger.info("Migrations completed successfully")


if __name__ == '__main__':
    main()
