# src/fobsync/scripts/migrate.py
from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

from fobsync.core.settings import settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def alembic_config() -> Config:
    """Alembic config pointed at the bundled migrations and the configured database."""
    cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    # Escape % so ConfigParser interpolation leaves URL-encoded passwords alone.
    cfg.set_main_option("sqlalchemy.url", settings.effective_database_url.replace("%", "%%"))
    return cfg


def run_upgrade_head() -> None:
    """Bring the swipe archive schema up to the latest revision."""
    logger.info("upgrading swipe archive schema to head")
    command.upgrade(alembic_config(), "head")


if __name__ == "__main__":
    run_upgrade_head()
