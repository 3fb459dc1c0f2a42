"""
Schema migration runner for the EBR database.

Runs Alembic against this package's migrations directory without an
alembic.ini. The API calls ``main(["upgrade", "head"])`` at startup when
RUN_MIGRATIONS_ON_STARTUP is set.

Usage:
    ebr-migrate upgrade head
    ebr-migrate downgrade -1
    ebr-migrate current
    ebr-migrate stamp head      # adopt an existing schema
    ebr-migrate history
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List

from alembic import command
from alembic.config import Config

from ebr_api.core.logging import configure_logging
from ebr_api.core.settings import get_app_settings
from ebr_api.db.config import get_db_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# command name -> (runner, default arguments)
COMMANDS: Dict[str, tuple[Callable, List[str]]] = {
    "upgrade": (command.upgrade, ["head"]),
    "downgrade": (command.downgrade, ["-1"]),
    "stamp": (command.stamp, ["head"]),
    "current": (command.current, []),
    "heads": (command.heads, []),
    "history": (command.history, []),
    "show": (command.show, ["head"]),
}


def alembic_config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # env.py builds its own async engine; this URL only serves offline mode
    cfg.set_main_option("sqlalchemy.url", get_db_settings().sync_database_url)
    return cfg


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> None:
    """Dispatch one Alembic command, e.g. ``["upgrade", "head"]``."""
    args = list(sys.argv[1:] if argv is None else argv)
    if argv is None:
        configure_logging(get_app_settings().LOG_LEVEL)
    if not args or args[0] not in COMMANDS:
        print(f"Usage: ebr-migrate {{{'|'.join(COMMANDS)}}} [args]")
        sys.exit(2)

    name, rest = args[0], args[1:]
    runner, defaults = COMMANDS[name]
    logger.info("alembic %s %s", name, " ".join(rest or defaults))
    runner(alembic_config(), *(rest or defaults))


if __name__ == "__main__":
    main()
