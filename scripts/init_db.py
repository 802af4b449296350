#!/usr/bin/env python3
"""
Create the relay tables and optionally copy credentials from the environment
into the config table.
Usage: python scripts/init_db.py [--seed-config]
"""

import sys

from relay.config import settings
from relay.database import SessionLocal, init_db
from relay.logging_config import get_logger, setup_logging
from relay.services.config_store import VALID_CONFIG_KEYS, ConfigStore

logger = get_logger("init_db")


def seed_config(store: ConfigStore) -> int:
    """Store every settings value that has a config key; returns how many were written."""
    written = 0
    for key in VALID_CONFIG_KEYS:
        value = getattr(settings, key, None)
        if value is None or value == "":
            continue
        store.put(key, str(value))
        written += 1
    return written


def main(argv: list[str]) -> int:
    setup_logging(settings.log_level)
    init_db()
    logger.info("Tables created")
    if "--seed-config" in argv:
        written = seed_config(ConfigStore(SessionLocal))
        logger.info(f"Seeded {written} config entries")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
