#!/usr/bin/env python3
"""Database initialization script: creates the definition, run and result tables."""

import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from automation_engine.config import load_config
from automation_engine.core.logging import setup_logging
from automation_engine.storage.database import create_database_engine, create_tables


def main():
    """Initialize the database."""
    config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
    logger = setup_logging(level=config.log_level.value)

    try:
        logger.info(f"Initializing {config.database_type.value} database...")
        engine = create_database_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args()
        )
        create_tables(engine)
        logger.info("Database tables created successfully")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
