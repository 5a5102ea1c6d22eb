#!/usr/bin/env python3
"""
Database initialization script for Docker.
Creates tables (and the PostgreSQL updated_at triggers) if they don't exist.
"""

import sys

from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from database import build_engine, init_database


def main():
    """Initialize the database by creating all tables."""
    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        print("Creating database tables...")
        init_database(engine)
        print("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        print(f"❌ Error creating database tables: {e}")
        sys.exit(1)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
