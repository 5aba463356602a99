#!/usr/bin/env python3
"""Create the onboarding tables (clients, agreements, audit_events, webhook_endpoints)."""
from sqlalchemy import inspect, text

from config import ConfigurationError, Settings
from database import create_db_engine
from models import Base


def main():
    print("Initializing database...")

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"✗ {e}")
        return False
    engine = create_db_engine(settings.database_url)

    # Test connection
    try:
        with engine.connect() as conn:
            version = conn.execute(text("SELECT version()")).scalar()
            print(f"✓ Connected to PostgreSQL: {version[:50]}...")
    except Exception as e:
        print(f"✗ Database connection failed: {e}")
        return False

    # Create all tables
    try:
        Base.metadata.create_all(bind=engine)
        tables = sorted(inspect(engine).get_table_names())
        print(f"✓ Database tables ready ({len(tables)}):")
        for table in tables:
            print(f"  - {table}")
    except Exception as e:
        print(f"✗ Failed to create tables: {e}")
        return False
    finally:
        engine.dispose()

    print("\n✓ Database initialization complete!")
    return True


if __name__ == "__main__":
    success = main()
    exit(0 if success else 1)
