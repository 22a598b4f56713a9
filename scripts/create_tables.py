#!/usr/bin/env python3
"""
WardTrack - Local Replica Table Creation Script
Creates the replica tables using SQLAlchemy ORM
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from wardtrack.config import settings
from wardtrack.models import Base
from wardtrack.services.local_store import create_replica_engine


def create_all_tables():
    """Create all local replica tables"""
    print("=" * 60)
    print("WardTrack - Local Replica Table Creation")
    print("=" * 60)

    db_url = settings.local_database_url
    print(f"\nConnecting to local replica...")
    print(f"URL: {db_url.split('@')[1] if '@' in db_url else db_url}")

    try:
        engine = create_replica_engine(db_url, echo=settings.database_echo)

        print("\nCreating all tables...")
        Base.metadata.create_all(engine)

        print("\n" + "=" * 60)
        print("✓ All tables created successfully!")
        print("=" * 60)

        print("\nTables created:")
        for table in Base.metadata.sorted_tables:
            print(f"  - {table.name}")

        return 0

    except SQLAlchemyError as e:
        print(f"\n✗ Error creating tables: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(create_all_tables())
