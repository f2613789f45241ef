"""
Initialize PostgreSQL database schema
Creates the booking, slot hold, coupon and referral tables
"""
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from core.database import Base, engine, init_db


def init_database():
    """Create all tables in the database"""
    print("Creating PostgreSQL tables...")

    try:
        init_db()
        print("Tables created successfully!")
        print("\nCreated tables:")
        for name in sorted(Base.metadata.tables):
            print(f"  - {name}")

    except SQLAlchemyError as e:
        print(f"Error creating tables: {e}")
        sys.exit(1)

if __name__ == "__main__":
    init_database()
