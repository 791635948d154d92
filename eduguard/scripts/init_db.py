"""
Create the EduGuard tables, optionally registering a first school

Usage:
    python -m eduguard.scripts.init_db
    python -m eduguard.scripts.init_db --school-name "GS Kigali" --district Gasabo
"""
import argparse
from typing import List, Optional

from ..core.logging_config import configure_logging
from ..database.config import get_db_session, init_database
from ..database.repositories import SchoolRepository


def init_db(database_url: Optional[str] = None) -> None:
    """Create all tables"""
    print("Creating database tables...")
    init_database(database_url, create_tables=True)
    print("✓ Tables created successfully!")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Initialize the EduGuard database")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    parser.add_argument("--school-name", help="Register a school after creating the tables")
    parser.add_argument("--district")
    parser.add_argument("--sector")
    args = parser.parse_args(argv)

    configure_logging()
    init_db(args.database_url)

    if args.school_name:
        with get_db_session() as session:
            school = SchoolRepository(session).create(args.school_name, district=args.district, sector=args.sector)
            print(f"✓ School registered: {school.name} ({school.id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
