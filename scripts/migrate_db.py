#!/usr/bin/env python3
"""
Database Migration — create the request store table for the sql backend.

Usage:
    python scripts/migrate_db.py                    # Create store_entries
    python scripts/migrate_db.py --check            # Report status only
    python scripts/migrate_db.py --purge-expired    # Also drop expired rows
"""
import argparse
import asyncio
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_TABLE_QUERIES = {
    "postgresql": "SELECT tablename FROM pg_tables WHERE schemaname = 'public'",
    "mysql": "SHOW TABLES",
    "sqlite": "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'",
}


async def _existing_tables(engine) -> list[str]:
    from sqlalchemy import text

    query = _TABLE_QUERIES.get(engine.dialect.name, _TABLE_QUERIES["sqlite"])
    async with engine.connect() as conn:
        result = await conn.execute(text(query))
        return [row[0] for row in result.fetchall()]


async def run_migration(check_only: bool = False, purge_expired: bool = False):
    from config.settings import load_settings
    settings = load_settings()

    from database.models import Base
    from database.session import close_db, get_engine, init_db

    engine = get_engine(settings.store.database_url)
    url = str(engine.url)
    print(f"Database: {engine.dialect.name}")
    print(f"URL: {url.split('@')[-1]}")

    try:
        if check_only:
            existing = await _existing_tables(engine)
            print(f"Tables existing: {', '.join(existing) or '(none)'}")
            missing = set(Base.metadata.tables.keys()) - set(existing)
            if missing:
                print(f"Tables MISSING: {', '.join(sorted(missing))}")
                print("Run without --check to create them.")
            else:
                print("All tables exist.")
            return

        print("Running database migration...")
        await init_db(settings.store.database_url)
        print(f"Tables created/verified: {', '.join(await _existing_tables(engine))}")

        if purge_expired:
            from database.store import SqlRequestStore
            removed = await SqlRequestStore(settings.store.database_url).purge_expired()
            print(f"Expired entries removed: {removed}")

        print("Migration complete.")
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Request store migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    parser.add_argument("--purge-expired", action="store_true", help="Delete expired entries")
    args = parser.parse_args()

    asyncio.run(run_migration(check_only=args.check, purge_expired=args.purge_expired))


if __name__ == "__main__":
    main()
