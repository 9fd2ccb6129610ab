"""Initialize database schema for the problem hub.

Creates the problem, vote, expert and expertise tag tables.
Run this before starting the API server.
"""

import argparse
import asyncio
import sys
import traceback

from hub.config import settings
from hub.db import create_schema, engine


async def init_database(drop: bool = False):
    """Create all database tables, optionally dropping existing ones first."""
    print(f"Initializing database: {settings.db.url}")
    if drop:
        print("Dropping existing tables...")

    tables = await create_schema(engine, drop=drop)
    await engine.dispose()

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(tables)}")


async def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args(argv)

    try:
        await init_database(drop=args.drop)
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
