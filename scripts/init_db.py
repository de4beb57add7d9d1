#!/usr/bin/env python3
"""
Create the contacts schema in PostgreSQL.

Creates the ``contacts`` table, its lookup indexes and the partial unique
index on (email, phone_number) that the identity service relies on to
detect concurrent inserts. Safe to run repeatedly.

Usage:
    python -m scripts.init_db
    python -m scripts.init_db --database-url postgresql+asyncpg://user:pw@host/db
"""

import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from src.services.sql_contact_store import create_sql_contact_store
from src.settings import settings


async def init_schema(database_url: str) -> None:
    store = create_sql_contact_store(database_url)
    try:
        await store.create_schema()
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create the contacts schema for the identity service",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    args = parser.parse_args()

    host = args.database_url.rsplit("@", 1)[-1]
    print(f"Creating contacts schema on {host}...")
    try:
        asyncio.run(init_schema(args.database_url))
    except (SQLAlchemyError, OSError) as e:
        print(f"Error creating schema: {e}", file=sys.stderr)
        sys.exit(1)
    print("Done.")


if __name__ == "__main__":
    main()
