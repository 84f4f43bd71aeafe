"""
Table catalog queries.
"""

from __future__ import annotations

import asyncpg

from core import db


async def list_tables(pool: asyncpg.Pool, *, schema: str) -> list[str]:
    """
    Base tables (no views) in `schema`, sorted by name.
    """
    rows = await db.fetch_all(
        pool,
        """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
        """,
        schema,
    )
    return [str(r["table_name"]) for r in rows]
