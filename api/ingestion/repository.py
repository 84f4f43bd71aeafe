"""
Ingestion persistence.
This module is where ingestion-related SQL lives.

Identifiers are always double-quoted. They are already sanitized by
`identifiers.py`, quoting keeps them case-exact and keyword-safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Sequence

import asyncpg

from core import db

from .errors import ConcurrentModificationError, SchemaProvisioningError
from .identifiers import PRIMARY_KEY_COLUMN, Column

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL_S = 0.2


@dataclass(frozen=True)
class TargetTable:
    schema: str
    name: str
    columns: tuple[Column, ...]

    @property
    def qualified_name(self) -> str:
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"

    @property
    def lock_key(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def identifiers(self) -> list[str]:
        return [c.identifier for c in self.columns]


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def drop_table_sql(target: TargetTable) -> str:
    return f"DROP TABLE IF EXISTS {target.qualified_name}"


def create_table_sql(target: TargetTable) -> str:
    column_defs = [f"{quote_ident(PRIMARY_KEY_COLUMN)} serial PRIMARY KEY"]
    column_defs.extend(f"{quote_ident(c.identifier)} text" for c in target.columns)
    return f"CREATE TABLE {target.qualified_name} ({', '.join(column_defs)})"


def insert_sql(target: TargetTable) -> str:
    names = ", ".join(quote_ident(c.identifier) for c in target.columns)
    placeholders = ", ".join(f"${i}" for i in range(1, len(target.columns) + 1))
    return f"INSERT INTO {target.qualified_name} ({names}) VALUES ({placeholders})"


async def table_exists(conn: asyncpg.Connection, *, schema: str, name: str) -> bool:
    exists = await conn.fetchval(
        """
        SELECT EXISTS (
          SELECT 1
          FROM information_schema.tables
          WHERE table_schema = $1
            AND table_name = $2
        )
        """,
        schema,
        name,
    )
    return bool(exists)


async def replace_table(conn: asyncpg.Connection, target: TargetTable) -> bool:
    """
    Drop any table with the target's name and create it fresh.

    Runs in one transaction (PostgreSQL DDL is transactional), so on failure
    the previous table, if any, is left exactly as it was.
    Returns True when a previous table was replaced.
    """
    statement = "information_schema.tables lookup"
    try:
        async with conn.transaction():
            existed = await table_exists(conn, schema=target.schema, name=target.name)
            statement = drop_table_sql(target)
            await conn.execute(statement)
            statement = create_table_sql(target)
            await conn.execute(statement)
    except db.DB_ERRORS as e:
        raise SchemaProvisioningError(
            f"Could not create table {target.schema}.{target.name}.",
            statement=statement,
            detail=str(e),
        ) from e

    logger.info(
        "table_provisioned table=%s columns=%s replaced=%s",
        target.lock_key,
        len(target.columns),
        existed,
    )
    return existed


async def insert_batch(conn: asyncpg.Connection, target: TargetTable, records: Sequence[Sequence[Any]]) -> None:
    """
    Insert one batch. asyncpg runs executemany atomically, so a batch lands
    in full or not at all.
    """
    if not records:
        return
    await conn.executemany(insert_sql(target), records)


@asynccontextmanager
async def table_lock(
    conn: asyncpg.Connection,
    key: str,
    *,
    wait_s: float,
    clock=time.monotonic,
) -> AsyncIterator[None]:
    """
    Hold a session advisory lock for one destination table.

    Two uploads resolving to the same table would otherwise race on
    drop/create/insert. We poll `pg_try_advisory_lock` until `wait_s`
    passes and then give up loudly.
    """
    statement = "SELECT pg_try_advisory_lock(hashtext($1))"
    deadline = clock() + max(0.0, wait_s)
    while True:
        try:
            acquired = await conn.fetchval(statement, key)
        except db.DB_ERRORS as e:
            raise SchemaProvisioningError(
                f"Could not lock table {key}.",
                statement=statement,
                detail=str(e),
            ) from e
        if acquired:
            break
        if clock() >= deadline:
            raise ConcurrentModificationError(
                f"Table {key} is being loaded by another upload. Try again later."
            )
        await asyncio.sleep(LOCK_POLL_INTERVAL_S)

    try:
        yield
    finally:
        try:
            await conn.fetchval("SELECT pg_advisory_unlock(hashtext($1))", key)
        except db.DB_ERRORS:
            # The pool resets the session (and its advisory locks) on release.
            logger.warning("advisory_unlock_failed key=%s", key, exc_info=True)
