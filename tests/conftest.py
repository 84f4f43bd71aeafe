"""Pytest configuration and shared fakes.

The fake pool/connection understand exactly the SQL that
`ingestion.repository` and `tables.repository` emit, keep tables in memory,
and roll back on failed transactions like PostgreSQL does.
"""

from __future__ import annotations

import copy
import datetime as dt
import io
import re
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import asyncpg
import openpyxl
import pytest
import xlwt


def pytest_sessionstart() -> None:
    """Add api directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    api_path = project_root / "api"
    if str(api_path) not in sys.path:
        sys.path.insert(0, str(api_path))


_DROP = re.compile(r'^DROP TABLE IF EXISTS "([^"]+)"\."([^"]+)"$')
_CREATE = re.compile(r'^CREATE TABLE "([^"]+)"\."([^"]+)" \((.*)\)$', re.S)
_INSERT = re.compile(r'^INSERT INTO "([^"]+)"\."([^"]+)" \(([^)]*)\) VALUES')
_QUOTED = re.compile(r'"([^"]+)"')


@dataclass
class FakeTable:
    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    next_id: int = 1


class FakeDatabase:
    def __init__(self) -> None:
        self.tables: dict[tuple[str, str], FakeTable] = {}
        self.locks: dict[str, int] = {}
        self.statements: list[str] = []
        self.insert_calls = 0
        # 0-based executemany call that should fail
        self.fail_insert_call: int | None = None
        # statement prefix ("DROP", "CREATE") that should fail
        self.fail_ddl: str | None = None
        # pg_try_advisory_lock raises instead of answering
        self.fail_lock = False

    def table(self, schema: str, name: str) -> FakeTable:
        return self.tables[(schema, name)]

    def seed(self, schema: str, name: str, columns: list[str], rows: list[dict[str, Any]]) -> None:
        table = FakeTable(columns=["id"] + columns)
        for row in rows:
            table.rows.append({"id": table.next_id, **row})
            table.next_id += 1
        self.tables[(schema, name)] = table


class FakeTransaction:
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database
        self.snapshot: dict[tuple[str, str], FakeTable] | None = None

    async def __aenter__(self) -> "FakeTransaction":
        self.snapshot = copy.deepcopy(self.database.tables)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self.snapshot is not None:
            self.database.tables = self.snapshot
        return False


class FakeConnection:
    def __init__(self, database: FakeDatabase, conn_id: int) -> None:
        self.database = database
        self.conn_id = conn_id

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self.database)

    async def execute(self, sql: str, *args: Any) -> str:
        sql = sql.strip()
        self.database.statements.append(sql)
        if self.database.fail_ddl and sql.startswith(self.database.fail_ddl):
            raise asyncpg.InterfaceError("permission denied for schema")

        m = _DROP.match(sql)
        if m:
            self.database.tables.pop((m[1], m[2]), None)
            return "DROP TABLE"

        m = _CREATE.match(sql)
        if m:
            key = (m[1], m[2])
            if key in self.database.tables:
                raise asyncpg.InterfaceError(f'relation "{m[2]}" already exists')
            defs = [d.strip() for d in m[3].split(",")]
            assert defs[0] == '"id" serial PRIMARY KEY'
            assert all(d.endswith(" text") for d in defs[1:])
            self.database.tables[key] = FakeTable(columns=[_QUOTED.match(d)[1] for d in defs])
            return "CREATE TABLE"

        raise AssertionError(f"unexpected statement: {sql}")

    async def executemany(self, sql: str, records: Iterable[Iterable[Any]]) -> None:
        self.database.statements.append(sql)
        call = self.database.insert_calls
        self.database.insert_calls += 1
        if call == self.database.fail_insert_call:
            raise asyncpg.InterfaceError("connection was closed in the middle of operation")

        m = _INSERT.match(sql)
        assert m, sql
        table = self.database.tables.get((m[1], m[2]))
        if table is None:
            raise asyncpg.InterfaceError(f'relation "{m[2]}" does not exist')
        names = _QUOTED.findall(m[3])

        staged = []
        for i, record in enumerate(records):
            values = list(record)
            assert len(values) == len(names)
            staged.append({"id": table.next_id + i, **dict(zip(names, values))})
        table.rows.extend(staged)
        table.next_id += len(staged)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        locks = self.database.locks
        if "pg_try_advisory_lock" in sql:
            if self.database.fail_lock:
                raise asyncpg.InterfaceError("connection lost")
            holder = locks.get(args[0])
            if holder is not None and holder != self.conn_id:
                return False
            locks[args[0]] = self.conn_id
            return True
        if "pg_advisory_unlock" in sql:
            if locks.get(args[0]) == self.conn_id:
                del locks[args[0]]
                return True
            return False
        if "information_schema.tables" in sql:
            return (args[0], args[1]) in self.database.tables
        raise AssertionError(f"unexpected query: {sql}")


class FakePool:
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database
        self.acquired = 0
        self.released = 0
        self._next_id = 0

    @asynccontextmanager
    async def acquire(self):
        self._next_id += 1
        conn = FakeConnection(self.database, self._next_id)
        self.acquired += 1
        try:
            yield conn
        finally:
            self.released += 1
            # asyncpg resets the session on release, dropping advisory locks.
            for key, holder in list(self.database.locks.items()):
                if holder == conn.conn_id:
                    del self.database.locks[key]

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        assert "information_schema.tables" in sql
        names = sorted(name for (schema, name) in self.database.tables if schema == args[0])
        return [{"table_name": name} for name in names]


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_pool(fake_db: FakeDatabase) -> FakePool:
    return FakePool(fake_db)


@pytest.fixture
def make_xlsx():
    """Build .xlsx bytes from row lists; extra sheets come after the first."""

    def _make(rows: list[list[Any]], *, title: str = "Hoja1", extra_sheets: dict[str, list[list[Any]]] | None = None) -> bytes:
        book = openpyxl.Workbook()
        sheet = book.active
        sheet.title = title
        for row in rows:
            sheet.append(row)
        for name, extra_rows in (extra_sheets or {}).items():
            extra = book.create_sheet(name)
            for row in extra_rows:
                extra.append(row)
        buf = io.BytesIO()
        book.save(buf)
        return buf.getvalue()

    return _make


@pytest.fixture
def make_xls():
    """Build legacy .xls bytes; dates get a date number format so xlrd reports them as dates."""

    def _make(rows: list[list[Any]], *, title: str = "Hoja1") -> bytes:
        book = xlwt.Workbook(encoding="utf-8")
        sheet = book.add_sheet(title)
        date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD")
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                if value is None:
                    continue
                if isinstance(value, (dt.date, dt.datetime)):
                    sheet.write(r, c, value, date_style)
                else:
                    sheet.write(r, c, value)
        buf = io.BytesIO()
        book.save(buf)
        return buf.getvalue()

    return _make
