"""
Ingestion "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Validate uploads
- Read file bytes with a size limit
- Run the spreadsheet -> table pipeline:
  decode -> sanitize names -> provision table -> bulk load
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import asyncpg
from fastapi import UploadFile

from core import db

from . import identifiers, loader, repository, workbook
from .errors import (
    BulkLoadError,
    EmptyInputError,
    LoadCancelledError,
    SchemaProvisioningError,
    UnsupportedFormatError,
    UploadTooLargeError,
)
from .identifiers import Column
from .repository import TargetTable
from .settings import IngestSettings
from .workbook import Worksheet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestSummary:
    schema: str
    table_name: str
    columns: tuple[Column, ...]
    rows_loaded: int
    batches: int
    replaced: bool

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table_name}"


def _file_ext(filename: str) -> str:
    return Path(filename).suffix.lower()


def validate_filename(filename: str | None) -> str:
    """
    Return the normalized file extension if this upload is acceptable.

    We validate based on filename extension here because `content_type`
    is often missing or incorrect in practice.
    """
    if not filename:
        raise UnsupportedFormatError("Missing filename.")

    ext = _file_ext(filename)
    if ext not in workbook.ALLOWED_EXTENSIONS:
        raise UnsupportedFormatError(
            f"Unsupported file type '{ext}'. Allowed: {sorted(workbook.ALLOWED_EXTENSIONS)}"
        )

    return ext


async def read_upload_bytes(file: UploadFile, max_bytes: int) -> bytes:
    """
    Read the upload into memory, enforcing a maximum size.
    """
    chunk_size = 1024 * 1024  # 1 MiB
    buf = bytearray()

    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise UploadTooLargeError(f"File too large. Max is {max_bytes} bytes.")

    return bytes(buf)


def prepare_target(filename: str, data: bytes, settings: IngestSettings) -> tuple[TargetTable, Worksheet]:
    """
    Everything that happens before the database is touched.
    """
    ext = validate_filename(filename)
    table_name = identifiers.table_name_from_filename(filename)

    sheet = workbook.decode_workbook(data, ext)
    if not sheet.rows:
        # Nothing to derive columns from; leave any existing table alone.
        raise EmptyInputError("The file is empty.")

    columns = identifiers.plan_columns(sheet.columns, on_duplicate=settings.duplicate_columns)
    target = TargetTable(schema=settings.schema, name=table_name, columns=tuple(columns))
    return target, sheet


async def _provision_and_load(
    conn: asyncpg.Connection,
    target: TargetTable,
    sheet: Worksheet,
    *,
    settings: IngestSettings,
    deadline: float | None,
    clock: Callable[[], float],
) -> tuple[bool, loader.LoadStats]:
    # The lock wait may have used up the deadline; stop before dropping anything.
    if deadline is not None and clock() >= deadline:
        raise LoadCancelledError(
            f"Load deadline passed before table {target.lock_key} was provisioned.",
            offset=0,
            rows_committed=0,
        )

    replaced = await repository.replace_table(conn, target)
    stats = await loader.load_rows(
        conn,
        target,
        list(sheet.records()),
        batch_size=settings.batch_size,
        deadline=deadline,
        clock=clock,
    )
    return replaced, stats


async def _provision_and_load_atomic(
    conn: asyncpg.Connection,
    target: TargetTable,
    sheet: Worksheet,
    *,
    settings: IngestSettings,
    deadline: float | None,
    clock: Callable[[], float],
) -> tuple[bool, loader.LoadStats]:
    """
    Same as `_provision_and_load`, inside one transaction: on any failure the
    drop is rolled back too and the previous table survives untouched.
    """
    try:
        async with conn.transaction():
            return await _provision_and_load(
                conn, target, sheet, settings=settings, deadline=deadline, clock=clock
            )
    except BulkLoadError as e:
        e.rows_committed = 0
        e.rolled_back = True
        raise
    except db.DB_ERRORS as e:
        # COMMIT itself failed.
        err = BulkLoadError(
            f"Could not commit table {target.schema}.{target.name}.",
            offset=0,
            rows_committed=0,
            statement="COMMIT",
            detail=str(e),
        )
        err.rolled_back = True
        raise err from e


async def ingest_spreadsheet(
    pool: asyncpg.Pool,
    *,
    filename: str,
    data: bytes,
    settings: IngestSettings,
    clock: Callable[[], float] = time.monotonic,
) -> IngestSummary:
    """
    Turn one spreadsheet into a freshly (re)created table.

    Any table with the same derived name is dropped first. One pool
    connection is held for provisioning plus loading and released on every
    exit path.
    """
    target, sheet = prepare_target(filename, data, settings)
    deadline = clock() + settings.load_timeout_s if settings.load_timeout_s > 0 else None

    run = _provision_and_load_atomic if settings.atomic_load else _provision_and_load

    try:
        async with pool.acquire() as conn:
            async with repository.table_lock(conn, target.lock_key, wait_s=settings.lock_wait_s, clock=clock):
                replaced, stats = await run(
                    conn, target, sheet, settings=settings, deadline=deadline, clock=clock
                )
    except db.DB_ERRORS as e:
        # Only acquire/release get here; every statement wraps its own errors.
        raise SchemaProvisioningError(
            f"Could not get a database connection for table {target.lock_key}.",
            statement="pool.acquire",
            detail=str(e),
        ) from e

    logger.info(
        "upload_ingested file=%s table=%s rows=%s batches=%s replaced=%s",
        filename,
        target.lock_key,
        stats.rows_loaded,
        stats.batches,
        replaced,
    )
    return IngestSummary(
        schema=target.schema,
        table_name=target.name,
        columns=target.columns,
        rows_loaded=stats.rows_loaded,
        batches=stats.batches,
        replaced=replaced,
    )


async def ingest_upload(file: UploadFile, pool: asyncpg.Pool, settings: IngestSettings) -> IngestSummary:
    """
    High-level ingestion step for a single uploaded file.

    This is what the FastAPI router should call.
    """
    filename = file.filename or ""
    validate_filename(filename)
    data = await read_upload_bytes(file, max_bytes=settings.max_upload_bytes)
    return await ingest_spreadsheet(pool, filename=filename, data=data, settings=settings)
