"""
Bulk loading of decoded rows into a provisioned table.

Rows are written in contiguous batches, one insert per batch, strictly in
order. A failed batch is not retried; batches already written stay written
unless the caller wrapped the whole load in a transaction.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping, Sequence

import asyncpg

from core import db

from . import repository
from .errors import BulkLoadError, LoadCancelledError
from .repository import TargetTable
from .workbook import CellValue, cell_to_text

# One decoded row keyed by raw header label.
Record = Mapping[str, CellValue]

DEFAULT_BATCH_SIZE = 1000

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadStats:
    rows_loaded: int
    batches: int


def partition_rows(rows: Sequence[Record], batch_size: int) -> Iterator[tuple[int, Sequence[Record]]]:
    """
    Yield (offset, batch) slices of at most `batch_size` rows.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")
    for offset in range(0, len(rows), batch_size):
        yield offset, rows[offset : offset + batch_size]


def to_records(batch: Sequence[Record], target: TargetTable) -> list[tuple[str | None, ...]]:
    """
    Order each row's values by the target columns, coerced to text.
    Labels missing from a row load as NULL.
    """
    return [tuple(cell_to_text(row.get(c.label)) for c in target.columns) for row in batch]


async def load_rows(
    conn: asyncpg.Connection,
    target: TargetTable,
    rows: Sequence[Record],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> LoadStats:
    """
    Insert every row of `rows` into `target`.

    `deadline` is compared against `clock()` before each batch; once it has
    passed the load stops with LoadCancelledError. A batch in flight is
    never interrupted.
    """
    loaded = 0
    batches = 0

    for offset, batch in partition_rows(rows, batch_size):
        if deadline is not None and clock() >= deadline:
            raise LoadCancelledError(
                f"Load deadline passed before row {offset}.",
                offset=offset,
                rows_committed=loaded,
            )

        try:
            await repository.insert_batch(conn, target, to_records(batch, target))
        except db.DB_ERRORS as e:
            logger.warning(
                "batch_failed table=%s offset=%s size=%s committed=%s",
                target.lock_key,
                offset,
                len(batch),
                loaded,
            )
            raise BulkLoadError(
                f"Insert failed for rows starting at {offset}.",
                offset=offset,
                rows_committed=loaded,
                statement=repository.insert_sql(target),
                detail=str(e),
            ) from e

        loaded += len(batch)
        batches += 1
        logger.debug("batch_loaded table=%s offset=%s size=%s", target.lock_key, offset, len(batch))

    return LoadStats(rows_loaded=loaded, batches=batches)
