"""
FastAPI router for ingestion endpoints.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from . import dependencies, schemas, service
from .errors import BulkLoadError, DatabaseStageError, DuplicateColumnError, IngestionError
from .settings import IngestSettings

router = APIRouter()

logger = logging.getLogger(__name__)


def _error_detail(e: IngestionError, settings: IngestSettings) -> dict[str, Any]:
    detail: dict[str, Any] = {"message": e.message}

    if isinstance(e, DuplicateColumnError):
        detail["identifier"] = e.identifier
        detail["labels"] = e.labels

    if isinstance(e, BulkLoadError):
        # Earlier batches may already be committed; say so.
        detail["offset"] = e.offset
        detail["rows_loaded"] = e.rows_committed
        detail["partial"] = e.partial
        detail["rolled_back"] = e.rolled_back

    if isinstance(e, DatabaseStageError) and settings.expose_db_errors:
        detail["error"] = e.detail
        detail["statement"] = e.statement

    return detail


@router.post("/upload", response_model=schemas.UploadResponse)
async def upload_spreadsheet(
    file: UploadFile = File(...),
    pool: asyncpg.Pool = Depends(dependencies.get_pool),
    settings: IngestSettings = Depends(dependencies.get_settings),
) -> dict:
    """
    Upload a spreadsheet (.xlsx, .xlsm, .xls) and load its first sheet into
    a table named after the file.

    Any existing table with the same name is dropped and recreated.
    """
    try:
        summary = await service.ingest_upload(file, pool, settings)
    except IngestionError as e:
        if e.status_code >= 500:
            logger.error("upload_failed file=%s reason=%s", file.filename, e.message, exc_info=True)
        else:
            logger.info("upload_rejected file=%s status=%s reason=%s", file.filename, e.status_code, e.message)
        raise HTTPException(status_code=e.status_code, detail=_error_detail(e, settings)) from e

    return {
        "message": f"File {file.filename} loaded into table {summary.qualified_name}",
        "schema_name": summary.schema,
        "table_name": summary.table_name,
        "columns": [{"label": c.label, "identifier": c.identifier} for c in summary.columns],
        "rows_loaded": summary.rows_loaded,
        "batches": summary.batches,
        "replaced": summary.replaced,
    }
