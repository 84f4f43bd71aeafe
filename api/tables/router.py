"""
Table catalog API endpoints.
"""

from __future__ import annotations

import logging

import asyncpg
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from core import db
from ingestion import dependencies
from ingestion.settings import IngestSettings

from . import repository

router = APIRouter()

logger = logging.getLogger(__name__)


class TablesResponse(BaseModel):
    schema_name: str
    tables: list[str]


@router.get("/tables", response_model=TablesResponse)
async def list_tables(
    pool: asyncpg.Pool = Depends(dependencies.get_pool),
    settings: IngestSettings = Depends(dependencies.get_settings),
) -> dict:
    """
    List the tables available in the ingestion schema.
    """
    try:
        tables = await repository.list_tables(pool, schema=settings.schema)
    except db.DB_ERRORS as e:
        logger.exception("list_tables_failed schema=%s", settings.schema)
        raise HTTPException(
            status_code=500,
            detail={"message": f"Could not list tables in schema {settings.schema}."},
        ) from e
    return {"schema_name": settings.schema, "tables": tables}
