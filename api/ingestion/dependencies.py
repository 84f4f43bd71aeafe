"""
FastAPI dependencies for ingestion routes.
"""

from __future__ import annotations

import asyncpg
from fastapi import HTTPException, status

from core import db

from .errors import IngestionConfigError
from .settings import IngestSettings


def get_pool() -> asyncpg.Pool:
    return db.pool()


def get_settings() -> IngestSettings:
    try:
        return IngestSettings.from_env()
    except IngestionConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": e.message},
        ) from e
