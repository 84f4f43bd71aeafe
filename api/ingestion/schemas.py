"""
Pydantic schemas for ingestion endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel


class ColumnResponse(BaseModel):
    label: str
    identifier: str


class UploadResponse(BaseModel):
    message: str
    schema_name: str
    table_name: str
    columns: list[ColumnResponse]
    rows_loaded: int
    batches: int
    replaced: bool
