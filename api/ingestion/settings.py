"""
Ingestion settings, read from the environment.
"""

from __future__ import annotations

from dataclasses import dataclass

from core import config

from . import identifiers
from .errors import IngestionConfigError
from .loader import DEFAULT_BATCH_SIZE

DEFAULT_SCHEMA = "sis_cuipo"

# Keep this conservative in dev; you can raise it later.
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB
DEFAULT_LOCK_WAIT_S = 30.0


@dataclass(frozen=True)
class IngestSettings:
    schema: str = DEFAULT_SCHEMA
    batch_size: int = DEFAULT_BATCH_SIZE
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    duplicate_columns: str = identifiers.DUPLICATE_SUFFIX
    atomic_load: bool = False
    load_timeout_s: float = 0.0
    lock_wait_s: float = DEFAULT_LOCK_WAIT_S
    expose_db_errors: bool = True

    @classmethod
    def from_env(cls) -> "IngestSettings":
        """
        INGEST_SCHEMA, INGEST_BATCH_SIZE, MAX_UPLOAD_BYTES,
        INGEST_DUPLICATE_COLUMNS (suffix|error), INGEST_ATOMIC_LOAD,
        INGEST_LOAD_TIMEOUT_S (0 = no deadline), INGEST_LOCK_WAIT_S, APP_ENV.
        """
        schema = config.env_str("INGEST_SCHEMA", DEFAULT_SCHEMA)
        if not identifiers.is_safe_identifier(schema):
            raise IngestionConfigError(f"Invalid INGEST_SCHEMA {schema!r}.")

        batch_size = config.env_int("INGEST_BATCH_SIZE", DEFAULT_BATCH_SIZE)
        if batch_size <= 0:
            batch_size = DEFAULT_BATCH_SIZE

        max_upload_bytes = config.env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
        if max_upload_bytes <= 0:
            raise IngestionConfigError("Invalid MAX_UPLOAD_BYTES. It must be > 0.")

        duplicate_columns = config.env_str("INGEST_DUPLICATE_COLUMNS", identifiers.DUPLICATE_SUFFIX).lower()
        if duplicate_columns not in identifiers.DUPLICATE_POLICIES:
            raise IngestionConfigError(
                f"Invalid INGEST_DUPLICATE_COLUMNS {duplicate_columns!r}. "
                f"Allowed: {sorted(identifiers.DUPLICATE_POLICIES)}"
            )

        return cls(
            schema=schema,
            batch_size=batch_size,
            max_upload_bytes=max_upload_bytes,
            duplicate_columns=duplicate_columns,
            atomic_load=config.env_bool("INGEST_ATOMIC_LOAD", False),
            load_timeout_s=max(0.0, config.env_float("INGEST_LOAD_TIMEOUT_S", 0.0)),
            lock_wait_s=max(0.0, config.env_float("INGEST_LOCK_WAIT_S", DEFAULT_LOCK_WAIT_S)),
            expose_db_errors=not config.is_production(),
        )
