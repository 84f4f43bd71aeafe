"""Unit tests for environment-driven ingestion settings."""

from __future__ import annotations

import pytest

from ingestion.errors import IngestionConfigError
from ingestion.settings import DEFAULT_MAX_UPLOAD_BYTES, IngestSettings

ENV_VARS = [
    "INGEST_SCHEMA",
    "INGEST_BATCH_SIZE",
    "MAX_UPLOAD_BYTES",
    "INGEST_DUPLICATE_COLUMNS",
    "INGEST_ATOMIC_LOAD",
    "INGEST_LOAD_TIMEOUT_S",
    "INGEST_LOCK_WAIT_S",
    "APP_ENV",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = IngestSettings.from_env()

    assert settings.schema == "sis_cuipo"
    assert settings.batch_size == 1000
    assert settings.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES
    assert settings.duplicate_columns == "suffix"
    assert settings.atomic_load is False
    assert settings.load_timeout_s == 0.0
    assert settings.expose_db_errors is True


def test_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INGEST_SCHEMA", "staging")
    monkeypatch.setenv("INGEST_BATCH_SIZE", "250")
    monkeypatch.setenv("INGEST_DUPLICATE_COLUMNS", "ERROR")
    monkeypatch.setenv("INGEST_ATOMIC_LOAD", "1")
    monkeypatch.setenv("INGEST_LOAD_TIMEOUT_S", "12.5")

    settings = IngestSettings.from_env()

    assert settings.schema == "staging"
    assert settings.batch_size == 250
    assert settings.duplicate_columns == "error"
    assert settings.atomic_load is True
    assert settings.load_timeout_s == 12.5


def test_non_positive_batch_size_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INGEST_BATCH_SIZE", "0")

    assert IngestSettings.from_env().batch_size == 1000


def test_production_hides_database_diagnostics(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")

    assert IngestSettings.from_env().expose_db_errors is False


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("INGEST_SCHEMA", "bad schema; drop"),
        ("INGEST_DUPLICATE_COLUMNS", "merge"),
        ("MAX_UPLOAD_BYTES", "-1"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(IngestionConfigError):
        IngestSettings.from_env()
