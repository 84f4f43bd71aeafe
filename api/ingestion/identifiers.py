"""
Identifier sanitizing.

Turns human strings (file names, header labels) into names that are safe to
use as PostgreSQL identifiers. Only names go through here, never data values.

Rules:
- every character outside [A-Za-z0-9_] becomes "_" (one per character)
- table names are lower-cased
- column identifiers are lower-cased too, and "id" is reserved for the
  synthetic primary key
- PostgreSQL silently truncates identifiers to 63 bytes, so we truncate
  first and detect collisions on the truncated name
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

from .errors import DuplicateColumnError, UnsupportedFormatError

MAX_IDENTIFIER_LENGTH = 63
PRIMARY_KEY_COLUMN = "id"

DUPLICATE_SUFFIX = "suffix"
DUPLICATE_ERROR = "error"
DUPLICATE_POLICIES = {DUPLICATE_SUFFIX, DUPLICATE_ERROR}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")
_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class Column:
    label: str
    identifier: str


def sanitize_identifier(raw: str, *, lower: bool = False) -> str:
    safe = _UNSAFE_CHARS.sub("_", raw)
    return safe.lower() if lower else safe


def is_safe_identifier(name: str) -> bool:
    return bool(_SAFE_IDENTIFIER.match(name or "")) and len(name) <= MAX_IDENTIFIER_LENGTH


def _truncate(name: str, limit: int = MAX_IDENTIFIER_LENGTH) -> str:
    return name[:limit]


def table_name_from_filename(filename: str) -> str:
    """
    Derive the destination table name from an uploaded file name.

    "Datos Q1.xlsx" -> "datos_q1". Directory parts (some browsers send
    them) and the final extension are dropped.
    """
    # Normalize Windows separators so PurePath sees the base name.
    base = PurePath((filename or "").replace("\\", "/")).name
    name = _truncate(sanitize_identifier(PurePath(base).stem, lower=True))
    if not name:
        raise UnsupportedFormatError(f"Cannot derive a table name from file name '{filename}'.")
    return name


def column_identifier(label: str) -> str:
    return _truncate(sanitize_identifier(label, lower=True))


def _suffixed(base: str, n: int) -> str:
    suffix = f"_{n}"
    return _truncate(base, MAX_IDENTIFIER_LENGTH - len(suffix)) + suffix


def plan_columns(labels: list[str], *, on_duplicate: str = DUPLICATE_SUFFIX) -> list[Column]:
    """
    Map raw header labels to unique column identifiers, in header order.

    Two labels can sanitize to the same identifier ("Monto Inicial" and
    "Monto-Inicial"), and a label can sanitize to the reserved "id".
    With `on_duplicate="suffix"` the later column gets "_<position>"
    (1-based header position, bumped until free). With "error" a
    DuplicateColumnError is raised instead.
    """
    if on_duplicate not in DUPLICATE_POLICIES:
        raise ValueError(f"Unknown duplicate column policy: {on_duplicate!r}")

    used: dict[str, str] = {PRIMARY_KEY_COLUMN: "<primary key>"}
    columns: list[Column] = []

    for position, label in enumerate(labels, start=1):
        identifier = column_identifier(label)
        if not identifier:
            identifier = f"column_{position}"

        if identifier in used:
            if on_duplicate == DUPLICATE_ERROR:
                raise DuplicateColumnError(
                    f"Columns {used[identifier]!r} and {label!r} both map to '{identifier}'.",
                    identifier=identifier,
                    labels=[used[identifier], label],
                )
            n = position
            candidate = _suffixed(identifier, n)
            while candidate in used:
                n += 1
                candidate = _suffixed(identifier, n)
            identifier = candidate

        used[identifier] = label
        columns.append(Column(label=label, identifier=identifier))

    return columns
