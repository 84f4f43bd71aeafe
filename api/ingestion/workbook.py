"""
Spreadsheet decoding.

Turns uploaded bytes into a `Worksheet`: the first sheet only, with the first
non-blank row as header and every data row padded to the header width.

- .xlsx / .xlsm are read with openpyxl (read-only, cached formula values)
- .xls is read with xlrd
"""

from __future__ import annotations

import datetime as dt
import io
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Union

import openpyxl
import xlrd

from .errors import UnsupportedFormatError, WorkbookDecodeError

# A decoded cell. Dates and times arrive as ISO-8601 strings.
CellValue = Union[str, int, float, bool, None]
Row = tuple[CellValue, ...]

OPENPYXL_EXTENSIONS = {".xlsx", ".xlsm"}
XLRD_EXTENSIONS = {".xls"}
ALLOWED_EXTENSIONS = OPENPYXL_EXTENSIONS | XLRD_EXTENSIONS

EMPTY_HEADER = "__EMPTY"


@dataclass(frozen=True)
class Worksheet:
    name: str
    columns: list[str]
    rows: list[Row] = field(default_factory=list)

    def records(self) -> Iterator[dict[str, CellValue]]:
        """
        Rows keyed by raw header label.
        """
        for row in self.rows:
            yield dict(zip(self.columns, row))


def cell_to_text(value: CellValue) -> str | None:
    """
    Coerce a decoded cell to the text stored in the database.

    None stays NULL; booleans become "true"/"false"; floats with no
    fractional part lose the ".0" so 5.0 is stored as "5".
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _normalize_cell(value: Any) -> CellValue:
    if value == "":
        return None
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    # timedelta, Decimal and friends
    return str(value)


def _is_blank(row: Iterable[CellValue]) -> bool:
    return all(v is None for v in row)


def _trimmed_width(row: Row) -> int:
    width = len(row)
    while width and row[width - 1] is None:
        width -= 1
    return width


def _header_labels(raw: Row, width: int) -> list[str]:
    """
    Stringify header cells; blank ones become __EMPTY, __EMPTY_1, ...
    and repeated labels get _1, _2, ... so every label is distinct.
    """
    labels: list[str] = []
    taken: set[str] = set()
    repeats: dict[str, int] = {}
    empty_count = 0

    for i in range(width):
        value = raw[i] if i < len(raw) else None
        text = cell_to_text(value)
        if not text:
            text = EMPTY_HEADER if empty_count == 0 else f"{EMPTY_HEADER}_{empty_count}"
            empty_count += 1

        label = text
        if label in taken:
            n = repeats.get(text, 0)
            while label in taken:
                n += 1
                label = f"{text}_{n}"
            repeats[text] = n
        taken.add(label)
        labels.append(label)

    return labels


def rows_to_worksheet(name: str, raw_rows: Iterable[Iterable[Any]]) -> Worksheet:
    """
    Build a Worksheet from raw row tuples (any decoder backend).
    """
    header: Row | None = None
    data: list[Row] = []

    for raw in raw_rows:
        row = tuple(_normalize_cell(v) for v in raw)
        if _is_blank(row):
            continue
        if header is None:
            header = row
        else:
            data.append(row)

    if header is None:
        return Worksheet(name=name, columns=[], rows=[])

    width = max([_trimmed_width(header)] + [_trimmed_width(r) for r in data])
    columns = _header_labels(header, width)
    rows = [(r + (None,) * width)[:width] for r in data]
    return Worksheet(name=name, columns=columns, rows=rows)


def _decode_openpyxl(data: bytes) -> Worksheet:
    try:
        book = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        raise WorkbookDecodeError("Could not read workbook (file may be corrupted or unsupported).") from e

    try:
        if not book.worksheets:
            raise WorkbookDecodeError("Workbook has no worksheets.")
        sheet = book.worksheets[0]
        return rows_to_worksheet(sheet.title, sheet.iter_rows(values_only=True))
    finally:
        book.close()


def _xlrd_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate_as_datetime(cell.value, datemode)
        except xlrd.XLDateError:
            return cell.value
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(cell.value)
    return cell.value


def _decode_xlrd(data: bytes) -> Worksheet:
    try:
        book = xlrd.open_workbook(file_contents=data, on_demand=True)
    except Exception as e:
        raise WorkbookDecodeError("Could not read workbook (file may be corrupted or unsupported).") from e

    try:
        if book.nsheets == 0:
            raise WorkbookDecodeError("Workbook has no worksheets.")
        sheet = book.sheet_by_index(0)
        raw_rows = (
            [_xlrd_cell(cell, book.datemode) for cell in sheet.row(rx)]
            for rx in range(sheet.nrows)
        )
        return rows_to_worksheet(sheet.name, raw_rows)
    finally:
        book.release_resources()


def decode_workbook(data: bytes, ext: str) -> Worksheet:
    """
    Decode the first worksheet of a spreadsheet file.

    `ext` is the lower-cased file extension including the dot.
    """
    if ext in OPENPYXL_EXTENSIONS:
        return _decode_openpyxl(data)
    if ext in XLRD_EXTENSIONS:
        return _decode_xlrd(data)
    raise UnsupportedFormatError(
        f"Unsupported file type '{ext}'. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
    )
