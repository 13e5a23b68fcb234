"""Spreadsheet and CSV loading for bulk generation."""
from __future__ import annotations

import datetime as _dt
import logging
import math
import re
from io import BytesIO
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

import pandas as pd

from bulk_errors import ParseError
from template_model import TemplateField

logger = logging.getLogger(__name__)

SheetType = Union[str, int, None]

SUPPORTED_EXTENSIONS = {".xlsx", ".xls", ".csv", ".tsv"}
_EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}

CLASSIFICATION_THRESHOLD = 0.7
SAMPLE_VALUE_COUNT = 5
SAMPLE_SHEET_NAME = "البيانات"
SAMPLE_VALUE_PREFIX = "مثال_"

_DATE_PATTERN = re.compile(r"^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}$")


class ParsedTable(NamedTuple):
    headers: Tuple[str, ...]
    rows: Tuple[Dict[str, str], ...]
    file_name: str = ""
    sheet_name: Optional[str] = None

    @property
    def total_rows(self) -> int:
        return len(self.rows)


class ColumnInfo(NamedTuple):
    name: str
    type: str
    is_numeric: bool
    sample_values: Tuple[str, ...]
    unique_count: int
    empty_count: int


def _cell_to_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return ""
        value = value.to_pydatetime()
    if isinstance(value, _dt.datetime):
        if value.time() == _dt.time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, _dt.date):
        return value.isoformat()
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def _unique_headers(columns: Iterable[object]) -> List[str]:
    headers: List[str] = []
    seen = set()
    for index, column in enumerate(columns):
        header = _cell_to_string(column) or f"Unnamed: {index}"
        candidate = header
        suffix = 1
        while candidate in seen:
            candidate = f"{header}.{suffix}"
            suffix += 1
        seen.add(candidate)
        headers.append(candidate)
    return headers


def _frame_to_table(df: pd.DataFrame, file_name: str, sheet_name: Optional[str]) -> ParsedTable:
    headers = _unique_headers(df.columns)
    rows = []
    for record in df.itertuples(index=False, name=None):
        row = {header: _cell_to_string(value) for header, value in zip(headers, record)}
        if not any(row.values()):
            continue
        rows.append(row)

    if not rows:
        raise ParseError(f"The file {file_name or 'upload'} is empty or contains no data rows")

    logger.info("Parsed %s: %d row(s), %d column(s)", file_name or "<upload>", len(rows), len(headers))
    return ParsedTable(tuple(headers), tuple(rows), file_name, sheet_name)


def _extension(file_name: str) -> str:
    suffix = Path(file_name).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        shown = suffix.lstrip(".") or file_name
        raise ParseError(f"Unsupported file type: {shown}. Please upload an Excel (.xlsx) or CSV file.")
    return suffix


def _read_excel(data: bytes, suffix: str, sheet: SheetType) -> Tuple[pd.DataFrame, str]:
    workbook = pd.ExcelFile(BytesIO(data), engine=_EXCEL_ENGINES[suffix])
    sheet_names = workbook.sheet_names
    if not sheet_names:
        raise ParseError("The workbook has no sheets")

    if sheet is None:
        sheet_name = sheet_names[0]
    elif isinstance(sheet, int):
        sheet_name = sheet_names[sheet] if 0 <= sheet < len(sheet_names) else sheet_names[0]
    else:
        if sheet not in sheet_names:
            raise ParseError(f"Sheet not found: {sheet}")
        sheet_name = sheet

    df = workbook.parse(sheet_name, dtype=object)
    return df, sheet_name


def _skip_bad_line(bad_line: List[str]) -> None:
    logger.warning("Skipping malformed row with %d cell(s): %s", len(bad_line), bad_line)
    return None


def _read_delimited(data: bytes, suffix: str) -> pd.DataFrame:
    return pd.read_csv(
        BytesIO(data),
        sep="\t" if suffix == ".tsv" else ",",
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding="utf-8-sig",
        engine="python",
        on_bad_lines=_skip_bad_line,
    )


def parse_bytes(data: bytes, file_name: str, *, sheet: SheetType = None) -> ParsedTable:
    """Parse an uploaded spreadsheet held in memory.

    Raises:
        ParseError: unsupported extension, unreadable content, or no data rows.
    """

    suffix = _extension(file_name)
    if not data:
        raise ParseError(f"The file {file_name} is empty")

    sheet_name: Optional[str] = None
    try:
        if suffix in _EXCEL_ENGINES:
            df, sheet_name = _read_excel(data, suffix, sheet)
        else:
            df = _read_delimited(data, suffix)
    except ParseError:
        raise
    except pd.errors.EmptyDataError as exc:
        raise ParseError(f"The file {file_name} is empty or contains no data rows") from exc
    except Exception as exc:
        logger.error("Failed to read %s: %s", file_name, exc)
        raise ParseError(f"Could not read {file_name}: {exc}") from exc

    return _frame_to_table(df, file_name, sheet_name)


def parse_file(path: Path, *, sheet: SheetType = None) -> ParsedTable:
    path = Path(path)
    _extension(path.name)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ParseError(f"Could not open {path}: {exc}") from exc
    return parse_bytes(data, path.name, sheet=sheet)


def list_sheet_names(data: bytes, file_name: str) -> List[str]:
    suffix = _extension(file_name)
    if suffix not in _EXCEL_ENGINES:
        return []
    try:
        return list(pd.ExcelFile(BytesIO(data), engine=_EXCEL_ENGINES[suffix]).sheet_names)
    except Exception as exc:
        raise ParseError(f"Could not read {file_name}: {exc}") from exc


def _is_number(value: str) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number)


def analyze_columns(table: ParsedTable) -> List[ColumnInfo]:
    """Classify each column from its cell values.

    The result is advisory: it feeds mapping hints and is never used to reject data.
    """

    infos = []
    for header in table.headers:
        values = [row.get(header, "") for row in table.rows]
        non_empty = [value for value in values if value.strip()]
        numeric_count = sum(1 for value in non_empty if _is_number(value.strip()))
        threshold = len(non_empty) * CLASSIFICATION_THRESHOLD
        is_numeric = bool(non_empty) and numeric_count > threshold

        column_type = "text"
        if is_numeric:
            column_type = "number"
        elif non_empty:
            date_count = sum(1 for value in non_empty if _DATE_PATTERN.match(value.strip()))
            if date_count > threshold:
                column_type = "date"

        infos.append(
            ColumnInfo(
                name=header,
                type=column_type,
                is_numeric=is_numeric,
                sample_values=tuple(non_empty[:SAMPLE_VALUE_COUNT]),
                unique_count=len(set(non_empty)),
                empty_count=len(values) - len(non_empty),
            )
        )
    return infos


def _sample_headers(fields: Sequence[TemplateField]) -> List[str]:
    return [field.label_ar or field.name for field in fields]


def generate_sample_csv(fields: Sequence[TemplateField]) -> str:
    """Return a BOM-prefixed CSV whose headers are the template's field labels."""

    headers = _sample_headers(fields)
    sample_row = [f"{SAMPLE_VALUE_PREFIX}{header}" for header in headers]
    frame = pd.DataFrame([sample_row], columns=headers)
    return "\ufeff" + frame.to_csv(index=False, lineterminator="\n")


def generate_sample_excel(fields: Sequence[TemplateField]) -> bytes:
    headers = _sample_headers(fields)
    sample_row = [f"{SAMPLE_VALUE_PREFIX}{header}" for header in headers]
    frame = pd.DataFrame([sample_row], columns=headers)
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=SAMPLE_SHEET_NAME, index=False)
    return buffer.getvalue()


def write_sample_file(fields: Sequence[TemplateField], path: Path) -> Path:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        path.write_text(generate_sample_csv(fields), encoding="utf-8")
    elif suffix == ".xlsx":
        path.write_bytes(generate_sample_excel(fields))
    else:
        raise ParseError(f"Sample files can only be written as .csv or .xlsx, not {suffix or path.name}")
    logger.info("Sample file written to %s", path)
    return path
