"""Tabular file adapter: turns uploaded CSV, XLSX or JSON bytes into headers and row records.

The import pipeline never reads raw bytes itself; it receives the ``ParsedFile``
produced here and stores a bounded sample of its rows on the session.
"""

from __future__ import annotations

import csv
import io
import json
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import PurePath
from typing import Any, Iterable, Mapping, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

SUPPORTED_FILE_TYPES: tuple[str, ...] = ("csv", "xlsx", "json")


class FileParseError(Exception):
    """Base exception for tabular parsing failures."""


class UnsupportedFileTypeError(FileParseError):
    """Raised when a file extension is not one of the supported tabular formats."""

    def __init__(self, file_type: str) -> None:
        super().__init__(
            f"Unsupported file type '{file_type}'. Supported types: {', '.join(SUPPORTED_FILE_TYPES)}."
        )
        self.file_type = file_type


@dataclass(frozen=True)
class ParsedFile:
    headers: tuple[str, ...]
    rows: tuple[dict[str, Any], ...]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)


def detect_file_type(file_name: str, allowed: Iterable[str] = SUPPORTED_FILE_TYPES) -> str:
    """Return the lowercase extension of ``file_name`` if it is an allowed type."""

    suffix = PurePath(file_name or "").suffix.lower().lstrip(".")
    if suffix not in set(allowed):
        raise UnsupportedFileTypeError(suffix or "unknown")
    return suffix


def parse(data: bytes, file_type: str) -> ParsedFile:
    file_type = (file_type or "").lower()
    if file_type == "csv":
        return _parse_csv(data)
    if file_type == "json":
        return _parse_json(data)
    if file_type == "xlsx":
        return _parse_xlsx(data)
    raise UnsupportedFileTypeError(file_type)


def _sanitize_header(header: Any) -> str:
    token = "" if header is None else str(header).strip()
    return token.lstrip("\ufeff")


def _is_blank_row(values: Iterable[Any]) -> bool:
    return all(value is None or str(value).strip() == "" for value in values)


def _parse_csv(data: bytes) -> ParsedFile:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise FileParseError(f"CSV file is not valid UTF-8: {exc}") from exc

    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        raw_headers = next(reader)
    except StopIteration:
        raise FileParseError("CSV file is empty.") from None
    except csv.Error as exc:
        raise FileParseError(f"Unable to read CSV header: {exc}") from exc

    headers = tuple(_sanitize_header(header) for header in raw_headers)
    if not any(headers):
        raise FileParseError("CSV header row is blank.")

    rows: list[dict[str, Any]] = []
    try:
        for values in reader:
            if _is_blank_row(values):
                continue
            rows.append(_zip_row(headers, values))
    except csv.Error as exc:
        raise FileParseError(f"CSV parse error on line {reader.line_num}: {exc}") from exc
    return ParsedFile(headers=headers, rows=tuple(rows))


def _parse_json(data: bytes) -> ParsedFile:
    try:
        payload = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FileParseError(f"Invalid JSON document: {exc}") from exc

    if isinstance(payload, Mapping):
        payload = payload.get("rows", payload.get("data"))
    if not isinstance(payload, list):
        raise FileParseError("JSON import must be a list of objects or an object with a 'rows' list.")

    headers: list[str] = []
    seen: set[str] = set()
    rows: list[dict[str, Any]] = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, Mapping):
            raise FileParseError(f"JSON row {index} is not an object.")
        row = {_sanitize_header(key): value for key, value in item.items()}
        for key in row:
            if key not in seen:
                seen.add(key)
                headers.append(key)
        rows.append(row)
    return ParsedFile(headers=tuple(headers), rows=tuple(rows))


def _parse_xlsx(data: bytes) -> ParsedFile:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
        raise FileParseError(f"Unable to open spreadsheet: {exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        iterator = sheet.iter_rows(values_only=True)
        try:
            raw_headers = next(iterator)
        except StopIteration:
            raise FileParseError("Spreadsheet is empty.") from None
        headers = tuple(_sanitize_header(header) for header in raw_headers)
        rows: list[dict[str, Any]] = []
        for values in iterator:
            if _is_blank_row(values):
                continue
            rows.append(_zip_row(headers, [_cell_value(value) for value in values]))
    finally:
        workbook.close()
    return ParsedFile(headers=headers, rows=tuple(rows))


def _cell_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _zip_row(headers: Sequence[str], values: Sequence[Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for position, header in enumerate(headers):
        if not header or header in row:
            continue
        row[header] = values[position] if position < len(values) else None
    return row
