from __future__ import annotations

import io
import json
from datetime import datetime

import pytest
from openpyxl import Workbook

from smart_import.importer.adapters.tabular import (
    FileParseError,
    UnsupportedFileTypeError,
    detect_file_type,
    parse,
)


def _xlsx_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_detect_file_type_is_case_insensitive():
    assert detect_file_type("Products.CSV") == "csv"
    assert detect_file_type("machines.xlsx") == "xlsx"

    with pytest.raises(UnsupportedFileTypeError) as excinfo:
        detect_file_type("notes.txt")
    assert excinfo.value.file_type == "txt"

    with pytest.raises(UnsupportedFileTypeError):
        detect_file_type("products.json", allowed=("csv",))


def test_parse_csv_strips_bom_and_blank_rows():
    data = "\ufeffSKU, Product Name \nSKU-1,Beans\n,\n\nSKU-2,Milk\n".encode("utf-8")

    parsed = parse(data, "csv")

    assert parsed.headers == ("SKU", "Product Name")
    assert parsed.rows == ({"SKU": "SKU-1", "Product Name": "Beans"}, {"SKU": "SKU-2", "Product Name": "Milk"})
    assert parsed.row_count == 2
    assert parsed.column_count == 2


def test_parse_csv_short_rows_are_padded_and_duplicate_headers_keep_first():
    parsed = parse(b"SKU,Name,SKU\nA,Beans,B\nC\n", "csv")

    assert parsed.rows[0] == {"SKU": "A", "Name": "Beans"}
    assert parsed.rows[1] == {"SKU": "C", "Name": None}


def test_parse_csv_rejects_empty_and_non_utf8_input():
    with pytest.raises(FileParseError, match="empty"):
        parse(b"", "csv")
    with pytest.raises(FileParseError, match="UTF-8"):
        parse("SKU\nÉclair\n".encode("latin-1"), "csv")


def test_parse_json_accepts_list_or_rows_object():
    as_list = parse(json.dumps([{"SKU": "A"}, {"SKU": "B", "Price": 2}]).encode(), "json")
    assert as_list.headers == ("SKU", "Price")
    assert as_list.rows[1] == {"SKU": "B", "Price": 2}

    wrapped = parse(json.dumps({"rows": [{"Serial": "M-1"}]}).encode(), "json")
    assert wrapped.headers == ("Serial",)

    with pytest.raises(FileParseError):
        parse(b'{"count": 3}', "json")
    with pytest.raises(FileParseError, match="row 2"):
        parse(b'[{"SKU": "A"}, 7]', "json")


def test_parse_xlsx_reads_first_sheet():
    data = _xlsx_bytes(
        [
            ["Serial", "Model", "Installed"],
            ["M-1", "V300", datetime(2024, 5, 1)],
            [None, None, None],
            ["M-2", "V500", None],
        ]
    )

    parsed = parse(data, "xlsx")

    assert parsed.headers == ("Serial", "Model", "Installed")
    assert parsed.rows == (
        {"Serial": "M-1", "Model": "V300", "Installed": "2024-05-01T00:00:00"},
        {"Serial": "M-2", "Model": "V500", "Installed": None},
    )


def test_parse_xlsx_rejects_garbage():
    with pytest.raises(FileParseError, match="spreadsheet"):
        parse(b"not a workbook", "xlsx")


def test_parse_unknown_type():
    with pytest.raises(UnsupportedFileTypeError):
        parse(b"", "parquet")
