"""Importer adapters package."""

from __future__ import annotations

from .tabular import (
    SUPPORTED_FILE_TYPES,
    FileParseError,
    ParsedFile,
    UnsupportedFileTypeError,
    detect_file_type,
    parse,
)

__all__ = [
    "SUPPORTED_FILE_TYPES",
    "FileParseError",
    "ParsedFile",
    "UnsupportedFileTypeError",
    "detect_file_type",
    "parse",
]
