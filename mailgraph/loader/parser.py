"""Streaming reader for the ``file,message`` email CSV export."""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from mailgraph.graph.types import Document
from mailgraph.loader.headers import EmailParseError, parse_email

logger = logging.getLogger(__name__)

EXPECTED_HEADER = ["file", "message"]

# Raw messages routinely exceed the csv module's default 128 KiB field limit.
_FIELD_SIZE_LIMIT = 2**31 - 1


class CSVFormatError(ValueError):
    """Raised when the CSV file does not start with a ``file,message`` header."""


@dataclass(frozen=True)
class EmailRecord:
    """One CSV row: a file identifier and the full raw message."""

    file: str
    message: str


def iter_csv_records(path: str | Path) -> Iterator[EmailRecord]:
    """Stream records from an email CSV file.

    Malformed rows are logged and skipped.

    Args:
        path: CSV file path.

    Yields:
        One EmailRecord per well-formed row.

    Raises:
        FileNotFoundError: If the file does not exist.
        CSVFormatError: If the header row is missing or wrong.
    """
    csv.field_size_limit(_FIELD_SIZE_LIMIT)

    with open(path, newline="", encoding="utf-8", errors="surrogateescape") as fh:
        reader = csv.reader(fh)
        header = next(reader, None)
        if header is None:
            raise CSVFormatError(f"{path} is empty")
        normalized = [column.strip().lstrip("\ufeff") for column in header]
        if normalized != EXPECTED_HEADER:
            raise CSVFormatError(f"invalid CSV header: expected {EXPECTED_HEADER}, got {header}")

        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                logger.warning("Error reading line %d of %s: %s", reader.line_num, path, e)
                continue

            if len(row) != 2:
                logger.warning(
                    "Invalid row at line %d of %s: expected 2 columns, got %d", reader.line_num, path, len(row)
                )
                continue
            yield EmailRecord(file=row[0], message=row[1])


def iter_documents(path: str | Path) -> Iterator[Document]:
    """Stream parsed, unpersisted emails from a CSV file.

    Records without a Message-ID are logged and skipped.
    """
    for record in iter_csv_records(path):
        try:
            yield parse_email(record.message, file_path=record.file)
        except EmailParseError as e:
            logger.warning("Skipping unparseable email: %s", e)
