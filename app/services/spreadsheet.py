import logging
import zipfile
from io import BytesIO
from typing import Any, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.core.config import settings
from app.core.errors import InvalidSpreadsheetError
from app.services.header_recovery import HeaderMatch, header_matches

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "__col_"


def placeholder_label(index: int) -> str:
    """Label given to a column whose header could not be read (0-based, A=0)."""
    return f"{PLACEHOLDER_PREFIX}{index}"


def _is_empty(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def read_sheet_rows(data: bytes) -> list[list[Any]]:
    """Rows x cells of the first worksheet, bounded by the import limits."""
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise InvalidSpreadsheetError(f"Could not read spreadsheet: {e}") from e
    try:
        if not workbook.worksheets:
            raise InvalidSpreadsheetError("Spreadsheet has no worksheets")
        sheet = workbook.worksheets[0]
        rows = [
            list(row)
            for row in sheet.iter_rows(
                min_row=1,
                max_row=settings.import_max_rows,
                max_col=settings.import_max_columns,
                values_only=True,
            )
        ]
    finally:
        workbook.close()
    logger.debug("Read %d row(s) from sheet %r", len(rows), sheet.title)
    return rows


def uses_placeholders(header: HeaderMatch) -> bool:
    """True when the header row could not be aligned and columns must be read by position."""
    return not header.recovered and not header_matches(header.columns)


def label_rows(rows: Sequence[Sequence[Any]], header: HeaderMatch) -> list[dict[str, Any]]:
    """Key every row after the header row by its column label, dropping blank rows."""
    data_rows = rows[header.index + 1:]
    if uses_placeholders(header):
        width = max((len(r) for r in data_rows), default=0)
        labels = [placeholder_label(i) for i in range(width)]
        logger.warning("Header row not aligned; reading %d column(s) by position", width)
    else:
        labels = list(header.columns)

    records: list[dict[str, Any]] = []
    for row in data_rows:
        record: dict[str, Any] = {}
        for i, label in enumerate(labels):
            if not label:
                continue
            record[label] = row[i] if i < len(row) else None
        if any(not _is_empty(v) for v in record.values()):
            records.append(record)
    return records
