"""Locate the header row of an exported appointment report.

Report exports start with a few preamble rows (department name, report
title, filters) before the actual header, and the number of preamble rows
is not stable between exports.
"""
import logging
from dataclasses import dataclass, field
from typing import Sequence

from app.core.config import settings

logger = logging.getLogger(__name__)

EXPECTED_HEADERS = (
    "Nro. Processo",
    "Nro. Protocolo",
    "CPF",
    "Requerente",
    "Tipo Agendamento",
    "Local de Atendimento",
    "Técnico",
    "RF",
    "E-mail",
    "Agendado para",
)

MIN_HEADER_MATCHES = 4


@dataclass
class HeaderMatch:
    index: int
    columns: list[str] = field(default_factory=list)
    recovered: bool = True
    matches: list[str] = field(default_factory=list)


def _cell_text(cell: object) -> str:
    return "" if cell is None else str(cell).strip()


def exact_matches(row: Sequence[object]) -> list[str]:
    cells = {_cell_text(c).lower() for c in row}
    return [label for label in EXPECTED_HEADERS if label.lower() in cells]


def partial_matches(row: Sequence[object]) -> list[str]:
    joined = "|".join(_cell_text(c) for c in row).lower()
    found = []
    for label in EXPECTED_HEADERS:
        tokens = label.lower().split()
        if any(len(token) >= 3 and token in joined for token in tokens):
            found.append(label)
    return found


def header_matches(row: Sequence[object]) -> list[str]:
    """Exact matches win when they qualify the row on their own; otherwise the
    larger of the two sets is used, so a row of shortened labels ("Processo")
    still qualifies through its partial matches."""
    exact = exact_matches(row)
    if len(exact) >= MIN_HEADER_MATCHES:
        return exact
    partial = partial_matches(row)
    return partial if len(partial) > len(exact) else exact


def find_header_row(
    rows: Sequence[Sequence[object]],
    scan_rows: int | None = None,
    default_row: int | None = None,
) -> HeaderMatch:
    scan_rows = settings.header_scan_rows if scan_rows is None else scan_rows
    default_row = settings.header_default_row if default_row is None else default_row
    for i, row in enumerate(rows[:scan_rows]):
        if not any(_cell_text(c) for c in row):
            continue
        matches = header_matches(row)
        if len(matches) >= MIN_HEADER_MATCHES:
            logger.info("Header found at row %d: %s", i + 1, matches)
            return HeaderMatch(index=i, columns=[_cell_text(c) for c in row], matches=matches)
        if matches:
            logger.debug("Row %d: only %d header label(s) %s", i + 1, len(matches), matches)
    logger.warning(
        "No header row among the first %d rows; falling back to row %d", scan_rows, default_row + 1
    )
    columns = [_cell_text(c) for c in rows[default_row]] if default_row < len(rows) else []
    return HeaderMatch(index=default_row, columns=columns, recovered=False)
