"""Spreadsheet import: header recovery, row normalization and reconciliation.

Rows are processed one at a time, in order, so entities created for a row
are visible to the rows after it. Every write is committed on its own and
there is no transaction around the whole batch: a crash mid-import leaves
the rows already saved in place. The duplicate check is a read followed by
a write, so two imports racing on the same (process, start) pair can both
insert it.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotFoundError
from app.models.appointment import Appointment
from app.services.appointment_service import find_duplicate
from app.services.dates import add_minutes, decode_datetime, to_naive_utc
from app.services.directory import DirectoryClient
from app.services.entity_resolver import EntityResolver, is_reserve_technician, reserve_unit_code
from app.services.header_recovery import find_header_row
from app.services.row_normalizer import NormalizedRow, RowOutcome, classify_row, normalize_row
from app.services.spreadsheet import label_rows, read_sheet_rows

logger = logging.getLogger(__name__)

# Only the first rows get per-row debug lines; failures are always logged
LOG_SAMPLE_ROWS = 10


class ImportOutcome(str, Enum):
    IMPORTED = "imported"
    ERROR = "errors"
    DUPLICATED = "duplicated"
    SKIPPED = "skipped"


@dataclass
class ImportSummary:
    imported: int = 0
    errors: int = 0
    duplicated: int = 0
    skipped: int = 0

    def record(self, outcome: ImportOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.imported + self.errors + self.duplicated + self.skipped


async def _resolve_type(
    session: AsyncSession, resolver: EntityResolver, normalized: NormalizedRow, line: int
) -> int | None:
    if not normalized.appointment_type:
        return None
    try:
        return await resolver.appointment_type(normalized.appointment_type)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Row %d: could not resolve appointment type %r: %s", line, normalized.appointment_type, e)
        return None


async def _resolve_unit(session: AsyncSession, resolver: EntityResolver, code: str, line: int) -> int | None:
    try:
        return await resolver.unit(code)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Row %d: could not resolve unit %r, saving without unit: %s", line, code, e)
        return None


async def _resolve_technician(
    session: AsyncSession, resolver: EntityResolver, code: str, unit_id: int | None, line: int
) -> int | None:
    try:
        return await resolver.technician(code, unit_id)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Row %d: could not resolve technician RF %r, saving without technician: %s", line, code, e)
        return None


async def _import_row(
    session: AsyncSession,
    row: Mapping[str, Any],
    resolver: EntityResolver,
    unit_id: int | None,
    line: int,
) -> ImportOutcome:
    normalized = normalize_row(row)
    outcome = classify_row(row, normalized)
    if outcome is RowOutcome.SKIP:
        if line <= LOG_SAMPLE_ROWS:
            logger.debug("Row %d: skipped, no usable data", line)
        return ImportOutcome.SKIPPED
    if outcome is RowOutcome.ERROR:
        logger.warning(
            "Row %d: date/time missing; process=%s cpf=%s requester=%s; columns=%s",
            line, normalized.process, normalized.cpf, normalized.requester, list(row.keys()),
        )
        return ImportOutcome.ERROR

    start = decode_datetime(normalized.scheduled_for)
    if start is None:
        logger.warning(
            "Row %d: invalid date/time %r (%s)",
            line, normalized.scheduled_for, type(normalized.scheduled_for).__name__,
        )
        return ImportOutcome.ERROR
    start_at = to_naive_utc(start)
    end_at = add_minutes(start_at, settings.appointment_duration_minutes)

    type_id = await _resolve_type(session, resolver, normalized, line)

    row_unit_id = unit_id
    if row_unit_id is None and normalized.unit_code:
        row_unit_id = await _resolve_unit(session, resolver, normalized.unit_code, line)

    technician_id = None
    if is_reserve_technician(normalized.technician_name):
        # Left for the unit's supervisor to assign; the phrase only names the unit
        code = reserve_unit_code(normalized.technician_name)
        if code and row_unit_id is None:
            row_unit_id = await _resolve_unit(session, resolver, code, line)
    elif normalized.technician_code:
        technician_id = await _resolve_technician(session, resolver, normalized.technician_code, row_unit_id, line)

    if normalized.process and await find_duplicate(session, normalized.process, start_at):
        if line <= LOG_SAMPLE_ROWS:
            logger.info("Row %d: duplicate of process %s at %s, ignored", line, normalized.process, start_at)
        return ImportOutcome.DUPLICATED

    session.add(
        Appointment(
            citizen_name=normalized.requester,
            cpf=normalized.cpf,
            process_number=normalized.process,
            start_at=start_at,
            end_at=end_at,
            summary=normalized.appointment_type,
            appointment_type_id=type_id,
            unit_id=row_unit_id,
            technician_id=technician_id,
            technician_code=normalized.technician_code,
            email=normalized.email,
            imported=True,
        )
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Row %d: could not save appointment; data: %s", line, normalized.as_log_context())
        return ImportOutcome.ERROR
    return ImportOutcome.IMPORTED


async def import_rows(
    session: AsyncSession,
    rows: Sequence[Mapping[str, Any]],
    resolver: EntityResolver,
    unit_id: int | None = None,
) -> ImportSummary:
    summary = ImportSummary()
    logger.info("Importing %d spreadsheet row(s)", len(rows))
    if rows:
        logger.debug("Columns of the first row: %s", list(rows[0].keys()))

    for index, row in enumerate(rows):
        line = index + 1
        try:
            outcome = await _import_row(session, row, resolver, unit_id, line)
        except Exception:
            # A bad row never aborts the rest of the batch
            await session.rollback()
            logger.exception("Row %d: import failed; row data: %r", line, dict(row))
            outcome = ImportOutcome.ERROR
        summary.record(outcome)

    logger.info(
        "Import finished: %d row(s) - imported=%d errors=%d duplicated=%d skipped=%d",
        len(rows), summary.imported, summary.errors, summary.duplicated, summary.skipped,
    )
    return summary


async def import_spreadsheet(
    session: AsyncSession,
    data: bytes,
    directory: DirectoryClient,
    unit_code: str | None = None,
) -> ImportSummary:
    resolver = EntityResolver(session, directory)
    unit_id = None
    if unit_code and unit_code.strip():
        unit_id = await resolver.find_unit(unit_code)
        if unit_id is None:
            raise NotFoundError(f"Unit {unit_code.strip()} not found")

    rows = read_sheet_rows(data)
    if not rows:
        logger.info("Spreadsheet has no rows")
        return ImportSummary()
    header = find_header_row(rows)
    records = label_rows(rows, header)
    if not records:
        logger.info("No data rows below header row %d", header.index + 1)
        return ImportSummary()
    return await import_rows(session, records, resolver, unit_id)
