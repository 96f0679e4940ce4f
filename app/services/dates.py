"""Decoding of the date encodings found in spreadsheet exports.

Every decoded value is an aware UTC datetime. Values without an offset keep
the wall-clock time written in the sheet, read as UTC, so the server
timezone never shifts them. Strings that carry an explicit offset
(`2024-03-15T14:30:00-03:00`) are converted to UTC instead.
"""
import math
import re
from datetime import UTC, date, datetime, timedelta

from dateutil import parser as date_parser

# Spreadsheet serial day 0; the two-day offset from 1900-01-01 absorbs the
# fake 1900-02-29 of the spreadsheet format.
SERIAL_EPOCH = datetime(1899, 12, 30, tzinfo=UTC)

BR_DATETIME_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})\s+(\d{2}):(\d{2})(?::(\d{2}))?")
BR_DATE_RE = re.compile(r"\d{2}/\d{2}/\d{4}")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _from_string(text: str) -> datetime | None:
    match = BR_DATETIME_RE.search(text)
    if match:
        day, month, year, hour, minute, second = match.groups()
        try:
            return datetime(
                int(year), int(month), int(day), int(hour), int(minute), int(second or 0), tzinfo=UTC
            )
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = date_parser.parse(text, dayfirst=True)
        except (ValueError, OverflowError):
            return None
    return _as_utc(parsed)


def _from_serial(serial: float) -> datetime | None:
    if math.isnan(serial) or math.isinf(serial):
        return None
    days = math.floor(serial)
    fraction = serial - days
    try:
        result = SERIAL_EPOCH + timedelta(days=days)
        if fraction > 0:
            result += timedelta(milliseconds=round(fraction * 86_400_000))
    except OverflowError:
        return None
    return result


def decode_datetime(value: object) -> datetime | None:
    """Return the UTC instant for a cell value, or None when it cannot be decoded."""
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return _from_string(text)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_serial(float(value))
    return None


def to_serial(value: datetime) -> float:
    """Inverse of the serial rule of decode_datetime."""
    return (_as_utc(value) - SERIAL_EPOCH) / timedelta(days=1)


def looks_like_date(value: object) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    text = str(value).strip()
    return bool(BR_DATE_RE.search(text) or ISO_DATE_RE.match(text))


def to_naive_utc(value: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def add_minutes(value: datetime, minutes: int) -> datetime:
    return value + timedelta(minutes=minutes)
