"""Extraction of appointment fields from one labelled spreadsheet row.

Column discovery is table driven: FIELD_MATCHERS lists, per field, the exact
header variants tried first and the keywords used for a looser,
case-insensitive substring match over all column names. Rows whose columns
only carry placeholder labels are read by position with POSITIONAL_LAYOUT.
"""
import re
from dataclasses import asdict, dataclass
from datetime import date
from enum import Enum
from typing import Any, Mapping, NamedTuple

from app.services.dates import BR_DATE_RE, looks_like_date
from app.services.spreadsheet import PLACEHOLDER_PREFIX, placeholder_label


class FieldMatcher(NamedTuple):
    exact: tuple[str, ...]
    keywords: tuple[str, ...]


FIELD_MATCHERS: dict[str, FieldMatcher] = {
    "process": FieldMatcher(
        ("Nro. Processo", "Nro Processo", "Número do Processo", "número do processo",
         "Processo", "processo", "PROCESSO"),
        ("processo", "nro", "número"),
    ),
    "protocol": FieldMatcher(
        ("Nro. Protocolo", "Nro.Protocolo", "Nro Protocolo", "Protocolo", "protocolo"),
        ("protocolo",),
    ),
    "cpf": FieldMatcher(("CPF", "cpf", "Cpf"), ("cpf",)),
    "requester": FieldMatcher(
        ("Requerente", "requerente", "REQUERENTE"),
        ("requerente", "munícipe", "municipe"),
    ),
    "email": FieldMatcher(
        ("E-mail Munícipe", "E-mail munícipe", "e-mail munícipe", "E-mail", "E-Mail",
         "email", "Email", "EMAIL"),
        ("email", "e-mail", "munícipe"),
    ),
    "appointment_type": FieldMatcher(
        ("Tipo Agendamento", "Tipo de Agendamento", "tipo agendamento", "tipo de agendamento",
         "Tipo", "tipo"),
        ("tipo", "agendamento"),
    ),
    "unit_code": FieldMatcher(
        ("Local de Atendimento", "local de atendimento", "Coordenadoria", "coordenadoria",
         "COORDENADORIA"),
        ("coordenadoria", "local", "atendimento"),
    ),
    "technician_code": FieldMatcher(
        ("RF Técnico", "RF técnico", "rf técnico", "RF", "rf", "Rf", "RF do técnico",
         "rf do técnico"),
        ("rf",),
    ),
    "technician_name": FieldMatcher(
        ("Técnico", "técnico", "TECNICO", "Nome do técnico", "nome do técnico"),
        ("técnico", "tecnico", "nome"),
    ),
    "technician_email": FieldMatcher(
        ("E-mail Técnico", "E-mail técnico", "e-mail técnico"),
        ("e-mail técnico", "email técnico"),
    ),
    "scheduled_for": FieldMatcher(
        ("Agendado para", "agendado para", "Agendado Para", "Data e Hora", "data e hora",
         "Data/Hora", "data/hora"),
        ("agendado", "data", "hora", "para"),
    ),
}

# Last-resort scan for the date column: any header mentioning date, hour, scheduled or for
DATE_COLUMN_TOKENS = ("data", "hora", "agendado", "para")

# Column offsets (A=0) of the department's standard report template
POSITIONAL_LAYOUT: dict[str, int] = {
    "process": 0,            # A  Nro. Processo
    "protocol": 2,           # C  Nro. Protocolo
    "cpf": 3,                # D  CPF
    "requester": 7,          # H  Requerente
    "email": 8,              # I  E-mail Munícipe
    "appointment_type": 9,   # J  Tipo Agendamento
    "unit_code": 10,         # K  Local de Atendimento
    "technician_code": 11,   # L  RF Técnico
    "technician_name": 12,   # M  Técnico
    "technician_email": 13,  # N  E-mail Técnico
    "scheduled_for": 16,     # Q  Agendado para
}

# Report boilerplate that must not count as data
IGNORED_KEYS = frozenset({"SMUL - SECRETARIA MUNICIPAL DE URBANISMO E LICENCIAMENTO"})
IGNORED_VALUES = frozenset({"Sistema de Agendamento Eletrônico", "Relatório de Agendamentos"})

_MISSING_TEXT = frozenset({"", "null", "undefined"})
_TIME_RE = re.compile(r":")


class RowOutcome(str, Enum):
    OK = "ok"
    SKIP = "skip"
    ERROR = "error"


@dataclass
class NormalizedRow:
    process: str | None = None
    protocol: str | None = None
    cpf: str | None = None
    requester: str | None = None
    email: str | None = None
    appointment_type: str | None = None
    unit_code: str | None = None
    technician_code: str | None = None
    technician_name: str | None = None
    technician_email: str | None = None
    scheduled_for: Any = None

    @property
    def has_citizen_data(self) -> bool:
        return bool(self.process or self.cpf or self.requester)

    def as_log_context(self) -> dict[str, Any]:
        return asdict(self)


def title_case(name: str | None) -> str | None:
    """'AMANDA CELLI FILHO' -> 'Amanda Celli Filho', regardless of the input casing."""
    if not name or not isinstance(name, str):
        return name
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split())


def _is_empty(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean(value: object) -> str | None:
    if _is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _clean_date(value: object) -> Any:
    if isinstance(value, str):
        text = value.strip()
        return None if text.lower() in _MISSING_TEXT else text
    return value


def has_placeholder_columns(row: Mapping[str, Any]) -> bool:
    return any(str(key).startswith(PLACEHOLDER_PREFIX) for key in row)


def find_exact(row: Mapping[str, Any], variants: tuple[str, ...]) -> Any:
    for key in variants:
        value = row.get(key)
        if not _is_empty(value):
            return value
    return None


def find_by_keyword(row: Mapping[str, Any], keywords: tuple[str, ...]) -> Any:
    for key, value in row.items():
        key_lower = str(key).lower().strip()
        if not key_lower:
            continue
        for keyword in keywords:
            word = keyword.lower().strip()
            if (word in key_lower or key_lower in word) and not _is_empty(value):
                return value
    return None


def _find_date_column(row: Mapping[str, Any]) -> Any:
    for key, value in row.items():
        key_lower = str(key).lower()
        if value and any(token in key_lower for token in DATE_COLUMN_TOKENS):
            return value
    return None


def _extract_named(row: Mapping[str, Any]) -> dict[str, Any]:
    raw = {}
    for name, matcher in FIELD_MATCHERS.items():
        value = find_exact(row, matcher.exact)
        if value is None:
            value = find_by_keyword(row, matcher.keywords)
        raw[name] = value
    if raw["scheduled_for"] is None:
        raw["scheduled_for"] = _find_date_column(row)
    return raw


def _extract_positional(row: Mapping[str, Any]) -> dict[str, Any]:
    raw = {}
    for name, offset in POSITIONAL_LAYOUT.items():
        value = row.get(placeholder_label(offset))
        raw[name] = None if _is_empty(value) else value

    code = raw["technician_code"]
    if code is not None:
        code_text = str(code).strip()
        if (
            isinstance(code, date)
            or BR_DATE_RE.search(code_text)
            or _TIME_RE.search(code_text)
            or code_text == _clean(raw["unit_code"])
        ):
            raw["technician_code"] = None

    email = raw["email"]
    if email is not None:
        email_text = str(email).strip()
        if "@" not in email_text or "." not in email_text:
            raw["email"] = None
    return raw


def normalize_row(row: Mapping[str, Any], placeholder_mode: bool | None = None) -> NormalizedRow:
    if placeholder_mode is None:
        placeholder_mode = has_placeholder_columns(row)
    raw = _extract_positional(row) if placeholder_mode else _extract_named(row)
    email = _clean(raw["email"])
    return NormalizedRow(
        process=_clean(raw["process"]),
        protocol=_clean(raw["protocol"]),
        cpf=_clean(raw["cpf"]),
        requester=title_case(_clean(raw["requester"])),
        email=email.lower() if email else None,
        appointment_type=_clean(raw["appointment_type"]),
        unit_code=_clean(raw["unit_code"]),
        technician_code=_clean(raw["technician_code"]),
        technician_name=_clean(raw["technician_name"]),
        technician_email=_clean(raw["technician_email"]),
        scheduled_for=_clean_date(raw["scheduled_for"]),
    )


def has_values(row: Mapping[str, Any]) -> bool:
    """False for rows holding nothing but blanks or report boilerplate."""
    for key, value in row.items():
        if key in IGNORED_KEYS or _is_empty(value):
            continue
        if isinstance(value, str) and value.strip() in IGNORED_VALUES:
            continue
        return True
    return False


def classify_row(row: Mapping[str, Any], normalized: NormalizedRow) -> RowOutcome:
    if not has_values(row):
        return RowOutcome.SKIP
    if normalized.scheduled_for is None:
        return RowOutcome.ERROR if normalized.has_citizen_data else RowOutcome.SKIP
    if not normalized.has_citizen_data and not looks_like_date(normalized.scheduled_for):
        return RowOutcome.SKIP
    return RowOutcome.OK
