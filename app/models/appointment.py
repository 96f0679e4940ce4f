from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel

from app.models.reference import AppointmentType, NonAttendanceReason, ReferenceSummary
from app.models.unit import Unit, UnitSummary
from app.models.user import User, UserSummary


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ATTENDED = "ATTENDED"
    COMPLETED = "COMPLETED"
    NOT_PERFORMED = "NOT_PERFORMED"
    CANCELLED = "CANCELLED"


# Statuses that drop the non-attendance reason when set
STATUSES_CLEARING_REASON = (AppointmentStatus.ATTENDED, AppointmentStatus.SCHEDULED)


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: int | None = Field(default=None, primary_key=True)
    citizen_name: str | None = None
    cpf: str | None = Field(default=None, index=True)
    rg: str | None = None
    # (process_number, start_at) is kept unique by a pre-insert check, not a constraint
    process_number: str | None = Field(default=None, index=True)
    start_at: datetime = Field(index=True)
    end_at: datetime
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, index=True)
    summary: str | None = None
    appointment_type_id: int | None = Field(default=None, foreign_key="appointment_types.id")
    unit_id: int | None = Field(default=None, foreign_key="units.id", index=True)
    technician_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    reason_id: int | None = Field(default=None, foreign_key="non_attendance_reasons.id")
    technician_code: str | None = None  # RF as read from the spreadsheet, kept for audit
    email: str | None = None
    imported: bool = False
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    appointment_type: Optional[AppointmentType] = Relationship()
    unit: Optional[Unit] = Relationship()
    technician: Optional[User] = Relationship()
    reason: Optional[NonAttendanceReason] = Relationship()


class AppointmentCreate(SQLModel):
    citizen_name: str | None = None
    cpf: str | None = None
    rg: str | None = None
    process_number: str | None = None
    start_at: datetime
    end_at: datetime | None = None
    duration_minutes: int | None = None
    summary: str | None = None
    appointment_type_id: int | None = None
    appointment_type_text: str | None = None
    reason_id: int | None = None
    unit_id: int | None = None
    technician_id: int | None = None
    technician_code: str | None = None
    email: str | None = None


class AppointmentUpdate(SQLModel):
    citizen_name: str | None = None
    cpf: str | None = None
    rg: str | None = None
    process_number: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    duration_minutes: int | None = None
    status: AppointmentStatus | None = None
    summary: str | None = None
    appointment_type_id: int | None = None
    appointment_type_text: str | None = None
    reason_id: int | None = None
    unit_id: int | None = None
    technician_id: int | None = None
    technician_code: str | None = None
    email: str | None = None


class AppointmentPublic(SQLModel):
    id: int
    citizen_name: str | None = None
    cpf: str | None = None
    rg: str | None = None
    process_number: str | None = None
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus
    summary: str | None = None
    appointment_type_id: int | None = None
    unit_id: int | None = None
    technician_id: int | None = None
    reason_id: int | None = None
    technician_code: str | None = None
    email: str | None = None
    imported: bool
    created_at: datetime
    appointment_type: ReferenceSummary | None = None
    unit: UnitSummary | None = None
    technician: UserSummary | None = None
    reason: ReferenceSummary | None = None


class AppointmentPage(SQLModel):
    total: int
    page: int
    limit: int
    data: list[AppointmentPublic]


class MonthTotal(SQLModel):
    month: int
    year: int
    total: int


class YearTotal(SQLModel):
    year: int
    total: int


class ReasonTotal(SQLModel):
    reason_id: int | None = None
    reason_text: str
    total: int


class AppointmentDashboard(SQLModel):
    total: int = 0
    performed: int = 0  # ATTENDED + COMPLETED
    not_performed: int = 0  # NOT_PERFORMED + CANCELLED
    not_performed_only: int = 0
    days_with_appointments: int = 0
    per_month: list[MonthTotal] = []
    per_year: list[YearTotal] = []
    reasons: list[ReasonTotal] = []
