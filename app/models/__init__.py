from app.models.user import Permission, User, UserCreate, UserSummary
from app.models.unit import Unit, UnitSummary
from app.models.reference import AppointmentType, NonAttendanceReason, ReferenceSummary
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentDashboard,
    AppointmentPage,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
)

__all__ = [
    "Permission",
    "User",
    "UserCreate",
    "UserSummary",
    "Unit",
    "UnitSummary",
    "AppointmentType",
    "NonAttendanceReason",
    "ReferenceSummary",
    "Appointment",
    "AppointmentCreate",
    "AppointmentDashboard",
    "AppointmentPage",
    "AppointmentPublic",
    "AppointmentStatus",
    "AppointmentUpdate",
]
