from sqlmodel import Field, SQLModel


class AppointmentType(SQLModel, table=True):
    __tablename__ = "appointment_types"
    id: int | None = Field(default=None, primary_key=True)
    text: str = Field(unique=True, index=True)
    active: bool = True


class NonAttendanceReason(SQLModel, table=True):
    __tablename__ = "non_attendance_reasons"
    id: int | None = Field(default=None, primary_key=True)
    text: str = Field(unique=True, index=True)
    active: bool = True


class ReferenceSummary(SQLModel):
    id: int
    text: str
