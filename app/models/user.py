from datetime import UTC, datetime
from enum import Enum

from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Permission(str, Enum):
    DEV = "DEV"
    ADM = "ADM"
    TEC = "TEC"
    USR = "USR"
    PONTO_FOCAL = "PONTO_FOCAL"
    COORDENADOR = "COORDENADOR"
    PORTARIA = "PORTARIA"


# Supervisory roles that only see and manage their own unit
UNIT_SCOPED_PERMISSIONS = (Permission.PONTO_FOCAL, Permission.COORDENADOR)


class UserBase(SQLModel):
    login: str = Field(unique=True, index=True)
    name: str
    email: str = Field(unique=True, index=True)
    permission: Permission = Field(default=Permission.USR)
    active: bool = True
    unit_id: int | None = Field(default=None, foreign_key="units.id", index=True)


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str | None = None  # only for accounts outside the directory
    last_login: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now)


class UserCreate(SQLModel):
    login: str
    name: str
    email: str
    permission: Permission = Permission.USR
    active: bool = True
    unit_id: int | None = None


class UserSummary(SQLModel):
    id: int
    name: str
    login: str
