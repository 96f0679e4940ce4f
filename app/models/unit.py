from sqlmodel import Field, SQLModel


class Unit(SQLModel, table=True):
    """Coordenadoria: the administrative unit appointments and technicians belong to."""

    __tablename__ = "units"
    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)  # sigla
    name: str | None = None
    active: bool = True


class UnitSummary(SQLModel):
    id: int
    code: str
    name: str | None = None
