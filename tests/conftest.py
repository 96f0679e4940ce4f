"""
Pytest Configuration and Shared Fixtures.

Settings are read when app.core.config is imported, so the environment is
prepared before any app module is loaded.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-12345")
os.environ.setdefault("ENV", "test")

from io import BytesIO
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401 - register tables
from app.models.unit import Unit
from app.models.user import Permission, User
from app.services.directory import DirectoryClient, DirectoryEntry, DirectoryError


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite database built from the SQLModel metadata."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as s:
        yield s


@pytest.fixture
def make_unit(session):
    async def _make(code: str = "CPA", name: str | None = None) -> Unit:
        unit = Unit(code=code, name=name or code)
        session.add(unit)
        await session.commit()
        return unit

    return _make


@pytest.fixture
def make_user(session):
    async def _make(
        login: str,
        permission: Permission = Permission.USR,
        unit_id: int | None = None,
        active: bool = True,
    ) -> User:
        user = User(
            login=login,
            name=login.title(),
            email=f"{login}@example.com",
            permission=permission,
            unit_id=unit_id,
            active=active,
        )
        session.add(user)
        await session.commit()
        return user

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================


@pytest.fixture
def directory():
    """Directory client whose lookups fail as if LDAP were unreachable."""
    client = MagicMock(spec=DirectoryClient)
    client.find_by_login = AsyncMock(side_effect=DirectoryError("LDAP server or base DN not configured"))
    return client


@pytest.fixture
def directory_with_entry():
    def _make(login: str, name: str, email: str):
        client = MagicMock(spec=DirectoryClient)
        client.find_by_login = AsyncMock(return_value=DirectoryEntry(login=login, name=name, email=email))
        return client

    return _make


# =============================================================================
# Spreadsheet Fixtures
# =============================================================================


@pytest.fixture
def xlsx_bytes():
    """Build an xlsx file in memory from a list of rows."""

    def _build(rows: list[list]) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _build
