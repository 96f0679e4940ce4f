"""Get-or-create of the entities an appointment points to.

Units, appointment types and technicians are referenced by natural key
(code, label, RF) in spreadsheets and manual requests. Resolution failures
leave the reference empty instead of failing the appointment, except for
appointment types, whose creation errors reach the caller.

Each creation is committed on its own so later rows of an import see it.
"""
import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.reference import AppointmentType
from app.models.unit import Unit
from app.models.user import Permission, UserCreate
from app.services.directory import DirectoryClient, DirectoryEntry, DirectoryError
from app.services.user_service import build_user, get_user_by_login

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 6

RESERVE_TECHNICIAN_RE = re.compile(r"T[ÉE]CNICO\s+RESERVA(?:\s+(\w+))?")


def is_reserve_technician(name: str | None) -> bool:
    """'TÉCNICO RESERVA <unit>' marks an appointment still waiting for a technician."""
    if not name:
        return False
    return RESERVE_TECHNICIAN_RE.search(name.upper()) is not None


def reserve_unit_code(name: str | None) -> str | None:
    if not name:
        return None
    match = RESERVE_TECHNICIAN_RE.search(name.upper())
    if not match or not match.group(1):
        return None
    return match.group(1).strip()


class EntityResolver:
    def __init__(self, session: AsyncSession, directory: DirectoryClient, config=settings) -> None:
        self._session = session
        self._directory = directory
        self._settings = config

    def login_for_code(self, code: str | None) -> str | None:
        """RF to login: 8544409 -> d854440."""
        code = str(code).strip() if code else ""
        if len(code) < MIN_CODE_LENGTH:
            return None
        return f"{self._settings.technician_login_prefix}{code[:MIN_CODE_LENGTH]}"

    def placeholder_entry(self, login: str) -> DirectoryEntry:
        return DirectoryEntry(
            login=login,
            name=login[:1].upper() + login[1:],
            email=f"{login}@{self._settings.institutional_email_domain}",
        )

    async def technician(self, code: str | None, unit_id: int | None = None) -> int | None:
        login = self.login_for_code(code)
        if not login:
            return None
        session = self._session

        user = await get_user_by_login(session, login)
        if user:
            user_id = user.id
            if unit_id and not user.unit_id:
                try:
                    user.unit_id = unit_id
                    session.add(user)
                    await session.commit()
                    logger.info("Unit %s assigned to technician %s", unit_id, login)
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.warning("Could not assign unit %s to technician %s: %s", unit_id, login, e)
            return user_id

        try:
            entry = await self._directory.find_by_login(login)
        except DirectoryError as e:
            logger.info("Technician RF %s not found in directory (%s); creating basic account", code, e)
            entry = self.placeholder_entry(login)

        technician = build_user(
            UserCreate(
                login=entry.login,
                name=entry.name,
                email=entry.email,
                permission=Permission.TEC,
                active=True,
                unit_id=unit_id,
            )
        )
        session.add(technician)
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Could not create technician %s: %s", entry.login, e)
            return None
        logger.info(
            "Technician %s (%s) created with permission TEC%s",
            entry.name,
            entry.login,
            f" and unit {unit_id}" if unit_id else "",
        )
        return technician.id

    async def appointment_type(self, text: str | None) -> int | None:
        label = str(text).strip() if text else ""
        if not label:
            return None
        session = self._session
        result = await session.execute(select(AppointmentType.id).where(AppointmentType.text == label))
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing
        item = AppointmentType(text=label, active=True)
        session.add(item)
        try:
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise
        logger.info("Appointment type %r created", label)
        return item.id

    async def _find_unit(self, code: str) -> int | None:
        result = await self._session.execute(select(Unit.id).where(Unit.code == code))
        return result.scalar_one_or_none()

    async def find_unit(self, code: str | None) -> int | None:
        code = str(code).strip() if code else ""
        return await self._find_unit(code) if code else None

    async def unit(self, code: str | None) -> int | None:
        code = str(code).strip() if code else ""
        if not code:
            return None
        existing = await self._find_unit(code)
        if existing is not None:
            return existing
        session = self._session
        unit = Unit(code=code, name=code, active=True)
        session.add(unit)
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            # Another request may have created it in the meantime
            existing = await self._find_unit(code)
            if existing is not None:
                return existing
            level = logging.WARNING if isinstance(e, IntegrityError) else logging.ERROR
            logger.log(level, "Could not create unit %s: %s", code, e)
            return None
        logger.info("Unit %s created", code)
        return unit.id
