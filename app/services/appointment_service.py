from collections import Counter
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.errors import DuplicateAppointmentError, NotFoundError, PermissionDeniedError
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentDashboard,
    AppointmentPage,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
    MonthTotal,
    ReasonTotal,
    STATUSES_CLEARING_REASON,
    YearTotal,
)
from app.models.reference import NonAttendanceReason, ReferenceSummary
from app.models.unit import UnitSummary
from app.models.user import Permission, UNIT_SCOPED_PERMISSIONS, User
from app.services.dates import add_minutes, to_naive_utc
from app.services.directory import DirectoryClient
from app.services.entity_resolver import EntityResolver
from app.services.pagination import check_limit, check_page
from app.services.row_normalizer import title_case
from app.services.user_service import get_user_by_id, get_user_by_login, user_to_summary

PERFORMED_STATUSES = (AppointmentStatus.ATTENDED, AppointmentStatus.COMPLETED)
NOT_PERFORMED_STATUSES = (AppointmentStatus.NOT_PERFORMED, AppointmentStatus.CANCELLED)
MISSING_REASON_TEXT = "Não informado"
DASHBOARD_YEARS = 5


def _utc_naive_now() -> datetime:
    """Naive UTC for comparison with TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


def _with_relations(query):
    return query.options(
        selectinload(Appointment.appointment_type),
        selectinload(Appointment.unit),
        selectinload(Appointment.technician),
        selectinload(Appointment.reason),
    )


async def _get_with_relations(session: AsyncSession, appointment_id: int) -> Appointment | None:
    query = _with_relations(select(Appointment).where(Appointment.id == appointment_id))
    result = await session.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


def scope_for(user: User) -> list | None:
    """Where clauses limiting what `user` may see, or None when they may see nothing.

    Supervisors see their own unit, technicians their own appointments and
    every other role sees everything.
    """
    if user.permission in UNIT_SCOPED_PERMISSIONS:
        if not user.unit_id:
            return None
        return [Appointment.unit_id == user.unit_id]
    if user.permission == Permission.TEC:
        return [Appointment.technician_id == user.id]
    return []


def _check_unit_access(user: User, appointment: Appointment) -> None:
    if user.permission not in UNIT_SCOPED_PERMISSIONS:
        return
    if not user.unit_id:
        raise PermissionDeniedError("You have no unit assigned")
    if appointment.unit_id != user.unit_id:
        raise PermissionDeniedError("You can only manage appointments of your unit")


async def find_duplicate(session: AsyncSession, process_number: str, start_at: datetime) -> bool:
    result = await session.execute(
        select(Appointment.id)
        .where(Appointment.process_number == process_number, Appointment.start_at == start_at)
        .limit(1)
    )
    return result.first() is not None


async def search(
    session: AsyncSession,
    user: User,
    page: int | None = None,
    limit: int | None = None,
    text: str | None = None,
    status: AppointmentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    unit_id: int | None = None,
    technician_id: int | None = None,
) -> AppointmentPage:
    page, limit = check_page(page, limit)
    scope = scope_for(user)
    if scope is None:
        return AppointmentPage(total=0, page=0, limit=0, data=[])

    clauses = list(scope)
    if text:
        clauses.append(
            or_(
                Appointment.citizen_name.contains(text),
                Appointment.process_number.contains(text),
                Appointment.cpf.contains(text),
            )
        )
    if status:
        clauses.append(Appointment.status == status)
    if date_from and date_to:
        clauses.append(Appointment.start_at >= datetime.combine(date_from, time.min))
        clauses.append(Appointment.start_at <= datetime.combine(date_to, time.max))
    if unit_id:
        clauses.append(Appointment.unit_id == unit_id)
    if technician_id:
        clauses.append(Appointment.technician_id == technician_id)

    total = (await session.execute(select(func.count()).select_from(Appointment).where(*clauses))).scalar_one()
    if total == 0:
        return AppointmentPage(total=0, page=0, limit=0, data=[])
    page, limit = check_limit(page, limit, total)

    query = (
        _with_relations(select(Appointment).where(*clauses))
        .order_by(Appointment.start_at)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await session.execute(query)
    data = [appointment_to_public(a) for a in result.scalars().all()]
    return AppointmentPage(total=total, page=page, limit=limit, data=data)


def today_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Local calendar day in the department timezone, as naive UTC bounds."""
    tz = ZoneInfo(settings.timezone)
    local_now = (now or datetime.now(UTC)).astimezone(tz)
    start = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    start_utc = to_naive_utc(start)
    return start_utc, start_utc + timedelta(days=1)


async def today(session: AsyncSession, user: User, now: datetime | None = None) -> list[AppointmentPublic]:
    # Supervisors also get appointments of their unit still waiting for a technician
    scope = scope_for(user)
    if scope is None:
        return []
    start, end = today_window(now)
    query = _with_relations(
        select(Appointment).where(
            *scope,
            Appointment.start_at >= start,
            Appointment.start_at < end,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
    ).order_by(Appointment.start_at)
    result = await session.execute(query)
    return [appointment_to_public(a) for a in result.scalars().all()]


async def get(session: AsyncSession, appointment_id: int) -> Appointment:
    appointment = await _get_with_relations(session, appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


async def create(session: AsyncSession, data: AppointmentCreate, directory: DirectoryClient) -> Appointment:
    resolver = EntityResolver(session, directory)
    type_id = data.appointment_type_id
    if data.appointment_type_text and data.appointment_type_text.strip():
        type_id = await resolver.appointment_type(data.appointment_type_text)
    technician_id = data.technician_id
    if data.technician_code and not technician_id:
        technician_id = await resolver.technician(data.technician_code, data.unit_id)

    start_at = to_naive_utc(data.start_at)
    if data.end_at:
        end_at = to_naive_utc(data.end_at)
    else:
        end_at = add_minutes(start_at, data.duration_minutes or settings.appointment_duration_minutes)

    process_number = data.process_number.strip() if data.process_number else None
    if process_number and await find_duplicate(session, process_number, start_at):
        raise DuplicateAppointmentError("An appointment with this process and date/time already exists")

    appointment = Appointment(
        citizen_name=title_case(data.citizen_name) or None,
        cpf=data.cpf,
        rg=data.rg,
        process_number=process_number or None,
        start_at=start_at,
        end_at=end_at,
        summary=data.summary,
        appointment_type_id=type_id,
        reason_id=data.reason_id,
        unit_id=data.unit_id,
        technician_id=technician_id,
        technician_code=data.technician_code,
        email=data.email,
    )
    session.add(appointment)
    await session.flush()
    return await _get_with_relations(session, appointment.id)


def _check_technician(technician: User, unit_id: int | None) -> None:
    if technician.permission != Permission.TEC:
        raise PermissionDeniedError("The selected user is not a technician")
    if technician.unit_id != unit_id:
        raise PermissionDeniedError("You can only assign technicians of your unit")


async def _check_assignable(session: AsyncSession, unit_id: int | None, technician_id: int) -> None:
    technician = await get_user_by_id(session, technician_id)
    if not technician:
        raise NotFoundError("Technician not found")
    _check_technician(technician, unit_id)


async def _technician_for_supervisor(
    session: AsyncSession, resolver: EntityResolver, code: str, unit_id: int | None
) -> int | None:
    """Existing accounts are only checked, never modified; unknown RFs are provisioned into the unit."""
    login = resolver.login_for_code(code)
    if not login:
        return None
    existing = await get_user_by_login(session, login)
    if existing:
        _check_technician(existing, unit_id)
        return existing.id
    technician_id = await resolver.technician(code, unit_id)
    if technician_id:
        await _check_assignable(session, unit_id, technician_id)
    return technician_id


async def update(
    session: AsyncSession,
    appointment_id: int,
    data: AppointmentUpdate,
    user: User,
    directory: DirectoryClient,
) -> Appointment:
    appointment = await session.get(Appointment, appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found")
    current_unit_id = appointment.unit_id
    user_unit_id = user.unit_id
    changes = data.model_dump(exclude_unset=True)

    scoped = user.permission in UNIT_SCOPED_PERMISSIONS
    if scoped:
        _check_unit_access(user, appointment)
        if "unit_id" in changes and changes["unit_id"] != user.unit_id:
            raise PermissionDeniedError("You cannot move the appointment to another unit")
        if changes.get("technician_id"):
            await _check_assignable(session, user_unit_id, changes["technician_id"])

    resolver = EntityResolver(session, directory)
    technician_code = changes.get("technician_code")
    if technician_code and not changes.get("technician_id"):
        if scoped:
            technician_id = await _technician_for_supervisor(session, resolver, technician_code, user_unit_id)
        else:
            technician_id = await resolver.technician(technician_code, changes.get("unit_id") or current_unit_id)
        if technician_id:
            changes["technician_id"] = technician_id

    type_text = changes.pop("appointment_type_text", None)
    if type_text and type_text.strip():
        changes["appointment_type_id"] = await resolver.appointment_type(type_text)

    duration = changes.pop("duration_minutes", None)
    if changes.get("citizen_name"):
        changes["citizen_name"] = title_case(changes["citizen_name"])
    if changes.get("start_at"):
        changes["start_at"] = to_naive_utc(changes["start_at"])
        if not changes.get("end_at"):
            changes["end_at"] = add_minutes(
                changes["start_at"], duration or settings.appointment_duration_minutes
            )
    if changes.get("end_at"):
        changes["end_at"] = to_naive_utc(changes["end_at"])
    if changes.get("status") in STATUSES_CLEARING_REASON:
        changes["reason_id"] = None
    for required in ("start_at", "end_at", "status"):
        if required in changes and changes[required] is None:
            del changes[required]

    # Entity resolution may have committed or rolled back the session
    appointment = await session.get(Appointment, appointment_id, populate_existing=True)
    for key, value in changes.items():
        setattr(appointment, key, value)
    appointment.updated_at = _utc_naive_now()
    session.add(appointment)
    await session.flush()
    return await _get_with_relations(session, appointment_id)


async def delete(session: AsyncSession, appointment_id: int, user: User) -> None:
    appointment = await session.get(Appointment, appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found")
    _check_unit_access(user, appointment)
    await session.delete(appointment)
    await session.flush()


def _per_month(year: int, starts: list[datetime]) -> list[MonthTotal]:
    counts = Counter(s.month for s in starts)
    return [MonthTotal(month=m, year=year, total=counts.get(m, 0)) for m in range(1, 13)]


async def dashboard(
    session: AsyncSession,
    user: User,
    year: int | None = None,
    unit_id: int | None = None,
    now: datetime | None = None,
) -> AppointmentDashboard:
    """Yearly totals by status, month, year and non-attendance reason.

    Supervisors always get their own unit; other roles may narrow to `unit_id`.
    """
    now = now or _utc_naive_now()
    year = year or now.year
    if user.permission in UNIT_SCOPED_PERMISSIONS:
        if not user.unit_id:
            return AppointmentDashboard(per_month=_per_month(year, []))
        unit_id = user.unit_id
    unit_clauses = [Appointment.unit_id == unit_id] if unit_id else []

    result = await session.execute(
        select(Appointment.start_at, Appointment.status, Appointment.reason_id, NonAttendanceReason.text)
        .outerjoin(NonAttendanceReason, Appointment.reason_id == NonAttendanceReason.id)
        .where(
            Appointment.start_at >= datetime(year, 1, 1),
            Appointment.start_at < datetime(year + 1, 1, 1),
            *unit_clauses,
        )
        .order_by(Appointment.start_at)
    )
    rows = result.all()

    reasons: dict[int | None, ReasonTotal] = {}
    for row in rows:
        if row.status != AppointmentStatus.NOT_PERFORMED:
            continue
        entry = reasons.setdefault(
            row.reason_id,
            ReasonTotal(reason_id=row.reason_id, reason_text=row.text or MISSING_REASON_TEXT, total=0),
        )
        entry.total += 1

    first_year = now.year - DASHBOARD_YEARS
    result = await session.execute(
        select(Appointment.start_at).where(
            Appointment.start_at >= datetime(first_year, 1, 1),
            Appointment.start_at <= now,
            *unit_clauses,
        )
    )
    per_year = Counter(start.year for start in result.scalars().all())

    starts = [row.start_at for row in rows]
    return AppointmentDashboard(
        total=len(rows),
        performed=sum(1 for row in rows if row.status in PERFORMED_STATUSES),
        not_performed=sum(1 for row in rows if row.status in NOT_PERFORMED_STATUSES),
        not_performed_only=sum(1 for row in rows if row.status == AppointmentStatus.NOT_PERFORMED),
        days_with_appointments=len({s.date() for s in starts}),
        per_month=_per_month(year, starts),
        per_year=[YearTotal(year=y, total=per_year[y]) for y in sorted(per_year)],
        reasons=list(reasons.values()),
    )


def appointment_to_public(a: Appointment) -> AppointmentPublic:
    return AppointmentPublic(
        id=a.id,
        citizen_name=a.citizen_name,
        cpf=a.cpf,
        rg=a.rg,
        process_number=a.process_number,
        start_at=a.start_at,
        end_at=a.end_at,
        status=a.status,
        summary=a.summary,
        appointment_type_id=a.appointment_type_id,
        unit_id=a.unit_id,
        technician_id=a.technician_id,
        reason_id=a.reason_id,
        technician_code=a.technician_code,
        email=a.email,
        imported=a.imported,
        created_at=a.created_at,
        appointment_type=ReferenceSummary(id=a.appointment_type.id, text=a.appointment_type.text)
        if a.appointment_type
        else None,
        unit=UnitSummary(id=a.unit.id, code=a.unit.code, name=a.unit.name) if a.unit else None,
        technician=user_to_summary(a.technician) if a.technician else None,
        reason=ReferenceSummary(id=a.reason.id, text=a.reason.text) if a.reason else None,
    )
