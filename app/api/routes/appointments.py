import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_directory_client, get_session, require_permissions
from app.api.schemas.appointment import DeleteResponse, ImportSummaryResponse
from app.core.config import settings
from app.core.errors import InvalidSpreadsheetError
from app.models.appointment import (
    AppointmentCreate,
    AppointmentDashboard,
    AppointmentPage,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
)
from app.models.user import Permission, User
from app.services import appointment_service
from app.services.directory import DirectoryClient
from app.services.import_service import import_spreadsheet

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])

SPREADSHEET_CONTENT_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "application/excel",
    }
)


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    session: AsyncSession = Depends(get_session),
    directory: DirectoryClient = Depends(get_directory_client),
    current_user: User = Depends(require_permissions(Permission.ADM)),
) -> AppointmentPublic:
    login = current_user.login
    appointment = await appointment_service.create(session, body, directory)
    logger.info("Appointment %s created by %s", appointment.id, login)
    return appointment_service.appointment_to_public(appointment)


@router.get("", response_model=AppointmentPage)
async def search_appointments(
    page: int | None = Query(None),
    limit: int | None = Query(None),
    search: str | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    unit_id: int | None = Query(None),
    technician_id: int | None = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> AppointmentPage:
    return await appointment_service.search(
        session,
        current_user,
        page=page,
        limit=limit,
        text=search,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        unit_id=unit_id,
        technician_id=technician_id,
    )


@router.get("/today", response_model=list[AppointmentPublic])
async def list_today(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[AppointmentPublic]:
    return await appointment_service.today(session, current_user)


@router.get("/dashboard", response_model=AppointmentDashboard)
async def get_dashboard(
    year: int | None = Query(None),
    unit_id: int | None = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> AppointmentDashboard:
    return await appointment_service.dashboard(session, current_user, year=year, unit_id=unit_id)


@router.post("/import", response_model=ImportSummaryResponse)
async def import_appointments(
    file: UploadFile = File(...),
    unit_code: str | None = Form(None),
    session: AsyncSession = Depends(get_session),
    directory: DirectoryClient = Depends(get_directory_client),
    current_user: User = Depends(require_permissions(Permission.ADM)),
) -> ImportSummaryResponse:
    """Import appointments from an xlsx export of the scheduling system.

    Every data row ends up in exactly one of the returned counters.
    """
    if file.content_type not in SPREADSHEET_CONTENT_TYPES:
        raise InvalidSpreadsheetError(f"Unsupported file type: {file.content_type}")
    # One byte past the limit is enough to reject oversized uploads
    data = await file.read(settings.import_max_file_bytes + 1)
    if not data:
        raise InvalidSpreadsheetError("Empty file")
    if len(data) > settings.import_max_file_bytes:
        raise InvalidSpreadsheetError("File too large")
    logger.info("Spreadsheet %s (%d bytes) uploaded by %s", file.filename, len(data), current_user.login)
    summary = await import_spreadsheet(session, data, directory, unit_code=unit_code)
    return ImportSummaryResponse(
        imported=summary.imported,
        errors=summary.errors,
        duplicated=summary.duplicated,
        skipped=summary.skipped,
    )


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> AppointmentPublic:
    appointment = await appointment_service.get(session, appointment_id)
    return appointment_service.appointment_to_public(appointment)


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: int,
    body: AppointmentUpdate,
    session: AsyncSession = Depends(get_session),
    directory: DirectoryClient = Depends(get_directory_client),
    current_user: User = Depends(
        require_permissions(Permission.ADM, Permission.TEC, Permission.PONTO_FOCAL, Permission.COORDENADOR)
    ),
) -> AppointmentPublic:
    appointment = await appointment_service.update(session, appointment_id, body, current_user, directory)
    return appointment_service.appointment_to_public(appointment)


@router.delete("/{appointment_id}", response_model=DeleteResponse)
async def delete_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(
        require_permissions(Permission.ADM, Permission.PONTO_FOCAL, Permission.COORDENADOR)
    ),
) -> DeleteResponse:
    await appointment_service.delete(session, appointment_id, current_user)
    logger.info("Appointment %s deleted by %s", appointment_id, current_user.login)
    return DeleteResponse(deleted=True)
