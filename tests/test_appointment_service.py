"""
Unit Tests for app.services.appointment_service.

Tests role scoping, search, the today view, writes and the dashboard.
"""

from datetime import UTC, date, datetime

import pytest
import pytest_asyncio

from app.core.errors import DuplicateAppointmentError, NotFoundError, PermissionDeniedError
from app.models.appointment import Appointment, AppointmentCreate, AppointmentStatus, AppointmentUpdate
from app.models.reference import NonAttendanceReason
from app.models.user import Permission, User
from app.services import appointment_service
from app.services.appointment_service import scope_for, today_window


@pytest.fixture
def make_appointment(session):
    async def _make(start_at: datetime, **fields) -> Appointment:
        fields.setdefault("end_at", start_at.replace(hour=start_at.hour + 1))
        appointment = Appointment(start_at=start_at, **fields)
        session.add(appointment)
        await session.commit()
        return appointment

    return _make


@pytest_asyncio.fixture
async def world(make_unit, make_user, make_appointment):
    """Two units, a technician of the first and three appointments."""
    cpa = await make_unit("CPA")
    sel = await make_unit("SEL")
    tec = await make_user("d111111", Permission.TEC, unit_id=cpa.id)
    ana = await make_appointment(
        datetime(2024, 3, 15, 9, 0), citizen_name="Ana Lima", process_number="2024/1", cpf="111",
        unit_id=cpa.id, technician_id=tec.id,
    )
    bia = await make_appointment(
        datetime(2024, 3, 16, 10, 0), citizen_name="Bia Souza", process_number="2024/2", cpf="222",
        unit_id=cpa.id,
    )
    caio = await make_appointment(
        datetime(2024, 3, 14, 11, 0), citizen_name="Caio Reis", process_number="2024/3", cpf="333",
        unit_id=sel.id, status=AppointmentStatus.CANCELLED,
    )
    return {"cpa": cpa, "sel": sel, "tec": tec, "ana": ana, "bia": bia, "caio": caio}


class TestScopeFor:
    """Tests for scope_for()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("permission", [Permission.ADM, Permission.DEV, Permission.PORTARIA, Permission.USR])
    async def test_unrestricted_roles(self, make_user, permission):
        user = await make_user("someone", permission)

        assert scope_for(user) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("permission", [Permission.PONTO_FOCAL, Permission.COORDENADOR])
    async def test_supervisor_without_unit_sees_nothing(self, make_user, permission):
        user = await make_user("pf", permission)

        assert scope_for(user) is None

    @pytest.mark.asyncio
    async def test_supervisor_and_technician_are_restricted(self, make_user, make_unit):
        unit = await make_unit("CPA")

        assert len(scope_for(await make_user("pf", Permission.PONTO_FOCAL, unit_id=unit.id))) == 1
        assert len(scope_for(await make_user("tec", Permission.TEC))) == 1


class TestSearch:
    """Tests for search()."""

    @pytest.mark.asyncio
    async def test_admin_sees_everything_ordered_by_start(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        page = await appointment_service.search(session, admin)

        assert page.total == 3
        assert (page.page, page.limit) == (1, 10)
        assert [a.citizen_name for a in page.data] == ["Caio Reis", "Ana Lima", "Bia Souza"]

    @pytest.mark.asyncio
    async def test_supervisor_sees_own_unit(self, session, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)

        page = await appointment_service.search(session, pf)

        assert {a.id for a in page.data} == {world["ana"].id, world["bia"].id}

    @pytest.mark.asyncio
    async def test_supervisor_without_unit_gets_empty_page(self, session, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL)

        page = await appointment_service.search(session, pf)

        assert (page.total, page.page, page.limit, page.data) == (0, 0, 0, [])

    @pytest.mark.asyncio
    async def test_caller_filter_cannot_widen_scope(self, session, make_user, world):
        pf = await make_user("pf", Permission.COORDENADOR, unit_id=world["cpa"].id)

        page = await appointment_service.search(session, pf, unit_id=world["sel"].id)

        assert page.total == 0

    @pytest.mark.asyncio
    async def test_technician_sees_own_appointments(self, session, world):
        page = await appointment_service.search(session, world["tec"])

        assert [a.id for a in page.data] == [world["ana"].id]
        assert page.data[0].technician.login == "d111111"
        assert page.data[0].unit.code == "CPA"

    @pytest.mark.asyncio
    async def test_text_matches_name_process_and_cpf(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        by_name = await appointment_service.search(session, admin, text="Bia")
        by_process = await appointment_service.search(session, admin, text="2024/3")
        by_cpf = await appointment_service.search(session, admin, text="111")

        assert [a.id for a in by_name.data] == [world["bia"].id]
        assert [a.id for a in by_process.data] == [world["caio"].id]
        assert [a.id for a in by_cpf.data] == [world["ana"].id]

    @pytest.mark.asyncio
    async def test_date_range_needs_both_ends(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        one_day = await appointment_service.search(
            session, admin, date_from=date(2024, 3, 15), date_to=date(2024, 3, 15)
        )
        open_ended = await appointment_service.search(session, admin, date_from=date(2024, 3, 15))

        assert [a.id for a in one_day.data] == [world["ana"].id]
        assert open_ended.total == 3

    @pytest.mark.asyncio
    async def test_status_filter(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        page = await appointment_service.search(session, admin, status=AppointmentStatus.CANCELLED)

        assert [a.id for a in page.data] == [world["caio"].id]

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_clamped(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        page = await appointment_service.search(session, admin, page=5, limit=2)

        assert (page.page, page.limit, len(page.data)) == (2, 2, 1)


class TestToday:
    """Tests for today() and today_window()."""

    NOW = datetime(2024, 3, 15, 15, 0, tzinfo=UTC)  # 12:00 in São Paulo

    def test_window_is_local_day_in_utc(self):
        assert today_window(self.NOW) == (datetime(2024, 3, 15, 3, 0), datetime(2024, 3, 16, 3, 0))

    @pytest.mark.asyncio
    async def test_today_excludes_cancelled_and_other_days(self, session, make_user, make_unit, make_appointment):
        unit = await make_unit("CPA")
        admin = await make_user("adm", Permission.ADM)
        morning = await make_appointment(datetime(2024, 3, 15, 12, 0), unit_id=unit.id)
        await make_appointment(datetime(2024, 3, 15, 13, 0), unit_id=unit.id, status=AppointmentStatus.CANCELLED)
        await make_appointment(datetime(2024, 3, 15, 2, 0), unit_id=unit.id)
        late = await make_appointment(datetime(2024, 3, 16, 1, 0), end_at=datetime(2024, 3, 16, 2, 0))

        result = await appointment_service.today(session, admin, now=self.NOW)

        assert [a.id for a in result] == [morning.id, late.id]

    @pytest.mark.asyncio
    async def test_supervisor_sees_unassigned_appointments_of_unit(
        self, session, make_user, make_unit, make_appointment
    ):
        unit = await make_unit("CPA")
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=unit.id)
        unassigned = await make_appointment(datetime(2024, 3, 15, 12, 0), unit_id=unit.id)
        await make_appointment(datetime(2024, 3, 15, 13, 0))

        result = await appointment_service.today(session, pf, now=self.NOW)

        assert [a.id for a in result] == [unassigned.id]

    @pytest.mark.asyncio
    async def test_supervisor_without_unit_gets_nothing(self, session, make_user, make_appointment):
        pf = await make_user("pf", Permission.COORDENADOR)
        await make_appointment(datetime(2024, 3, 15, 12, 0))

        assert await appointment_service.today(session, pf, now=self.NOW) == []


class TestCreate:
    """Tests for create()."""

    @pytest.mark.asyncio
    async def test_create_resolves_references(self, session, directory, make_unit):
        unit = await make_unit("CPA")
        data = AppointmentCreate(
            citizen_name="MARIA DA SILVA",
            process_number=" 2024/9 ",
            start_at=datetime(2024, 3, 15, 14, 30, tzinfo=UTC),
            appointment_type_text="Vistoria",
            technician_code="8544409",
            unit_id=unit.id,
        )

        appointment = await appointment_service.create(session, data, directory)

        assert appointment.citizen_name == "Maria Da Silva"
        assert appointment.process_number == "2024/9"
        assert appointment.start_at == datetime(2024, 3, 15, 14, 30)
        assert appointment.end_at == datetime(2024, 3, 15, 15, 30)
        assert appointment.imported is False
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.appointment_type.text == "Vistoria"
        assert appointment.technician.login == "d854440"
        assert appointment.technician.unit_id == unit.id

        public = appointment_service.appointment_to_public(appointment)
        assert public.unit.code == "CPA"
        assert public.technician.login == "d854440"
        assert public.reason is None

    @pytest.mark.asyncio
    async def test_end_from_duration_or_explicit(self, session, directory):
        start = datetime(2024, 3, 15, 9, 0)

        short = await appointment_service.create(
            session, AppointmentCreate(start_at=start, duration_minutes=30), directory
        )
        explicit = await appointment_service.create(
            session, AppointmentCreate(start_at=start, end_at=datetime(2024, 3, 15, 12, 0)), directory
        )

        assert short.end_at == datetime(2024, 3, 15, 9, 30)
        assert explicit.end_at == datetime(2024, 3, 15, 12, 0)

    @pytest.mark.asyncio
    async def test_duplicate_process_and_start_is_rejected(self, session, directory):
        data = AppointmentCreate(process_number="2024/9", start_at=datetime(2024, 3, 15, 9, 0))
        await appointment_service.create(session, data, directory)

        with pytest.raises(DuplicateAppointmentError):
            await appointment_service.create(session, data, directory)


class TestGetAndDelete:
    """Tests for get() and delete()."""

    @pytest.mark.asyncio
    async def test_get_missing(self, session):
        with pytest.raises(NotFoundError):
            await appointment_service.get(session, 999)

    @pytest.mark.asyncio
    async def test_delete_missing(self, session, make_user):
        admin = await make_user("adm", Permission.ADM)

        with pytest.raises(NotFoundError):
            await appointment_service.delete(session, 999, admin)

    @pytest.mark.asyncio
    async def test_supervisor_cannot_delete_other_unit(self, session, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)

        with pytest.raises(PermissionDeniedError):
            await appointment_service.delete(session, world["caio"].id, pf)

    @pytest.mark.asyncio
    async def test_admin_deletes(self, session, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        await appointment_service.delete(session, world["caio"].id, admin)

        with pytest.raises(NotFoundError):
            await appointment_service.get(session, world["caio"].id)


class TestUpdate:
    """Tests for update()."""

    @pytest.mark.asyncio
    async def test_missing_appointment(self, session, directory, make_user):
        admin = await make_user("adm", Permission.ADM)

        with pytest.raises(NotFoundError):
            await appointment_service.update(session, 999, AppointmentUpdate(summary="x"), admin, directory)

    @pytest.mark.asyncio
    async def test_supervisor_without_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL)

        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(session, world["ana"].id, AppointmentUpdate(summary="x"), pf, directory)

    @pytest.mark.asyncio
    async def test_supervisor_other_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)

        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(session, world["caio"].id, AppointmentUpdate(summary="x"), pf, directory)

    @pytest.mark.asyncio
    async def test_supervisor_cannot_move_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.COORDENADOR, unit_id=world["cpa"].id)
        data = AppointmentUpdate(unit_id=world["sel"].id)

        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(session, world["ana"].id, data, pf, directory)

    @pytest.mark.asyncio
    async def test_supervisor_assigns_only_technicians_of_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)
        clerk = await make_user("clerk", Permission.USR, unit_id=world["cpa"].id)
        outsider = await make_user("d222222", Permission.TEC, unit_id=world["sel"].id)
        bia_id = world["bia"].id

        with pytest.raises(NotFoundError):
            await appointment_service.update(session, bia_id, AppointmentUpdate(technician_id=999), pf, directory)
        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(
                session, bia_id, AppointmentUpdate(technician_id=clerk.id), pf, directory
            )
        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(
                session, bia_id, AppointmentUpdate(technician_id=outsider.id), pf, directory
            )

        updated = await appointment_service.update(
            session, bia_id, AppointmentUpdate(technician_id=world["tec"].id), pf, directory
        )
        assert updated.technician.login == "d111111"

    @pytest.mark.asyncio
    async def test_supervisor_code_resolving_to_other_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)
        await make_user("d854440", Permission.TEC, unit_id=world["sel"].id)

        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(
                session, world["bia"].id, AppointmentUpdate(technician_code="8544409"), pf, directory
            )

    @pytest.mark.asyncio
    async def test_supervisor_code_resolving_to_non_technician_leaves_account_untouched(
        self, session, directory, make_user, world
    ):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)
        admin = await make_user("d854440", Permission.ADM)
        admin_id = admin.id

        with pytest.raises(PermissionDeniedError):
            await appointment_service.update(
                session, world["bia"].id, AppointmentUpdate(technician_code="8544409"), pf, directory
            )

        stored = await session.get(User, admin_id, populate_existing=True)
        assert stored.permission == Permission.ADM
        assert stored.unit_id is None
        directory.find_by_login.assert_not_called()

    @pytest.mark.asyncio
    async def test_supervisor_code_provisions_technician_in_own_unit(self, session, directory, make_user, world):
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=world["cpa"].id)
        cpa_id = world["cpa"].id

        updated = await appointment_service.update(
            session, world["bia"].id, AppointmentUpdate(technician_code="8544409"), pf, directory
        )

        assert updated.technician.login == "d854440"
        assert updated.technician.permission == Permission.TEC
        assert updated.technician.unit_id == cpa_id

    @pytest.mark.asyncio
    async def test_fields_and_derived_values(self, session, directory, make_user, world):
        admin = await make_user("adm", Permission.ADM)
        reason = NonAttendanceReason(text="Munícipe ausente")
        session.add(reason)
        await session.commit()
        ana_id = world["ana"].id

        missed = await appointment_service.update(
            session,
            ana_id,
            AppointmentUpdate(status=AppointmentStatus.NOT_PERFORMED, reason_id=reason.id),
            admin,
            directory,
        )
        assert missed.reason.text == "Munícipe ausente"

        attended = await appointment_service.update(
            session,
            ana_id,
            AppointmentUpdate(
                status=AppointmentStatus.ATTENDED,
                citizen_name="ANA MARIA LIMA",
                start_at=datetime(2024, 3, 20, 8, 0),
                appointment_type_text="Retorno",
            ),
            admin,
            directory,
        )
        assert attended.reason_id is None
        assert attended.citizen_name == "Ana Maria Lima"
        assert attended.end_at == datetime(2024, 3, 20, 9, 0)
        assert attended.appointment_type.text == "Retorno"

        moved = await appointment_service.update(
            session,
            ana_id,
            AppointmentUpdate(start_at=datetime(2024, 3, 21, 8, 0), end_at=datetime(2024, 3, 21, 8, 45)),
            admin,
            directory,
        )
        assert moved.end_at == datetime(2024, 3, 21, 8, 45)
        assert moved.citizen_name == "Ana Maria Lima"

    @pytest.mark.asyncio
    async def test_admin_may_move_unit(self, session, directory, make_user, world):
        admin = await make_user("adm", Permission.ADM)

        updated = await appointment_service.update(
            session, world["ana"].id, AppointmentUpdate(unit_id=world["sel"].id), admin, directory
        )

        assert updated.unit.code == "SEL"


class TestDashboard:
    """Tests for dashboard()."""

    NOW = datetime(2026, 10, 18, 12, 0)

    @pytest.mark.asyncio
    async def test_totals(self, session, make_user, make_unit, make_appointment):
        unit = await make_unit("CPA")
        other = await make_unit("SEL")
        admin = await make_user("adm", Permission.ADM)
        reason = NonAttendanceReason(text="Munícipe ausente")
        session.add(reason)
        await session.commit()
        statuses = [
            (datetime(2024, 1, 10, 9), AppointmentStatus.ATTENDED, None),
            (datetime(2024, 1, 10, 10), AppointmentStatus.COMPLETED, None),
            (datetime(2024, 3, 5, 9), AppointmentStatus.NOT_PERFORMED, reason.id),
            (datetime(2024, 3, 6, 9), AppointmentStatus.NOT_PERFORMED, None),
            (datetime(2024, 7, 1, 9), AppointmentStatus.CANCELLED, None),
            (datetime(2024, 7, 2, 9), AppointmentStatus.SCHEDULED, None),
        ]
        for start, status, reason_id in statuses:
            await make_appointment(start, status=status, reason_id=reason_id, unit_id=unit.id)
        await make_appointment(datetime(2023, 5, 1, 9), unit_id=other.id)
        await make_appointment(datetime(2019, 5, 1, 9), unit_id=unit.id)

        result = await appointment_service.dashboard(session, admin, year=2024, now=self.NOW)

        assert result.total == 6
        assert result.performed == 2
        assert result.not_performed == 3
        assert result.not_performed_only == 2
        assert result.days_with_appointments == 5
        assert [m.total for m in result.per_month] == [2, 0, 2, 0, 0, 0, 2, 0, 0, 0, 0, 0]
        assert all(m.year == 2024 for m in result.per_month)
        assert [(y.year, y.total) for y in result.per_year] == [(2023, 1), (2024, 6)]
        assert [(r.reason_id, r.reason_text, r.total) for r in result.reasons] == [
            (reason.id, "Munícipe ausente", 1),
            (None, "Não informado", 1),
        ]

        scoped = await appointment_service.dashboard(session, admin, year=2024, unit_id=other.id, now=self.NOW)
        assert scoped.total == 0
        assert [(y.year, y.total) for y in scoped.per_year] == [(2023, 1)]

    @pytest.mark.asyncio
    async def test_supervisor_is_pinned_to_own_unit(self, session, make_user, make_unit, make_appointment):
        unit = await make_unit("CPA")
        other = await make_unit("SEL")
        pf = await make_user("pf", Permission.PONTO_FOCAL, unit_id=unit.id)
        await make_appointment(datetime(2024, 2, 1, 9), unit_id=unit.id)
        await make_appointment(datetime(2024, 2, 1, 10), unit_id=other.id)

        result = await appointment_service.dashboard(session, pf, year=2024, unit_id=other.id, now=self.NOW)

        assert result.total == 1

    @pytest.mark.asyncio
    async def test_supervisor_without_unit_gets_zeros(self, session, make_user, make_appointment):
        pf = await make_user("pf", Permission.COORDENADOR)
        await make_appointment(datetime(2024, 2, 1, 9))

        result = await appointment_service.dashboard(session, pf, year=2024, now=self.NOW)

        assert result.total == 0
        assert len(result.per_month) == 12
        assert result.per_year == []
        assert result.reasons == []
