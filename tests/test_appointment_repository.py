"""Unit tests for AppointmentRepository."""

import asyncio
import datetime as dt
from unittest.mock import AsyncMock

import pytest

from salon_booking.models.appointment import (
    Appointment,
    AppointmentDraft,
    AppointmentFilter,
    AppointmentStatus,
)
from salon_booking.services.appointment_repository import AppointmentRepository
from salon_booking.services.availability_resolver import AvailabilityResolver
from salon_booking.services.response_cache import ResponseCache
from salon_booking.utils.errors import (
    AuthorizationError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)

from conftest import appointment_payload, make_session_manager, CLIENT_USER

DAY = dt.date(2025, 3, 10)


def make_repository(api, session):
    resolver = AvailabilityResolver(api)
    return AppointmentRepository(api, session, resolver), resolver


@pytest.fixture
def client_repo(mock_api, client_session):
    return make_repository(mock_api, client_session)


@pytest.fixture
def staff_repo(mock_api, employee_session):
    return make_repository(mock_api, employee_session)


def draft(**overrides):
    values = {"date": "2025-03-10", "time": "09:00", "employee_id": 7, "client_id": 42, "service_id": 3}
    values.update(overrides)
    return AppointmentDraft(**values)


class TestList:
    """Test role-scoped listing."""

    @pytest.mark.asyncio
    async def test_client_sees_only_own_ascending(self, client_repo, mock_api, sample_appointments):
        repo, _ = client_repo
        mock_api.get.return_value = sample_appointments

        appointments = await repo.list()

        mock_api.get.assert_awaited_once_with(
            "/appointments", params={"userId": 42}, force_refresh=False
        )
        assert [a.id for a in appointments] == [3, 2, 1]
        assert all(a.owner_user_id == 42 for a in appointments)

    @pytest.mark.asyncio
    async def test_client_hides_cancelled(self, client_repo, mock_api, sample_appointments):
        repo, _ = client_repo
        mock_api.get.return_value = sample_appointments

        appointments = await repo.list(AppointmentFilter(include_cancelled=False))

        assert [a.id for a in appointments] == [2, 1]

    @pytest.mark.asyncio
    async def test_staff_sees_assigned_descending(self, staff_repo, mock_api, sample_appointments):
        repo, _ = staff_repo
        mock_api.get.return_value = sample_appointments

        appointments = await repo.list(AppointmentFilter(force_refresh=True))

        mock_api.get.assert_awaited_once_with("/appointments/all", force_refresh=True)
        assert [a.id for a in appointments] == [1, 4, 2, 3]

    @pytest.mark.asyncio
    async def test_staff_sees_everyone_when_not_only_mine(
        self, staff_repo, mock_api, sample_appointments
    ):
        repo, _ = staff_repo
        mock_api.get.return_value = sample_appointments

        appointments = await repo.list(AppointmentFilter(only_mine=False, status="pending"))

        assert [a.id for a in appointments] == [1, 4, 5]

    @pytest.mark.asyncio
    async def test_client_filter_requires_embedded_user_id(self, client_repo, mock_api):
        """Test that a matching client record id alone does not grant visibility."""
        repo, _ = client_repo
        without_user = appointment_payload(5)
        without_user["client"] = {"id": 42, "id_user": None}
        flat_only = appointment_payload(6)
        del flat_only["client"]
        flat_only["clientId"] = 42
        mock_api.get.return_value = [without_user, flat_only, appointment_payload(7)]

        appointments = await repo.list()

        assert [a.id for a in appointments] == [7]
        assert all(a.client.id_user == 42 for a in appointments)

    @pytest.mark.asyncio
    async def test_malformed_items_skipped(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.get.return_value = [appointment_payload(1), {"id": 2, "date": "nope"}, "junk"]

        appointments = await repo.list()

        assert [a.id for a in appointments] == [1]

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_empty(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.get.return_value = {"data": []}

        assert await repo.list() == []

    @pytest.mark.asyncio
    async def test_requires_session(self, mock_api):
        repo, _ = make_repository(mock_api, make_session_manager(mock_api, CLIENT_USER))
        repo._session._reset()

        with pytest.raises(AuthorizationError):
            await repo.list()

        mock_api.get.assert_not_awaited()


class TestCreate:
    """Test booking creation."""

    @pytest.mark.asyncio
    async def test_create_posts_pending_and_reserves_slot(self, client_repo, mock_api):
        repo, resolver = client_repo
        resolver.current = AvailabilityResolver.normalize(["09:00", "10:00"], DAY, 7)
        mock_api.post.return_value = {"id": 11}
        await mock_api.cache.get("/appointments", AsyncMock(return_value=[]), {"userId": 42})
        await mock_api.cache.get("/availability", AsyncMock(return_value=[]), {"employeeId": 7})

        appointment = await repo.create(draft())

        mock_api.post.assert_awaited_once_with(
            "/appointments",
            json={
                "employeeId": 7,
                "clientId": 42,
                "date": "2025-03-10",
                "time": "09:00",
                "status": "pending",
                "serviceId": 3,
            },
        )
        assert appointment.id == 11
        assert appointment.status == AppointmentStatus.PENDING
        assert resolver.current.available == ["10:00"]
        assert resolver.current.reserved == ["09:00"]
        assert len(mock_api.cache) == 0

    @pytest.mark.asyncio
    async def test_create_reserved_hour_rejected_locally(self, client_repo, mock_api):
        repo, resolver = client_repo
        resolver.current = AvailabilityResolver.normalize(
            {"availableSlots": ["09:00"], "reservedSlots": ["10:00"]}, DAY, 7
        )

        with pytest.raises(SlotUnavailableError):
            await repo.create(draft(time="10:00"))

        mock_api.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_incomplete_rejected_locally(self, client_repo, mock_api):
        repo, _ = client_repo

        with pytest.raises(ValidationError):
            await repo.create(draft(service_id=None))

        mock_api.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_post_keeps_slot(self, client_repo, mock_api):
        repo, resolver = client_repo
        resolver.current = AvailabilityResolver.normalize(["09:00"], DAY, 7)
        mock_api.post.side_effect = NotFoundError(resource="/appointments")

        with pytest.raises(NotFoundError):
            await repo.create(draft())

        assert resolver.current.available == ["09:00"]


class TestUpdate:
    """Test updates and reschedules."""

    @pytest.mark.asyncio
    async def test_status_update_skips_availability(self, staff_repo, mock_api):
        repo, _ = staff_repo
        mock_api.put.return_value = appointment_payload(1, status="completed")

        updated = await repo.update(1, {"status": "completed"})

        mock_api.get.assert_not_awaited()
        mock_api.put.assert_awaited_once_with("/appointments/1", json={"status": "completed"})
        assert updated.status == AppointmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reschedule_to_taken_hour_sends_nothing(self, client_repo, mock_api):
        repo, _ = client_repo
        current = Appointment.model_validate(appointment_payload(1, time="09:00"))
        mock_api.get.return_value = {"availableSlots": ["09:00", "11:00"], "reservedSlots": ["09:00"]}

        with pytest.raises(SlotUnavailableError):
            await repo.update(1, {"time": "10:00"}, current=current)

        mock_api.get.assert_awaited_once_with(
            "/availability",
            params={"date": "2025-03-10", "employeeId": 7},
            force_refresh=True,
        )
        mock_api.put.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reschedule_to_free_hour(self, client_repo, mock_api):
        repo, _ = client_repo
        current = Appointment.model_validate(appointment_payload(1, time="09:00"))
        mock_api.get.return_value = ["10:00", "11:00"]
        mock_api.put.return_value = appointment_payload(1, time="11:00", date="2025-03-11")
        patch = {"date": "2025-03-11", "time": "11:00"}

        updated = await repo.update(1, patch, current=current)

        assert mock_api.get.call_args[1]["params"] == {"date": "2025-03-11", "employeeId": 7}
        mock_api.put.assert_awaited_once_with("/appointments/1", json=patch)
        assert updated.time == "11:00"

    @pytest.mark.asyncio
    async def test_keeping_own_slot_is_allowed(self, client_repo, mock_api):
        """Test that re-saving the current slot passes although it is reserved."""
        repo, _ = client_repo
        current = Appointment.model_validate(appointment_payload(1, time="09:00"))
        mock_api.get.return_value = {"availableSlots": [], "reservedSlots": ["09:00"]}
        mock_api.put.return_value = appointment_payload(1, time="09:00")

        await repo.update(1, {"date": "2025-03-10", "time": "09:00", "serviceId": 4}, current=current)

        mock_api.put.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reschedule_keeps_falsy_employee_id(self, client_repo, mock_api):
        repo, _ = client_repo
        current = Appointment.model_validate(appointment_payload(1, time="09:00"))
        mock_api.get.return_value = ["10:00"]
        mock_api.put.return_value = appointment_payload(1, time="10:00", employee_id=0)

        await repo.update(1, {"time": "10:00", "employeeId": 0}, current=current)

        assert mock_api.get.call_args[1]["params"] == {"date": "2025-03-10", "employeeId": 0}

    @pytest.mark.asyncio
    async def test_put_without_client_keeps_owner(self, client_repo, mock_api):
        repo, _ = client_repo
        current = Appointment.model_validate(appointment_payload(1))
        mock_api.put.return_value = {"id": 1, "date": "2025-03-10", "time": "09:00", "status": "cancelled"}

        updated = await repo.update(1, {"status": "cancelled"}, current=current)

        assert updated.owner_user_id == 42

    @pytest.mark.asyncio
    async def test_empty_put_response_refetches(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.put.return_value = None
        mock_api.get.return_value = appointment_payload(1, status="cancelled")

        updated = await repo.update(1, {"status": "cancelled"})

        mock_api.get.assert_awaited_once_with("/appointments/1", force_refresh=True)
        assert updated.status == AppointmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_uses_put(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.put.return_value = appointment_payload(1, status="cancelled")
        await mock_api.cache.get("/appointments", AsyncMock(return_value=[]), {"userId": 42})

        await repo.cancel(1)

        mock_api.put.assert_awaited_once_with("/appointments/1", json={"status": "cancelled"})
        assert ResponseCache.build_key("/appointments", {"userId": 42}) not in mock_api.cache


class TestEmployees:
    """Test employee name resolution."""

    @pytest.mark.asyncio
    async def test_get_employee_name_placeholder_then_cached(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.get.return_value = {"id": 7, "user": {"name": "Luis"}}

        assert repo.get_employee_name(7) == "Cargando..."
        assert repo.get_employee_name(7) == "Cargando..."
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert repo.get_employee_name(7) == "Luis"
        mock_api.get.assert_awaited_once_with("/employees/7")

    @pytest.mark.asyncio
    async def test_resolve_names_merged_by_id(self, client_repo, mock_api):
        """Test that names are keyed by id whatever order responses arrive in."""
        repo, _ = client_repo
        gates = {7: asyncio.Event(), 8: asyncio.Event()}

        async def fake_get(path):
            employee_id = int(path.rsplit("/", 1)[1])
            await gates[employee_id].wait()
            return {"id": employee_id, "name": f"Empleado {employee_id}"}

        mock_api.get.side_effect = fake_get

        task = asyncio.create_task(repo.resolve_employee_names([7, 8, 7]))
        await asyncio.sleep(0)
        gates[8].set()
        await asyncio.sleep(0)
        gates[7].set()
        names = await task

        assert names == {7: "Empleado 7", 8: "Empleado 8"}

    @pytest.mark.asyncio
    async def test_failed_lookup_falls_back(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.get.side_effect = NotFoundError(resource="/employees/9")

        names = await repo.resolve_employee_names([9])

        assert names == {9: "Sin nombre"}

    @pytest.mark.asyncio
    async def test_list_employees_memoizes_names(self, client_repo, mock_api):
        repo, _ = client_repo
        mock_api.get.return_value = [{"id": 7, "name": "Luis"}, {"id": 8}]

        employees = await repo.list_employees()

        assert [e.display_name for e in employees] == ["Luis", "Sin nombre"]
        assert repo.get_employee_name(8) == "Sin nombre"
