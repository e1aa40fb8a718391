"""End-to-end tests for BookingCore against a stubbed backend."""

import json

import httpx
import pytest

from salon_booking.config import Settings
from salon_booking.core import BookingCore
from salon_booking.models.appointment import AppointmentDraft, AppointmentStatus
from salon_booking.models.session import SessionState
from salon_booking.services.storage import InMemoryStorage

from conftest import CLIENT_USER, FakeClock, appointment_payload


class FakeSalonBackend:
    """Minimal in-memory salon backend."""

    def __init__(self):
        self.appointments = {}
        self.calls = []
        self.request_ids = {}
        self.free_hours = ["09:00", "09:30", "10:00"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        self.request_ids[(method, path)] = request.headers.get("X-Request-ID")

        if method == "POST" and path == "/api/auth/login":
            return httpx.Response(200, json={"accessToken": "tok-1", "usuario": CLIENT_USER})
        if request.headers.get("Authorization") != "Bearer tok-1":
            return httpx.Response(401, json={"message": "Unauthorized"})

        if method == "GET" and path == "/api/users/42":
            return httpx.Response(200, json=CLIENT_USER)
        if method == "GET" and path == "/api/availability":
            taken = [
                a["time"]
                for a in self.appointments.values()
                if a["status"] != "cancelled" and a["date"] == request.url.params["date"]
            ]
            return httpx.Response(
                200, json={"availableSlots": self.free_hours, "reservedSlots": taken}
            )
        if method == "GET" and path == "/api/appointments":
            return httpx.Response(200, json=list(self.appointments.values()))
        if method == "POST" and path == "/api/appointments":
            body = json.loads(request.content)
            appointment_id = len(self.appointments) + 1
            self.appointments[appointment_id] = appointment_payload(
                appointment_id,
                date=body["date"],
                time=body["time"],
                employee_id=body["employeeId"],
                client_user_id=body["clientId"],
            )
            return httpx.Response(201, json=self.appointments[appointment_id])
        if method == "PUT" and path.startswith("/api/appointments/"):
            appointment_id = int(path.rsplit("/", 1)[1])
            self.appointments[appointment_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.appointments[appointment_id])
        return httpx.Response(404)


@pytest.fixture
def backend():
    return FakeSalonBackend()


@pytest.fixture
def make_core(backend, mock_settings):
    def factory(storage=None):
        return BookingCore(
            settings=mock_settings,
            storage=storage or InMemoryStorage(),
            transport=httpx.MockTransport(backend),
            clock=FakeClock(),
        )

    return factory


class TestBookingCore:
    """Test the wired core end to end."""

    @pytest.mark.asyncio
    async def test_book_list_and_cancel(self, make_core, backend):
        async with make_core() as core:
            await core.session.sign_in("a@b.com", "pw")

            slots = await core.availability.select("2025-03-10", 7)
            assert slots.available == ["09:00", "09:30", "10:00"]

            created = await core.bookings.create(
                AppointmentDraft(date="2025-03-10", time="09:30", employee_id=7, service_id=3)
            )
            assert created.status == AppointmentStatus.PENDING
            assert core.availability.current.reserved == ["09:30"]

            listed = await core.appointments.list()
            assert [a.id for a in listed] == [created.id]

            cancelled = await core.bookings.cancel(listed[0])
            assert cancelled.status == AppointmentStatus.CANCELLED

            listed = await core.appointments.list()
            assert listed[0].status == AppointmentStatus.CANCELLED

        assert ("DELETE", f"/api/appointments/{created.id}") not in backend.calls

    @pytest.mark.asyncio
    async def test_list_served_from_cache_until_mutation(self, make_core, backend):
        async with make_core() as core:
            await core.session.sign_in("a@b.com", "pw")

            await core.appointments.list()
            await core.appointments.list()

            assert backend.calls.count(("GET", "/api/appointments")) == 1

    @pytest.mark.asyncio
    async def test_restart_restores_session(self, make_core):
        storage = InMemoryStorage()
        async with make_core(storage) as core:
            await core.session.sign_in("a@b.com", "pw")

        async with make_core(storage) as restarted:
            assert restarted.session.state == SessionState.AUTHENTICATED
            assert restarted.api.auth_token == "tok-1"

            await restarted.sign_out()
            assert restarted.session.state == SessionState.UNAUTHENTICATED
            assert storage.snapshot() == {}

    @pytest.mark.asyncio
    async def test_session_sign_out_drops_slot_selection(self, make_core):
        async with make_core() as core:
            await core.session.sign_in("a@b.com", "pw")
            await core.availability.select("2025-03-10", 7)

            await core.session.sign_out()

            assert core.availability.current is None

    @pytest.mark.asyncio
    async def test_actions_send_distinct_request_ids(self, make_core, backend):
        async with make_core() as core:
            await core.session.sign_in("a@b.com", "pw")
            await core.availability.select("2025-03-10", 7)
            created = await core.bookings.create(
                AppointmentDraft(date="2025-03-10", time="09:00", employee_id=7, service_id=3)
            )
            await core.bookings.cancel(created)

        create_id = backend.request_ids[("POST", "/api/appointments")]
        cancel_id = backend.request_ids[("PUT", f"/api/appointments/{created.id}")]
        assert create_id and cancel_id
        assert create_id != cancel_id

    def test_uses_settings(self, make_core, mock_settings):
        core = make_core()

        assert core.api.timeout == mock_settings.api.timeout
        assert core.cache.ttl_seconds == mock_settings.cache.ttl_seconds
        assert core.bookings.settings == mock_settings.booking
