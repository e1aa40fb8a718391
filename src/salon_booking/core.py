"""Construction and teardown of one wired booking core."""

import time
from typing import Callable, Optional

import httpx

from salon_booking.clients.api_client import ApiClient
from salon_booking.config import Settings, get_settings
from salon_booking.services.appointment_repository import AppointmentRepository
from salon_booking.services.availability_resolver import AvailabilityResolver
from salon_booking.services.booking_state_machine import BookingStateMachine
from salon_booking.services.response_cache import ResponseCache
from salon_booking.services.session_manager import SessionManager
from salon_booking.services.storage import SessionStorage, create_storage
from salon_booking.utils.logging import get_logger, setup_logging

logger = get_logger("core")


class BookingCore:
    """Owns the shared client, cache and session of one process or test case.

    Example:
        ```python
        async with BookingCore() as core:
            await core.session.sign_in("a@b.com", "pw")
            result = await core.availability.select("2025-03-10", 7)
            await core.bookings.create(draft)
        ```
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[SessionStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Wire every service around one client and one cache.

        Args:
            settings: Settings to use (defaults to the global settings).
            storage: Session storage (defaults to the configured backend).
            transport: Optional httpx transport, used to stub the backend.
            clock: Clock for the response cache.
        """
        self.settings = settings or get_settings()
        self.cache = ResponseCache(
            ttl_seconds=self.settings.cache.ttl_seconds,
            max_entries=self.settings.cache.max_entries,
            clock=clock,
        )
        self.api = ApiClient(
            base_url=self.settings.api.base_url,
            timeout=self.settings.api.timeout,
            cache=self.cache,
            transport=transport,
        )
        self.storage = storage if storage is not None else create_storage(self.settings.storage)
        self.session = SessionManager(self.api, self.storage, self.cache)
        self.availability = AvailabilityResolver(self.api)
        self.session.add_sign_out_hook(self.availability.reset)
        self.appointments = AppointmentRepository(self.api, self.session, self.availability)
        self.bookings = BookingStateMachine(
            self.appointments,
            self.availability,
            self.session,
            self.settings.booking,
        )

    async def start(self):
        """Restore a persisted session, if any."""
        setup_logging(self.settings)
        state = await self.session.bootstrap()
        logger.info(f"Booking core started (session={state.value})")
        return state

    async def sign_out(self) -> None:
        """Sign out; the slot selection is dropped by the session hook."""
        await self.session.sign_out()

    async def close(self) -> None:
        """Release the storage backend and drop in-memory state."""
        self.availability.reset()
        self.cache.invalidate()
        self.api.set_unauthorized_handler(None)
        await self.storage.close()
        logger.info("Booking core closed")

    async def __aenter__(self) -> "BookingCore":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
