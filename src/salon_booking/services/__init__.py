"""Services package."""

from salon_booking.services.appointment_repository import AppointmentRepository
from salon_booking.services.availability_resolver import AvailabilityResolver
from salon_booking.services.booking_state_machine import BookingAction, BookingStateMachine
from salon_booking.services.response_cache import ResponseCache
from salon_booking.services.session_manager import SessionManager
from salon_booking.services.storage import (
    InMemoryStorage,
    RedisStorage,
    SessionStorage,
    create_storage,
)

__all__ = [
    "AppointmentRepository",
    "AvailabilityResolver",
    "BookingAction",
    "BookingStateMachine",
    "ResponseCache",
    "SessionManager",
    "SessionStorage",
    "InMemoryStorage",
    "RedisStorage",
    "create_storage",
]
