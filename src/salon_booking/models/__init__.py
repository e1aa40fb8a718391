"""Data models for the booking core."""

from salon_booking.models.appointment import (
    Appointment,
    AppointmentDraft,
    AppointmentFilter,
    AppointmentStatus,
    ClientRef,
    Employee,
    EmployeeRef,
    Service,
    ServiceSnapshot,
    normalize_hour,
)
from salon_booking.models.availability import AvailabilityResult
from salon_booking.models.session import (
    Session,
    SessionState,
    UserProfile,
    is_staff_role,
    normalize_role,
)

__all__ = [
    "Appointment",
    "AppointmentDraft",
    "AppointmentFilter",
    "AppointmentStatus",
    "AvailabilityResult",
    "ClientRef",
    "Employee",
    "EmployeeRef",
    "Service",
    "ServiceSnapshot",
    "Session",
    "SessionState",
    "UserProfile",
    "is_staff_role",
    "normalize_hour",
    "normalize_role",
]
