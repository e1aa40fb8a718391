"""Scheduling core of the salon booking client."""

from salon_booking.core import BookingCore

__version__ = "0.1.0"

__all__ = ["BookingCore", "__version__"]
