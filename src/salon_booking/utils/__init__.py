"""Utility modules for the booking core."""

from salon_booking.utils.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
