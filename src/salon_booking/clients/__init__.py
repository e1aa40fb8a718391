"""HTTP clients."""

from salon_booking.clients.api_client import ApiClient

__all__ = ["ApiClient"]
