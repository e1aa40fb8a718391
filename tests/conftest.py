"""Pytest configuration and fixtures for salon_booking tests."""

from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from salon_booking.config import Environment, Settings
from salon_booking.models.session import Session, SessionState, UserProfile
from salon_booking.services.response_cache import ResponseCache
from salon_booking.services.session_manager import SessionManager
from salon_booking.services.storage import InMemoryStorage

CLIENT_USER = {"id": 42, "name": "Ana", "email": "ana@example.com", "role": "cliente"}
EMPLOYEE_USER = {"id": 7, "name": "Luis", "email": "luis@example.com", "role": {"nombre": "Empleado"}}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def mock_settings():
    """Clean settings for every test, independent of the environment."""
    settings = Settings(environment=Environment.TEST, log_level="DEBUG")
    with patch("salon_booking.config.get_settings", return_value=settings):
        yield settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_api():
    """API client double with async verbs and a real cache."""
    api = MagicMock()
    api.get = AsyncMock()
    api.post = AsyncMock()
    api.put = AsyncMock()
    api.cache = ResponseCache()
    return api


def make_session_manager(api: Any, user: Dict[str, Any]) -> SessionManager:
    """Session manager already signed in as ``user``."""
    manager = SessionManager(api, InMemoryStorage())
    manager._session = Session(token="test-token", user=UserProfile.model_validate(user))
    manager.state = SessionState.AUTHENTICATED
    return manager


@pytest.fixture
def client_session(mock_api):
    return make_session_manager(mock_api, CLIENT_USER)


@pytest.fixture
def employee_session(mock_api):
    return make_session_manager(mock_api, EMPLOYEE_USER)


def appointment_payload(
    appointment_id: int,
    date: str = "2025-03-10",
    time: str = "09:00",
    status: str = "pending",
    employee_id: int = 7,
    client_user_id: int = 42,
) -> Dict[str, Any]:
    """Appointment as the backend embeds it, with nested client and employee."""
    return {
        "id": appointment_id,
        "date": date,
        "time": time,
        "status": status,
        "serviceId": 3,
        "service": {"id": 3, "name": "Corte", "price": 15.0, "duration": 30},
        "client": {"id": 900 + client_user_id, "id_user": client_user_id},
        "employee": {"id": employee_id},
    }


@pytest.fixture
def sample_appointments() -> List[Dict[str, Any]]:
    """Mixed list: two owners, two employees, several statuses."""
    return [
        appointment_payload(1, date="2025-03-12", time="10:00"),
        appointment_payload(2, date="2025-03-10", time="09:30", status="confirmed"),
        appointment_payload(3, date="2025-03-10", time="09:00", status="cancelled"),
        appointment_payload(4, date="2025-03-11", time="11:00", client_user_id=99),
        appointment_payload(5, date="2025-03-09", time="16:00", employee_id=8, client_user_id=99),
    ]
