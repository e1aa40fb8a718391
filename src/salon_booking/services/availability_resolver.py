"""Availability Service resolving bookable and reserved hours."""

import datetime as dt
from typing import Any, Iterable, List, Optional, Sequence, Union

from salon_booking.clients.api_client import ApiClient
from salon_booking.models.appointment import Appointment, normalize_hour, parse_date
from salon_booking.models.availability import AvailabilityResult
from salon_booking.utils.errors import SlotUnavailableError
from salon_booking.utils.logging import get_logger

logger = get_logger("availability_resolver")

DateLike = Union[dt.date, str]


def _as_date(value: DateLike) -> dt.date:
    value = parse_date(value)
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(value)


def _clean_hours(hours: Iterable[Any]) -> List[str]:
    """Normalize hours to HH:MM, keeping order and dropping duplicates and garbage."""
    cleaned: List[str] = []
    for raw in hours:
        try:
            hour = normalize_hour(raw)
        except ValueError:
            logger.debug(f"Ignoring malformed hour in availability response: {raw!r}")
            continue
        if hour not in cleaned:
            cleaned.append(hour)
    return cleaned


class AvailabilityResolver:
    """Service for turning ``/availability`` responses into slot sets.

    The backend answers either with a flat list of free hours or with an
    object carrying ``availableSlots`` and ``reservedSlots``. Both shapes are
    decoded here into one :class:`AvailabilityResult`.

    ``select`` tracks the slot set the caller is currently looking at. Each
    call bumps a generation counter and only the newest call may install its
    result, so a slow response for an old (date, employee) never overwrites
    the current one.
    """

    def __init__(self, api: ApiClient):
        self._api = api
        self._generation = 0
        self.current: Optional[AvailabilityResult] = None

    @property
    def generation(self) -> int:
        return self._generation

    async def get_available_hours(
        self,
        date: DateLike,
        employee_id: int,
        known_appointments: Optional[Sequence[Appointment]] = None,
        *,
        force_refresh: bool = False,
    ) -> AvailabilityResult:
        """Fetch availability for one employee on one day.

        Args:
            date: Calendar day.
            employee_id: Employee to book with.
            known_appointments: Appointments the caller already holds; used to
                derive reserved hours when the backend sends a flat list.
            force_refresh: Skip the response cache.

        Returns:
            Disjoint available and reserved hours.
        """
        day = _as_date(date)
        logger.debug(f"Resolving availability for employee {employee_id} on {day}")
        payload = await self._api.get(
            "/availability",
            params={"date": day.isoformat(), "employeeId": employee_id},
            force_refresh=force_refresh,
        )
        return self.normalize(payload, day, employee_id, known_appointments)

    @staticmethod
    def normalize(
        payload: Any,
        date: dt.date,
        employee_id: int,
        known_appointments: Optional[Sequence[Appointment]] = None,
    ) -> AvailabilityResult:
        """Decode either backend shape; unknown shapes yield empty sets."""
        if isinstance(payload, list):
            available = _clean_hours(payload)
            reserved = _clean_hours(
                appointment.time
                for appointment in known_appointments or ()
                if appointment.occupies(date, employee_id)
            )
            source = "list"
        elif (
            isinstance(payload, dict)
            and isinstance(payload.get("availableSlots"), list)
            and isinstance(payload.get("reservedSlots"), list)
        ):
            available = _clean_hours(payload["availableSlots"])
            reserved = _clean_hours(payload["reservedSlots"])
            source = "slots"
        else:
            logger.warning(
                f"Unexpected availability response for employee {employee_id} on {date}: "
                f"{type(payload).__name__}"
            )
            return AvailabilityResult(date=date, employee_id=employee_id, source="unknown")

        # A reserved hour is never offered
        available = [hour for hour in available if hour not in reserved]
        return AvailabilityResult(
            date=date,
            employee_id=employee_id,
            available=available,
            reserved=reserved,
            source=source,
        )

    async def select(
        self,
        date: DateLike,
        employee_id: int,
        known_appointments: Optional[Sequence[Appointment]] = None,
        *,
        force_refresh: bool = False,
    ) -> Optional[AvailabilityResult]:
        """Resolve availability for a new selection and make it current.

        Returns:
            The result, or None when a newer selection started while this one
            was in flight (the stale result is discarded).
        """
        day = _as_date(date)
        self._generation += 1
        generation = self._generation

        if self.current is not None and not self.current.is_for(day, employee_id):
            self.current = None

        result = await self.get_available_hours(
            day, employee_id, known_appointments, force_refresh=force_refresh
        )

        if generation != self._generation:
            logger.debug(
                f"Discarding stale availability for employee {employee_id} on {day} "
                f"(generation {generation}, latest {self._generation})"
            )
            return None

        self.current = result
        return result

    def is_bookable(self, date: DateLike, employee_id: int, hour: str) -> bool:
        """Check the current slot set locally, without any request."""
        if self.current is None or not self.current.is_for(_as_date(date), employee_id):
            return False
        try:
            return self.current.is_available(normalize_hour(hour))
        except ValueError:
            return False

    def ensure_bookable(self, date: DateLike, employee_id: int, hour: str) -> None:
        """Raise unless the hour is in the current available set.

        Raises:
            SlotUnavailableError: If availability for the pair was not loaded or
                the hour is not offered.
        """
        day = _as_date(date)
        if self.current is None or not self.current.is_for(day, employee_id):
            raise SlotUnavailableError(
                day.isoformat(),
                employee_id,
                hour,
                message="Consulta la disponibilidad antes de reservar",
            )
        if not self.is_bookable(day, employee_id, hour):
            raise SlotUnavailableError(day.isoformat(), employee_id, hour)

    def mark_reserved(self, date: DateLike, employee_id: int, hour: str) -> None:
        """Move a confirmed booking's hour from available to reserved."""
        day = _as_date(date)
        if self.current is None or not self.current.is_for(day, employee_id):
            return
        hour = normalize_hour(hour)
        reserved = list(self.current.reserved)
        if hour not in reserved:
            reserved.append(hour)
        self.current = self.current.model_copy(
            update={
                "available": [h for h in self.current.available if h != hour],
                "reserved": reserved,
            }
        )

    def reset(self) -> None:
        """Forget the current selection and invalidate any in-flight one."""
        self._generation += 1
        self.current = None
