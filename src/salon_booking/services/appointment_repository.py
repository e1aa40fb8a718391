"""Appointment repository over the backend ``/appointments`` resource."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from salon_booking.clients.api_client import ApiClient
from salon_booking.models.appointment import (
    EMPLOYEE_NAME_FALLBACK,
    Appointment,
    AppointmentDraft,
    AppointmentFilter,
    AppointmentStatus,
    ClientRef,
    Employee,
    normalize_hour,
    parse_date,
)
from salon_booking.services.availability_resolver import AvailabilityResolver
from salon_booking.services.session_manager import SessionManager
from salon_booking.utils.errors import BookingException, SlotUnavailableError, ValidationError
from salon_booking.utils.logging import get_logger

logger = get_logger("appointment_repository")

EMPLOYEE_NAME_LOADING = "Cargando..."

RESCHEDULE_FIELDS = frozenset({"date", "time", "employeeId"})


def _assigned_employee_id(appointment: Appointment) -> Optional[int]:
    if appointment.employee is not None and appointment.employee.id is not None:
        return appointment.employee.id
    return appointment.employee_id


class AppointmentRepository:
    """Repository for appointments, scoped to the signed-in user.

    Clients see their own appointments in ascending date order; employees and
    admins read the full list and see it newest first.
    """

    def __init__(
        self,
        api: ApiClient,
        session: SessionManager,
        availability: AvailabilityResolver,
    ):
        self._api = api
        self._session = session
        self._availability = availability
        self._employee_names: Dict[int, str] = {}
        self._pending_names: Dict[int, "asyncio.Task[str]"] = {}

    async def list(self, filter: Optional[AppointmentFilter] = None) -> List[Appointment]:
        """List appointments visible to the current user.

        Args:
            filter: Optional status/date/cancelled filters and refresh flag.

        Returns:
            Filtered appointments, ascending for clients and descending for staff.
        """
        filter = filter or AppointmentFilter()
        session = self._session.require_session()

        if session.is_staff:
            data = await self._api.get("/appointments/all", force_refresh=filter.force_refresh)
            appointments = self._parse_list(data)
            if filter.only_mine:
                appointments = [
                    a for a in appointments if _assigned_employee_id(a) == session.user_id
                ]
            descending = True
        else:
            data = await self._api.get(
                "/appointments",
                params={"userId": session.user_id},
                force_refresh=filter.force_refresh,
            )
            appointments = [
                a
                for a in self._parse_list(data)
                if a.client is not None and a.client.id_user == session.user_id
            ]
            descending = False

        appointments = [a for a in appointments if filter.matches(a)]
        appointments.sort(key=lambda a: a.starts_at, reverse=descending)
        return appointments

    async def get(self, appointment_id: int, force_refresh: bool = False) -> Appointment:
        """Fetch a single appointment."""
        self._session.require_session()
        data = await self._api.get(f"/appointments/{appointment_id}", force_refresh=force_refresh)
        return Appointment.model_validate(data)

    async def create(self, draft: AppointmentDraft) -> Appointment:
        """Book a new pending appointment.

        The hour must be in the resolver's current available set for the same
        (date, employee); the check is local and happens before the POST.

        Raises:
            ValidationError: If the draft is incomplete.
            SlotUnavailableError: If the hour is not currently offered.
        """
        self._session.require_session()
        draft.require_complete()
        self._availability.ensure_bookable(draft.date, draft.employee_id, draft.time)

        payload = draft.to_payload()
        data = await self._api.post("/appointments", json=payload)
        appointment = Appointment.model_validate({**payload, **(data or {})})
        appointment = self._with_owner(appointment)
        logger.info(
            f"Created appointment {appointment.id} for employee {appointment.employee_id} "
            f"on {appointment.date} at {appointment.hour}"
        )

        self._availability.mark_reserved(draft.date, draft.employee_id, draft.time)
        self._invalidate()
        return appointment

    async def update(
        self,
        appointment_id: int,
        patch: Dict[str, Any],
        current: Optional[Appointment] = None,
    ) -> Appointment:
        """Apply a partial update or a full reschedule.

        A patch touching date, time or employee is revalidated against fresh
        availability for the new target before the PUT is sent.

        Args:
            appointment_id: Appointment to update.
            patch: Backend payload (camelCase keys).
            current: The appointment as last seen, used to fill a partial reschedule.

        Raises:
            SlotUnavailableError: If the new hour is no longer free.
        """
        self._session.require_session()
        rescheduling = bool(RESCHEDULE_FIELDS & patch.keys())
        if rescheduling:
            await self._ensure_slot_free(patch, current)

        data = await self._api.put(f"/appointments/{appointment_id}", json=patch)
        self._invalidate()

        try:
            updated = Appointment.model_validate(data)
        except PydanticValidationError:
            logger.debug(f"PUT /appointments/{appointment_id} returned no appointment, refetching")
            updated = await self.get(appointment_id, force_refresh=True)
        updated = self._with_owner(updated, current)

        if rescheduling and updated.employee_id is not None:
            requested_employee = patch.get("employeeId")
            if requested_employee is not None and updated.employee_id != int(requested_employee):
                logger.warning(
                    f"Appointment {appointment_id} still assigned to employee "
                    f"{updated.employee_id}, expected {requested_employee}"
                )
            self._availability.mark_reserved(updated.date, updated.employee_id, updated.time)

        logger.info(f"Updated appointment {appointment_id} (status={updated.status.value})")
        return updated

    async def cancel(self, appointment_id: int) -> Appointment:
        """Cancel through the status update; DELETE is never used."""
        return await self.update(appointment_id, {"status": AppointmentStatus.CANCELLED.value})

    async def list_employees(self) -> List[Employee]:
        """List employees and remember their display names."""
        data = await self._api.get("/employees")
        if not isinstance(data, list):
            logger.warning(f"Unexpected employees response: {type(data).__name__}")
            return []
        employees = [Employee.model_validate(item) for item in data]
        for employee in employees:
            self._employee_names[employee.id] = employee.display_name
        return employees

    def get_employee_name(self, employee_id: int) -> str:
        """Return a memoized display name, starting a background lookup on a miss.

        Must be called from a running event loop.
        """
        name = self._employee_names.get(employee_id)
        if name is not None:
            return name
        self._name_task(employee_id)
        return EMPLOYEE_NAME_LOADING

    async def resolve_employee_names(self, employee_ids: Iterable[int]) -> Dict[int, str]:
        """Resolve several names concurrently, merged by id."""
        ids = list(dict.fromkeys(i for i in employee_ids if i is not None))
        missing = [i for i in ids if i not in self._employee_names]
        if missing:
            await asyncio.gather(*(self._name_task(i) for i in missing))
        return {i: self._employee_names.get(i, EMPLOYEE_NAME_FALLBACK) for i in ids}

    def _name_task(self, employee_id: int) -> "asyncio.Task[str]":
        task = self._pending_names.get(employee_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch_employee_name(employee_id))
            self._pending_names[employee_id] = task
        return task

    async def _fetch_employee_name(self, employee_id: int) -> str:
        try:
            data = await self._api.get(f"/employees/{employee_id}")
            name = Employee.model_validate(data).display_name
        except (BookingException, PydanticValidationError) as e:
            # Not memoized, the next lookup retries
            logger.warning(f"Could not load employee {employee_id}: {e}")
            return EMPLOYEE_NAME_FALLBACK
        finally:
            self._pending_names.pop(employee_id, None)
        self._employee_names[employee_id] = name
        return name

    async def _ensure_slot_free(
        self,
        patch: Dict[str, Any],
        current: Optional[Appointment],
    ) -> None:
        date = parse_date(patch.get("date"))
        if date is None and current is not None:
            date = current.date
        hour = patch.get("time")
        if hour is None and current is not None:
            hour = current.time
        employee_id = patch.get("employeeId")
        if employee_id is None and current is not None:
            employee_id = current.employee_id
        if date in (None, "") or hour in (None, "") or employee_id is None:
            raise ValidationError(
                errors={
                    name: "required"
                    for name, value in (("date", date), ("time", hour), ("employeeId", employee_id))
                    if value in (None, "")
                }
            )

        result = await self._availability.get_available_hours(
            date, int(employee_id), force_refresh=True
        )
        hour = normalize_hour(hour)

        if current is not None and current.status != AppointmentStatus.CANCELLED:
            # Keeping the appointment's own slot is always allowed
            if (
                result.date == current.date
                and int(employee_id) == current.employee_id
                and hour == current.hour
            ):
                return

        if not result.is_available(hour):
            logger.info(
                f"Slot {result.date} {hour} for employee {employee_id} is no longer available"
            )
            raise SlotUnavailableError(result.date.isoformat(), int(employee_id), hour)

    def _with_owner(
        self,
        appointment: Appointment,
        current: Optional[Appointment] = None,
    ) -> Appointment:
        """Embed the owning user when the backend response carries no client."""
        if appointment.owner_user_id is not None:
            return appointment
        if current is not None and current.owner_user_id is not None:
            owner = current.client
        else:
            session = self._session.session
            if session is None or session.is_staff:
                return appointment
            owner = ClientRef(id=appointment.client_id, id_user=session.user_id)
        return appointment.model_copy(update={"client": owner})

    def _invalidate(self) -> None:
        self._api_cache_invalidate("/appointments")
        self._api_cache_invalidate("/availability")

    def _api_cache_invalidate(self, pattern: str) -> None:
        if self._api.cache is not None:
            self._api.cache.invalidate(pattern)

    @staticmethod
    def _parse_list(data: Any) -> List[Appointment]:
        if not isinstance(data, list):
            logger.warning(f"Unexpected appointments response: {type(data).__name__}")
            return []
        appointments: List[Appointment] = []
        for item in data:
            try:
                appointments.append(Appointment.model_validate(item))
            except PydanticValidationError as e:
                item_id = item.get("id") if isinstance(item, dict) else item
                logger.warning(f"Skipping malformed appointment {item_id!r}: {e.error_count()} errors")
        return appointments
