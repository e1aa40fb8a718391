"""Appointment lifecycle rules.

Every status change goes through :class:`BookingStateMachine`, which checks
the transition table and the caller's role before asking the repository to
persist anything.

    (none)    --create-->   pending
    pending   --edit-->     pending
    pending   --confirm-->  confirmed
    pending   --complete--> completed
    pending   --cancel-->   cancelled

Completed and cancelled are terminal. Edits, completion and cancellation of
confirmed appointments depend on :class:`~salon_booking.config.BookingSettings`.
"""

import uuid
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from salon_booking.config import BookingSettings
from salon_booking.models.appointment import Appointment, AppointmentDraft, AppointmentStatus
from salon_booking.models.session import Session
from salon_booking.services.appointment_repository import AppointmentRepository
from salon_booking.services.availability_resolver import AvailabilityResolver, DateLike
from salon_booking.services.session_manager import SessionManager
from salon_booking.utils.errors import (
    AuthorizationError,
    BookingException,
    InvalidTransitionError,
    PermissionDeniedError,
    SlotUnavailableError,
    ValidationError,
)
from salon_booking.utils.logging import get_logger, log_error, set_request_id

logger = get_logger("booking_state_machine")


class BookingAction(str, Enum):
    """Actions that change an existing appointment."""

    EDIT = "edit"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"


_OPEN = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

# action -> (allowed source statuses, resulting status)
TRANSITIONS: Dict[BookingAction, Tuple[FrozenSet[AppointmentStatus], AppointmentStatus]] = {
    BookingAction.EDIT: (_OPEN, AppointmentStatus.PENDING),
    BookingAction.CONFIRM: (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED),
    BookingAction.COMPLETE: (_OPEN, AppointmentStatus.COMPLETED),
    BookingAction.CANCEL: (_OPEN, AppointmentStatus.CANCELLED),
}

STAFF_ONLY_ACTIONS = frozenset({BookingAction.CONFIRM, BookingAction.COMPLETE})

# Failures the caller is expected to show as-is
_EXPECTED_ERRORS = (
    ValidationError,
    SlotUnavailableError,
    InvalidTransitionError,
    PermissionDeniedError,
    AuthorizationError,
)


def _start_action() -> str:
    """Tag the requests of one user action with a fresh request id."""
    request_id = str(uuid.uuid4())
    set_request_id(request_id)
    return request_id


class BookingStateMachine:
    """Service enforcing the appointment status lifecycle."""

    def __init__(
        self,
        repository: AppointmentRepository,
        availability: AvailabilityResolver,
        session: SessionManager,
        settings: Optional[BookingSettings] = None,
    ):
        self._repository = repository
        self._availability = availability
        self._session = session
        self.settings = settings or BookingSettings()

    def can(self, appointment: Appointment, action: BookingAction) -> bool:
        """Whether the signed-in user may apply ``action`` right now."""
        try:
            self._check(appointment, action, self._session.require_session())
        except (InvalidTransitionError, PermissionDeniedError, AuthorizationError):
            return False
        return True

    def available_actions(self, appointment: Appointment) -> List[BookingAction]:
        """Actions to offer for an appointment, in display order."""
        return [action for action in BookingAction if self.can(appointment, action)]

    async def create(self, draft: AppointmentDraft) -> Appointment:
        """Book a new appointment in ``pending``.

        A client booking for themselves may leave ``client_id`` empty; it is
        taken from the session.

        Raises:
            ValidationError: Missing field, before any request.
            SlotUnavailableError: Hour not in the current available set,
                before any request.
        """
        _start_action()
        session = self._session.require_session()
        if draft.client_id is None and not session.is_staff:
            client_id = session.user.client_id
            draft = draft.model_copy(
                update={"client_id": client_id if client_id is not None else session.user_id}
            )

        draft.require_complete()
        self._availability.ensure_bookable(draft.date, draft.employee_id, draft.time)

        try:
            return await self._repository.create(draft)
        except _EXPECTED_ERRORS:
            raise
        except BookingException as e:
            log_error(e, {"action": "create", "employee_id": draft.employee_id, "date": str(draft.date)})
            raise

    async def edit(
        self,
        appointment: Appointment,
        date: Optional[DateLike] = None,
        time: Optional[str] = None,
        employee_id: Optional[int] = None,
        service_id: Optional[int] = None,
    ) -> Appointment:
        """Reschedule an appointment; the result is back in ``pending``.

        Unset arguments keep the appointment's current values. The full
        appointment is sent so the backend never sees a partial reschedule.

        Raises:
            SlotUnavailableError: The new hour is no longer free; nothing is sent.
        """
        _start_action()
        self._check(appointment, BookingAction.EDIT, self._session.require_session())

        if date is None:
            target_date = appointment.date.isoformat()
        elif isinstance(date, str):
            target_date = date
        else:
            target_date = date.isoformat()

        patch: Dict[str, Any] = {
            "employeeId": employee_id if employee_id is not None else appointment.employee_id,
            "clientId": appointment.client_id,
            "date": target_date,
            "time": time if time is not None else appointment.time,
            "status": TRANSITIONS[BookingAction.EDIT][1].value,
            "serviceId": service_id if service_id is not None else appointment.service_id,
        }
        return await self._apply(appointment, BookingAction.EDIT, patch)

    async def confirm(self, appointment: Appointment) -> Appointment:
        return await self._transition(appointment, BookingAction.CONFIRM)

    async def complete(self, appointment: Appointment) -> Appointment:
        return await self._transition(appointment, BookingAction.COMPLETE)

    async def cancel(self, appointment: Appointment) -> Appointment:
        """Cancel through a status update."""
        return await self._transition(appointment, BookingAction.CANCEL)

    async def _transition(self, appointment: Appointment, action: BookingAction) -> Appointment:
        _start_action()
        self._check(appointment, action, self._session.require_session())
        target = TRANSITIONS[action][1]
        return await self._apply(appointment, action, {"status": target.value})

    async def _apply(
        self,
        appointment: Appointment,
        action: BookingAction,
        patch: Dict[str, Any],
    ) -> Appointment:
        try:
            updated = await self._repository.update(appointment.id, patch, current=appointment)
        except _EXPECTED_ERRORS:
            raise
        except BookingException as e:
            log_error(e, {"action": action.value, "appointment_id": appointment.id})
            raise

        logger.info(
            f"Appointment {appointment.id}: {action.value} "
            f"{appointment.status.value} -> {updated.status.value}"
        )
        return updated

    def _check(self, appointment: Appointment, action: BookingAction, session: Session) -> None:
        """Raise unless ``session`` may apply ``action`` to ``appointment``."""
        status = appointment.status
        sources, _ = TRANSITIONS[action]

        if status.is_terminal or status not in sources:
            raise InvalidTransitionError(status.value, action.value)

        if action in STAFF_ONLY_ACTIONS and not session.is_staff:
            raise PermissionDeniedError()

        if status == AppointmentStatus.CONFIRMED:
            if action == BookingAction.EDIT and not self.settings.allow_reschedule_when_confirmed:
                raise InvalidTransitionError(status.value, action.value)
            if (
                session.is_staff
                and action in (BookingAction.COMPLETE, BookingAction.CANCEL)
                and not self.settings.staff_actions_from_confirmed
            ):
                raise InvalidTransitionError(status.value, action.value)

        if not session.is_staff and appointment.owner_user_id != session.user_id:
            raise PermissionDeniedError("Esta cita no te pertenece")
