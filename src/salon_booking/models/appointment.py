"""Appointment, employee and service models returned by the backend."""

import datetime as dt
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from salon_booking.utils.errors import ValidationError

_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?$")

EMPLOYEE_NAME_FALLBACK = "Sin nombre"


def normalize_hour(value: Any) -> str:
    """Normalize ``H:MM``, ``HH:MM`` or ``HH:MM:SS`` (or a ``time``) to ``HH:MM``.

    Raises:
        ValueError: If the value is not a valid clock time.
    """
    if isinstance(value, dt.time):
        return f"{value.hour:02d}:{value.minute:02d}"
    match = _HOUR_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid hour: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid hour: {value!r}")
    return f"{hour:02d}:{minute:02d}"


def parse_date(value: Any) -> Any:
    """Accept ``YYYY-MM-DD`` as well as full ISO timestamps for a calendar date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in ("T", " "):
        return value[:10]
    return value


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Completed and cancelled appointments never change again."""
        return self in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)


class ServiceSnapshot(BaseModel):
    """Denormalized service data embedded in an appointment."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: str = ""
    price: float = 0.0
    duration: int = 0


class ClientRef(BaseModel):
    """Client reference embedded in an appointment."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    id_user: Optional[int] = None


class EmployeeRef(BaseModel):
    """Employee reference embedded in an appointment."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None


class Appointment(BaseModel):
    """A booked appointment as returned by ``/appointments``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    date: dt.date
    time: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    employee_id: Optional[int] = Field(default=None, alias="employeeId")
    client_id: Optional[int] = Field(default=None, alias="clientId")
    service_id: Optional[int] = Field(default=None, alias="serviceId")
    service: Optional[ServiceSnapshot] = None
    client: Optional[ClientRef] = None
    employee: Optional[EmployeeRef] = None

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        return parse_date(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        normalize_hour(v)
        return v

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower()
        return v

    @model_validator(mode="after")
    def fill_flat_ids(self) -> "Appointment":
        # The backend sends either flat ids, nested objects, or both.
        if self.employee_id is None and self.employee is not None:
            self.employee_id = self.employee.id
        if self.client_id is None and self.client is not None:
            self.client_id = self.client.id_user if self.client.id_user is not None else self.client.id
        if self.service_id is None and self.service is not None:
            self.service_id = self.service.id
        return self

    @property
    def hour(self) -> str:
        """Start time as ``HH:MM``."""
        return normalize_hour(self.time)

    @property
    def starts_at(self) -> dt.datetime:
        """Combined date and time, used for ordering."""
        return dt.datetime.combine(self.date, dt.time.fromisoformat(self.hour))

    @property
    def owner_user_id(self) -> Optional[int]:
        """User id of the client who owns the appointment.

        Only the embedded ``client.id_user`` counts; ``client_id`` is the
        client record id and may differ from the user id.
        """
        if self.client is None:
            return None
        return self.client.id_user

    def occupies(self, date: dt.date, employee_id: int) -> bool:
        """Whether this appointment blocks a slot for the employee on that date."""
        return (
            self.status != AppointmentStatus.CANCELLED
            and self.date == date
            and self.employee_id is not None
            and int(self.employee_id) == int(employee_id)
        )


class AppointmentDraft(BaseModel):
    """Data collected before creating an appointment."""

    date: Optional[dt.date] = None
    time: Optional[str] = None
    employee_id: Optional[int] = None
    client_id: Optional[int] = None
    service_id: Optional[int] = None

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        return parse_date(v)

    def missing_fields(self) -> List[str]:
        """Names of required fields that are still empty."""
        return [
            name
            for name in ("date", "time", "employee_id", "client_id", "service_id")
            if getattr(self, name) in (None, "")
        ]

    def require_complete(self) -> None:
        """Reject an incomplete draft before any request is made.

        Raises:
            ValidationError: If a required field is missing or the time is malformed.
        """
        missing = self.missing_fields()
        if missing:
            raise ValidationError(errors={name: "required" for name in missing})
        try:
            normalize_hour(self.time)
        except ValueError as e:
            raise ValidationError("Hora no válida", errors={"time": str(e)}) from e

    def to_payload(self) -> Dict[str, Any]:
        """Body for ``POST /appointments``."""
        return {
            "employeeId": self.employee_id,
            "clientId": self.client_id,
            "date": self.date.isoformat() if self.date else None,
            "time": self.time,
            "status": AppointmentStatus.PENDING.value,
            "serviceId": self.service_id,
        }


class AppointmentFilter(BaseModel):
    """Client-side filters applied after an appointment list is fetched."""

    status: Optional[AppointmentStatus] = None
    date: Optional[dt.date] = None
    include_cancelled: bool = True
    only_mine: bool = True
    force_refresh: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        return parse_date(v)

    def matches(self, appointment: Appointment) -> bool:
        if not self.include_cancelled and appointment.status == AppointmentStatus.CANCELLED:
            return False
        if self.status is not None and appointment.status != self.status:
            return False
        if self.date is not None and appointment.date != self.date:
            return False
        return True


class Employee(BaseModel):
    """Employee record from ``/employees``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: Optional[str] = None
    user: Optional[Dict[str, Any]] = None

    @property
    def display_name(self) -> str:
        user_name = (self.user or {}).get("name")
        return user_name or self.name or EMPLOYEE_NAME_FALLBACK


class Service(BaseModel):
    """Bookable service (read-only reference data)."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    price: float = 0.0
    duration: int = Field(default=0, description="Duration in minutes")
