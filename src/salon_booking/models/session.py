"""Session and user profile models."""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

STAFF_ROLES = frozenset({"employee", "empleado", "admin", "administrador"})
ADMIN_ROLES = frozenset({"admin", "administrador"})


def normalize_role(value: Any) -> Optional[str]:
    """Collapse a role given as a string or a role object into one lowercase string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() or None
    if isinstance(value, dict):
        name = value.get("nombre") or value.get("name")
        return normalize_role(name)
    name = getattr(value, "nombre", None) or getattr(value, "name", None)
    return normalize_role(name)


def is_staff_role(role: Optional[str]) -> bool:
    return normalize_role(role) in STAFF_ROLES


class SessionState(str, Enum):
    """Authentication lifecycle state."""

    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"


class UserProfile(BaseModel):
    """User record from ``/users/{id}`` or the login response."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: int
    name: str = Field(default="", validation_alias=AliasChoices("name", "nombre"))
    email: str = ""
    role: Optional[str] = Field(default=None, validation_alias=AliasChoices("role", "rol"))
    client_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("clientId", "clienteId", "client_id")
    )

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v: Any) -> Optional[str]:
        return normalize_role(v)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return v or ""

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, v: Any) -> str:
        return v or ""

    @property
    def is_staff(self) -> bool:
        return is_staff_role(self.role)


class Session(BaseModel):
    """An authenticated session."""

    token: str
    user: UserProfile

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role(self) -> Optional[str]:
        return self.user.role

    @property
    def is_staff(self) -> bool:
        return self.user.is_staff

    @property
    def is_admin(self) -> bool:
        return self.user.role in ADMIN_ROLES
