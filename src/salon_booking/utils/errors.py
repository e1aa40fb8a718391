"""Custom exception classes for the booking core."""

from typing import Any, Dict, Optional


class BookingException(Exception):
    """Base exception for all booking core errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for display or logging."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ConnectivityError(BookingException):
    """Raised when no response was received from the backend."""

    def __init__(
        self,
        message: str = "No se pudo conectar con el servidor",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=503,
            code="CONNECTIVITY_ERROR",
            details=details,
        )


class AuthenticationError(BookingException):
    """Raised when a login response cannot establish a session."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="AUTHENTICATION_ERROR",
            details=details,
        )


class AuthorizationError(BookingException):
    """Raised on 401 responses or when no session is available."""

    def __init__(
        self,
        message: str = "Sesión expirada. Por favor, inicia sesión nuevamente",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="AUTHORIZATION_ERROR",
            details=details,
        )


class PermissionDeniedError(BookingException):
    """Raised when the current role may not perform an action."""

    def __init__(
        self,
        message: str = "No tienes permisos para realizar esta acción",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=403,
            code="PERMISSION_DENIED",
            details=details,
        )


class NotFoundError(BookingException):
    """Raised when a resource is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        error_details = details or {}
        error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=404,
            code="NOT_FOUND",
            details=error_details,
        )


class ApiError(BookingException):
    """Raised for any other unsuccessful backend response."""

    def __init__(
        self,
        message: str = "Error en el servidor. Por favor, intenta más tarde",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            code="API_ERROR",
            details=details,
        )


class ValidationError(BookingException):
    """Raised when a request is rejected locally before reaching the backend."""

    def __init__(
        self,
        message: str = "Seleccione fecha, hora y empleado",
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if errors:
            error_details["validation_errors"] = errors
        super().__init__(
            message=message,
            status_code=422,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class SlotUnavailableError(BookingException):
    """Raised when the desired hour is not (or no longer) free."""

    def __init__(
        self,
        date: str,
        employee_id: int,
        hour: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message or "El horario seleccionado ya no está disponible",
            status_code=409,
            code="SLOT_UNAVAILABLE",
            details={"date": date, "employee_id": employee_id, "hour": hour},
        )


class InvalidTransitionError(BookingException):
    """Raised when an appointment status transition is not allowed."""

    def __init__(
        self,
        current_status: str,
        action: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message or f"Cannot {action} an appointment that is {current_status}",
            status_code=409,
            code="INVALID_TRANSITION",
            details={"current_status": current_status, "action": action},
        )


class StorageError(BookingException):
    """Exception raised when the session storage backend fails."""

    def __init__(self, message: str = "Storage operation failed", key: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=500,
            code="STORAGE_ERROR",
            details={"key": key} if key else None,
        )
