"""HTTP client for the salon backend with bearer-token authentication.

This module provides the single transport used by the booking core. Every GET
goes through the :class:`~salon_booking.services.response_cache.ResponseCache`
when one is attached; mutations always hit the network.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import httpx

from salon_booking.utils.errors import (
    ApiError,
    AuthorizationError,
    ConnectivityError,
    NotFoundError,
    PermissionDeniedError,
)
from salon_booking.utils.logging import get_logger, get_request_id

if TYPE_CHECKING:
    from salon_booking.services.response_cache import ResponseCache

logger = get_logger("api_client")

UnauthorizedHandler = Callable[[], Awaitable[None]]


class ApiClient:
    """
    HTTP client for the salon backend.

    Handles:
    - Default headers, including the process-wide ``Authorization`` bearer
    - Timeout configuration (one global timeout, no retries)
    - Mapping transport failures and error statuses to booking exceptions
    - Routing GET requests through the response cache

    Example:
        ```python
        from salon_booking.clients import ApiClient

        client = ApiClient(base_url="http://localhost:3000/api", timeout=30.0)
        client.set_auth_token("token-from-login")

        employees = await client.get("/employees")
        ```
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        cache: Optional["ResponseCache"] = None,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the backend (e.g., "http://localhost:3000/api")
            timeout: Request timeout in seconds (default: 30.0)
            cache: Optional response cache used for GET requests
            default_headers: Optional default headers to include in all requests
            transport: Optional httpx transport (used to stub the backend)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache
        self._transport = transport
        self._on_unauthorized: Optional[UnauthorizedHandler] = None
        self._headers: Dict[str, str] = {"Accept": "application/json"}

        if default_headers:
            self._headers.update(default_headers)

    @property
    def auth_token(self) -> Optional[str]:
        """Currently installed bearer token, if any."""
        value = self._headers.get("Authorization")
        if value and value.startswith("Bearer "):
            return value[len("Bearer "):]
        return None

    def set_auth_token(self, token: Optional[str]) -> None:
        """Install (or with ``None`` remove) the default bearer header."""
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
            logger.debug("Bearer token installed")
        else:
            self.clear_auth_token()

    def clear_auth_token(self) -> None:
        """Remove the default bearer header."""
        if self._headers.pop("Authorization", None) is not None:
            logger.debug("Bearer token removed")

    def set_unauthorized_handler(self, handler: Optional[UnauthorizedHandler]) -> None:
        """Register a coroutine called whenever the backend answers 401."""
        self._on_unauthorized = handler

    def _get_headers(self, additional_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Get headers for a request, merging default headers with additional headers.

        Args:
            additional_headers: Optional additional headers to include

        Returns:
            Merged headers dictionary
        """
        headers = self._headers.copy()
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        if additional_headers:
            headers.update(additional_headers)
        return headers

    def _build_url(self, path: str) -> str:
        """
        Build full URL from base URL and path.

        Args:
            path: API path (e.g., "/appointments")

        Returns:
            Full URL
        """
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        force_refresh: bool = False,
        allow_fallback: bool = True,
    ) -> Any:
        """
        Make a GET request, served from the cache while fresh.

        Args:
            path: API path (e.g., "/appointments")
            params: Optional query parameters
            headers: Optional additional headers
            force_refresh: Bypass a fresh cache entry
            allow_fallback: Let the cache substitute a placeholder for a missing user

        Returns:
            Decoded JSON payload

        Raises:
            ConnectivityError: If no response was received
            AuthorizationError: On 401
            NotFoundError: On 404 (unless recovered by the cache)
            ApiError: On any other error status
        """

        async def fetch() -> Any:
            return await self._send("GET", path, params=params, headers=headers)

        if self.cache is None:
            return await fetch()
        return await self.cache.get(
            path,
            fetch,
            params=params,
            force_refresh=force_refresh,
            allow_fallback=allow_fallback,
        )

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make a POST request.

        Args:
            path: API path (e.g., "/appointments")
            json: Optional JSON payload
            headers: Optional additional headers

        Returns:
            Decoded JSON payload, or None for an empty response
        """
        return await self._send("POST", path, json=json, headers=headers)

    async def put(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make a PUT request.

        Args:
            path: API path (e.g., "/appointments/{appointment_id}")
            json: Optional JSON payload
            headers: Optional additional headers

        Returns:
            Decoded JSON payload, or None for an empty response
        """
        return await self._send("PUT", path, json=json, headers=headers)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = self._build_url(path)
        request_headers = self._get_headers(headers)

        kwargs: Dict[str, Any] = {"headers": request_headers}
        if params is not None:
            kwargs["params"] = params
        if json is not None:
            request_headers.setdefault("Content-Type", "application/json")
            kwargs["json"] = json

        logger.debug(f"{method} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                sender = getattr(client, method.lower())
                response = await sender(url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout on {method} {url} - {e}")
            raise ConnectivityError(
                "Tiempo de espera agotado al conectar con el servidor",
                details={"method": method, "url": url},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error on {method} {url} - {e}")
            raise ConnectivityError(details={"method": method, "url": url}) from e

        return await self._handle_response(method, path, url, response)

    async def _handle_response(
        self,
        method: str,
        path: str,
        url: str,
        response: httpx.Response,
    ) -> Any:
        status_code = response.status_code
        details = {"method": method, "url": url}

        if status_code == 401:
            logger.warning(f"Unauthorized response for {method} {url}")
            if self._on_unauthorized is not None:
                await self._on_unauthorized()
            raise AuthorizationError(details=details)
        if status_code == 403:
            raise PermissionDeniedError(details=details)
        if status_code == 404:
            logger.warning(f"Resource not found: {method} {url}")
            raise NotFoundError(resource=path)
        if status_code >= 400:
            message = self._server_message(response)
            logger.error(f"Request failed: {method} {url}. Status: {status_code}, Message: {message}")
            if message:
                raise ApiError(message, status_code=status_code, details=details)
            raise ApiError(status_code=status_code, details=details)

        if status_code == 204 or not response.text:
            return None

        data = response.json()
        # Some endpoints report failures inside a 200 body
        if isinstance(data, dict) and data.get("error") is True:
            raise ApiError(
                data.get("message") or "Error al procesar la solicitud",
                status_code=status_code,
                details=details,
            )
        return data

    @staticmethod
    def _server_message(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        message = body.get("message")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        return message
