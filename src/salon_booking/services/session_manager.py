"""Session Service owning the bearer token and the signed-in user."""

from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from salon_booking.clients.api_client import ApiClient
from salon_booking.models.session import Session, SessionState, UserProfile
from salon_booking.services.response_cache import ResponseCache
from salon_booking.services.storage import SessionStorage
from salon_booking.utils.errors import AuthenticationError, AuthorizationError, BookingException
from salon_booking.utils.logging import get_logger, set_user_id

logger = get_logger("session_manager")

TOKEN_KEY = "token"
USER_ID_KEY = "userId"
CLIENT_ID_KEY = "clientId"

# Identity keys plus the store/profile keys other features derive from them
SIGN_OUT_KEYS: Tuple[str, ...] = (
    TOKEN_KEY,
    USER_ID_KEY,
    CLIENT_ID_KEY,
    "user",
    "storeId",
    "selectedTienda",
)


class SessionManager:
    """Service for the authentication lifecycle.

    This service handles:
    - Restoring a persisted session at startup
    - Signing in and out
    - Installing the bearer token on the shared API client
    - Exposing the current user and its normalized role
    """

    def __init__(
        self,
        api: ApiClient,
        storage: SessionStorage,
        cache: Optional[ResponseCache] = None,
    ):
        """Initialize the session manager.

        Args:
            api: Shared API client whose default Authorization header is owned here.
            storage: Persisted key/value storage.
            cache: Response cache to clear on sign-out (defaults to the client's).
        """
        self._api = api
        self._storage = storage
        self._cache = cache if cache is not None else api.cache
        self._session: Optional[Session] = None
        self.state = SessionState.UNAUTHENTICATED
        self._sign_out_hooks: List[Callable[[], None]] = []

        api.set_unauthorized_handler(self.handle_unauthorized)

    def add_sign_out_hook(self, hook: Callable[[], None]) -> None:
        """Register a callback run whenever the session is dropped."""
        self._sign_out_hooks.append(hook)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def user(self) -> Optional[UserProfile]:
        return self._session.user if self._session else None

    @property
    def user_id(self) -> Optional[int]:
        return self._session.user_id if self._session else None

    @property
    def role(self) -> Optional[str]:
        """Lowercase role of the signed-in user."""
        return self._session.role if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self._session is not None

    def require_session(self) -> Session:
        """Return the current session.

        Raises:
            AuthorizationError: If nobody is signed in.
        """
        if not self.is_authenticated:
            raise AuthorizationError("Por favor, inicie sesión nuevamente")
        return self._session

    async def bootstrap(self) -> SessionState:
        """Restore a session from the persisted token and user id.

        Returns:
            The resulting session state.
        """
        self.state = SessionState.LOADING
        token = await self._storage.get_item(TOKEN_KEY)
        user_id = await self._storage.get_item(USER_ID_KEY)

        if not token or not user_id:
            logger.debug("No persisted session found")
            self._reset()
            return self.state

        self._api.set_auth_token(token)
        try:
            user = await self._fetch_profile(user_id)
        except (BookingException, PydanticValidationError) as e:
            logger.warning(f"Could not restore session for user {user_id}: {e}")
            await self._storage.remove_item(TOKEN_KEY)
            self._api.clear_auth_token()
            self._reset()
            return self.state

        self._session = Session(token=token, user=user)
        self.state = SessionState.AUTHENTICATED
        set_user_id(user.id)
        logger.info(f"Session restored for user {user.id} (role={user.role})")
        return self.state

    async def sign_in(self, email: str, password: str) -> Session:
        """Log in with credentials and persist the resulting session.

        Args:
            email: Account email.
            password: Account password.

        Returns:
            The new session.

        Raises:
            AuthenticationError: If the response carries no token or user.
            BookingException: Transport and API errors, unchanged.
        """
        self.state = SessionState.LOADING
        self._api.clear_auth_token()
        if self._cache is not None:
            self._cache.invalidate()

        try:
            data = await self._api.post(
                "/auth/login", json={"email": email, "password": password}
            )
            token, user = self._parse_login_response(data)

            await self._storage.set_item(TOKEN_KEY, token)
            await self._storage.set_item(USER_ID_KEY, str(user.id))
            await self._storage.set_item(
                CLIENT_ID_KEY, str(user.client_id if user.client_id is not None else user.id)
            )
        except Exception:
            # Never leave a half-written session behind
            await self._storage.multi_remove((TOKEN_KEY, USER_ID_KEY, CLIENT_ID_KEY))
            self._reset()
            raise

        self._api.set_auth_token(token)
        self._session = Session(token=token, user=user)
        self.state = SessionState.AUTHENTICATED
        set_user_id(user.id)
        logger.info(f"Signed in user {user.id} (role={user.role})")
        return self._session

    async def sign_out(self) -> None:
        """Forget the session everywhere. Safe to call when already signed out."""
        try:
            await self._storage.multi_remove(SIGN_OUT_KEYS)
        finally:
            self._api.clear_auth_token()
            if self._cache is not None:
                self._cache.invalidate()
            was_signed_in = self._session is not None
            self._reset()
            self._run_sign_out_hooks()
            if was_signed_in:
                logger.info("Signed out")

    async def refresh_user_data(self) -> UserProfile:
        """Re-fetch the profile of the stored user and replace the in-memory copy."""
        session = self.require_session()
        user_id = await self._storage.get_item(USER_ID_KEY) or str(session.user_id)
        user = await self._fetch_profile(user_id)
        self._session = Session(token=session.token, user=user)
        logger.debug(f"Refreshed profile for user {user.id} (role={user.role})")
        return user

    async def handle_unauthorized(self) -> None:
        """Drop the token after the backend rejected it."""
        logger.warning("Backend rejected the session token, clearing it")
        await self._storage.remove_item(TOKEN_KEY)
        self._api.clear_auth_token()
        self._reset()
        self._run_sign_out_hooks()

    async def _fetch_profile(self, user_id: Any) -> UserProfile:
        data = await self._api.get(f"/users/{user_id}", allow_fallback=False)
        return UserProfile.model_validate(data)

    @staticmethod
    def _parse_login_response(data: Any) -> Tuple[str, UserProfile]:
        if not isinstance(data, dict):
            raise AuthenticationError("No se recibió respuesta del servidor")

        token = data.get("accessToken") or data.get("token")
        if not token:
            raise AuthenticationError("No se recibió token de acceso")

        user_data: Optional[Dict[str, Any]] = data.get("usuario") or data.get("user")
        if not user_data:
            raise AuthenticationError("No se recibieron datos de usuario")

        try:
            user = UserProfile.model_validate(user_data)
        except PydanticValidationError as e:
            raise AuthenticationError(
                "Datos de usuario no válidos", details={"errors": e.errors()}
            ) from e
        return token, user

    def _reset(self) -> None:
        self._session = None
        self.state = SessionState.UNAUTHENTICATED
        set_user_id(None)

    def _run_sign_out_hooks(self) -> None:
        for hook in self._sign_out_hooks:
            hook()
