"""In-memory TTL cache for GET responses."""

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from salon_booking.utils.errors import NotFoundError
from salon_booking.utils.logging import get_logger

logger = get_logger("response_cache")

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    """A cached response payload."""

    key: str
    payload: Any
    timestamp: float


class ResponseCache:
    """TTL-bounded cache in front of every GET request.

    This cache handles:
    - Serving fresh entries without calling the fetcher
    - Forced refresh and substring-pattern invalidation
    - The user-by-id policy: always refetched, and a placeholder record on 404
    - An LRU cap so memory stays bounded
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: Optional[int] = 512,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Default freshness window.
            max_entries: Maximum number of entries kept; ``None`` disables the cap.
            clock: Monotonic clock in seconds.
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @staticmethod
    def build_key(url: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Cache key: URL plus the serialized query parameters."""
        return f"{url}?{json.dumps(params or {}, sort_keys=True, default=str)}"

    @staticmethod
    def is_user_endpoint(url: str) -> bool:
        """Requests for a user by id, excluding the caller's own profile."""
        return "/users/" in url and "/users/me" not in url

    @staticmethod
    def fallback_user(url: str) -> Dict[str, Any]:
        """Minimal user record substituted for a missing foreign user."""
        user_id: Any = url.split("?")[0].rstrip("/").split("/")[-1]
        if user_id.isdigit():
            user_id = int(user_id)
        return {"id": user_id, "name": "Usuario", "email": "", "role": "user"}

    async def get(
        self,
        url: str,
        fetcher: Fetcher,
        params: Optional[Dict[str, Any]] = None,
        *,
        ttl_seconds: Optional[float] = None,
        force_refresh: bool = False,
        allow_fallback: bool = True,
    ) -> Any:
        """Return a fresh cached payload or fetch, store and return a new one.

        Args:
            url: Request path; part of the key and matched by ``invalidate``.
            fetcher: Coroutine function performing the request.
            params: Query parameters; part of the key.
            ttl_seconds: Override of the default freshness window.
            force_refresh: Ignore any cached entry.
            allow_fallback: Substitute a placeholder when a user lookup 404s.

        Returns:
            The response payload.
        """
        key = self.build_key(url, params)
        user_endpoint = self.is_user_endpoint(url)
        if user_endpoint:
            # The backend serves stale or absent user data unless asked directly
            force_refresh = True

        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if not force_refresh:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.timestamp < ttl:
                self._entries.move_to_end(key)
                logger.debug(f"Using cached data for {key}")
                return entry.payload

        try:
            payload = await fetcher()
        except NotFoundError:
            if not (user_endpoint and allow_fallback):
                raise
            logger.warning(f"User endpoint 404 for {url}, using fallback record")
            payload = self.fallback_user(url)

        self._store(key, payload)
        return payload

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Drop every entry whose key contains ``pattern``; no pattern drops all.

        Returns:
            Number of entries removed.
        """
        if pattern is None:
            removed = len(self._entries)
            self._entries.clear()
            logger.debug("Cleared entire response cache")
            return removed

        keys = [key for key in self._entries if pattern in key]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"Cleared {len(keys)} cache entries matching {pattern!r}")
        return len(keys)

    def purge_expired(self, ttl_seconds: Optional[float] = None) -> int:
        """Remove entries older than the freshness window."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp >= ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _store(self, key: str, payload: Any) -> None:
        self._entries[key] = CacheEntry(key=key, payload=payload, timestamp=self._clock())
        self._entries.move_to_end(key)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")
