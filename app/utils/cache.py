"""In-memory TTL cache for courier auth tokens, keyed per tenant."""
import threading
import time
from typing import Callable, Dict, Optional, Tuple

TokenKey = Tuple[str, str]  # (client_id, username)


class TokenCache:
    """
    Courier bearer tokens, one entry per (client_id, username).

    Several tenants can hold valid sessions at the same time, so there is
    no global slot: a lookup only ever sees the entry stored under its own
    credential identity. The lock guards dict access only, never a login.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[TokenKey, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(client_id: str, username: str) -> TokenKey:
        return (str(client_id), str(username))

    def get(self, client_id: str, username: str) -> Optional[str]:
        """Return the cached token if still valid, else None."""
        key = self.make_key(client_id, username)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        expires, token = entry
        if self._clock() >= expires:
            return None
        return token

    def set(self, client_id: str, username: str, token: str) -> None:
        """Store (or replace) the token for one tenant."""
        key = self.make_key(client_id, username)
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, token)

    def invalidate(self, client_id: str, username: str) -> None:
        with self._lock:
            self._entries.pop(self.make_key(client_id, username), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_default_cache: Optional[TokenCache] = None


def get_token_cache() -> TokenCache:
    """Process-wide cache shared by every connector instance."""
    global _default_cache
    if _default_cache is None:
        from app.config import get_settings
        _default_cache = TokenCache(ttl_seconds=get_settings().fancourier_token_ttl_hours * 3600)
    return _default_cache
