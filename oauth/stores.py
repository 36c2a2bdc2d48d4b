"""In-memory stores for OAuth state.

Pending authorizations, authorization codes and refresh-token records are
kept in volatile, time-bounded maps. Every read compares the stored expiry
against the clock and drops expired entries on the spot, so nothing depends
on a background sweep. Each map has its own lock; operations spanning two
maps (consume a code, then create a refresh token) are not atomic.

Access tokens are JWTs (oauth/jwt_utils.py) and are never stored.
"""

import logging
import secrets
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

from oauth.models import AuthorizationCode, PendingAuthorization, RefreshTokenRecord

logger = logging.getLogger(__name__)

V = TypeVar("V")

AUTHORIZATION_CODE_TIMEOUT_SECONDS = 10 * 60  # 10 minutes
PENDING_AUTHORIZATION_TIMEOUT_SECONDS = 10 * 60
REFRESH_TOKEN_TIMEOUT_SECONDS = 30 * 24 * 60 * 60  # 30 days


def generate_key() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


class ExpiringStore(Generic[V]):
    """A map whose entries expire after a per-entry TTL.

    This is the whole storage interface the flow controller relies on
    (put / get / take / delete with expiry), so a durable backend can replace
    it without touching oauth/flow.py.
    """

    def __init__(self, name: str, clock: Callable[[], float] = time.time):
        self.name = name
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: V, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            return self._get_locked(key)

    def take(self, key: str) -> Optional[V]:
        """Return the entry and delete it in the same critical section."""
        with self._lock:
            value = self._get_locked(key)
            self._entries.pop(key, None)
            return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"[STORE] Purged {len(expired)} expired {self.name} entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _get_locked(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug(f"[STORE] Dropped expired {self.name} entry")
            return None
        return value


class AuthorizationStore:
    """Owns pending authorizations, authorization codes and refresh tokens."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        pending_ttl: float = PENDING_AUTHORIZATION_TIMEOUT_SECONDS,
        code_ttl: float = AUTHORIZATION_CODE_TIMEOUT_SECONDS,
        refresh_ttl: float = REFRESH_TOKEN_TIMEOUT_SECONDS,
    ):
        self.pending: ExpiringStore[PendingAuthorization] = ExpiringStore("pending", clock)
        self.codes: ExpiringStore[AuthorizationCode] = ExpiringStore("code", clock)
        self.refresh_tokens: ExpiringStore[RefreshTokenRecord] = ExpiringStore("refresh", clock)
        self.pending_ttl = pending_ttl
        self.code_ttl = code_ttl
        self.refresh_ttl = refresh_ttl

    # Pending authorizations (keyed by an internal handle)

    def create_pending(self, entry: PendingAuthorization) -> str:
        handle = generate_key()
        self.pending.put(handle, entry, self.pending_ttl)
        return handle

    def take_pending(self, handle: str) -> Optional[PendingAuthorization]:
        return self.pending.take(handle)

    # Authorization codes (single use)

    def issue_code(self, entry: AuthorizationCode) -> str:
        code = generate_key()
        self.codes.put(code, entry, self.code_ttl)
        return code

    def consume_code(self, code: str) -> Optional[AuthorizationCode]:
        return self.codes.take(code)

    # Refresh tokens (reusable until expiry)

    def create_refresh(self, entry: RefreshTokenRecord) -> str:
        token = generate_key()
        self.refresh_tokens.put(token, entry, self.refresh_ttl)
        return token

    def lookup_refresh(self, token: str) -> Optional[RefreshTokenRecord]:
        return self.refresh_tokens.get(token)

    def purge_expired(self) -> int:
        return (
            self.pending.purge_expired()
            + self.codes.purge_expired()
            + self.refresh_tokens.purge_expired()
        )
