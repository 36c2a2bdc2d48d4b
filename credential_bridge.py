"""Session-to-credential bindings.

Maps an MCP transport session id to the Spotify credentials obtained through
the OAuth flow. Tool adapters look credentials up by the session id of the
request they are serving.

In single-session mode (SINGLE_SESSION_MODE=true) the most recently bound
session is also the "current" one, and lookups without a session id fall
back to it. That mode suits a personal server with exactly one client; with
several clients connected, keep it off so logins never overwrite each other.
"""

import logging
import threading
from typing import Optional

from oauth.models import DelegatedCredentials, SessionAuthBinding

logger = logging.getLogger(__name__)


class CredentialBridge:
    def __init__(self, single_session: bool = False):
        self.single_session = single_session
        self._bindings: dict[str, SessionAuthBinding] = {}
        self._current_session: Optional[str] = None
        self._current: Optional[SessionAuthBinding] = None
        self._lock = threading.Lock()

    def bind(self, session_id: str, binding: SessionAuthBinding) -> None:
        with self._lock:
            self._bindings[session_id] = binding
            self._current_session = session_id
            self._current = binding
        logger.info(f"[SESSION] Credentials bound to session {session_id} (user {binding.user_id})")

    def get(self, session_id: str) -> Optional[SessionAuthBinding]:
        with self._lock:
            return self._bindings.get(session_id)

    def current_credentials(self, session_id: Optional[str] = None) -> Optional[SessionAuthBinding]:
        """Credentials for a session.

        Without single-session mode a session id is required and only that
        session's binding is returned.
        """
        with self._lock:
            if session_id is not None and session_id in self._bindings:
                return self._bindings[session_id]
            if self.single_session:
                return self._current
            return None

    def update(self, session_id: Optional[str], binding: SessionAuthBinding) -> None:
        """Replace a session's binding, e.g. after Spotify tokens were refreshed."""
        with self._lock:
            if session_id is None:
                if not self.single_session or self._current_session is None:
                    logger.warning("[SESSION] Credential update without a session id ignored")
                    return
                session_id = self._current_session
            if session_id not in self._bindings:
                logger.warning(f"[SESSION] Credential update for unknown session {session_id} ignored")
                return
            self._bindings[session_id] = binding
            if self._current_session == session_id:
                self._current = binding
        logger.info(f"[SESSION] Credentials updated for session {session_id}")

    def update_tokens(self, session_id: Optional[str], credentials: DelegatedCredentials) -> None:
        existing = self.current_credentials(session_id)
        if existing is None:
            return
        self.update(session_id, SessionAuthBinding(user_id=existing.user_id, credentials=credentials))

    def unbind(self, session_id: str) -> None:
        with self._lock:
            removed = self._bindings.pop(session_id, None)
            if self._current_session == session_id or not self._bindings:
                self._current_session = None
                self._current = None
        if removed:
            logger.info(f"[SESSION] Credentials removed for session {session_id}")

    def clear(self) -> None:
        with self._lock:
            count = len(self._bindings)
            self._bindings.clear()
            self._current_session = None
            self._current = None
        logger.info(f"[SESSION] Cleared {count} credential binding(s)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)
