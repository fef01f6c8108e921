import secrets
import threading
import time
import uuid
from typing import Callable

# sessions stay valid for 7 days
SESSION_TTL_SECONDS = 7 * 24 * 3600


class SessionManager:
    """
    SessionManager guards the management API behind a single admin
    password. When no password is configured every request is allowed.
    """

    def __init__(
        self,
        admin_password: "str" = "",
        ttl_seconds: "int" = SESSION_TTL_SECONDS,
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._password = admin_password
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock: "threading.Lock" = threading.Lock()
        # session id -> expiry timestamp
        self._sessions: "dict[str, float]" = {}

    @property
    def enabled(self) -> "bool":
        return bool(self._password)

    @property
    def ttl_seconds(self) -> "int":
        return self._ttl

    def check_password(self, password: "object") -> "bool":
        if not self.enabled or not isinstance(password, str):
            return False
        return secrets.compare_digest(password.encode(), self._password.encode())

    def create(self) -> "str":
        """
        issues a new session id, dropping sessions that expired
        without being presented again.
        """
        session_id = str(uuid.uuid4())
        now = self._clock()
        with self._lock:
            expired = [k for k, expires_at in self._sessions.items() if now > expires_at]
            for k in expired:
                del self._sessions[k]
            self._sessions[session_id] = now + self._ttl
        return session_id

    def __len__(self) -> "int":
        with self._lock:
            return len(self._sessions)

    def validate(self, session_id: "str | None") -> "bool":
        """
        checks a session id, dropping it once expired.
        """
        if not self.enabled:
            return True
        if not session_id:
            return False

        with self._lock:
            expires_at = self._sessions.get(session_id)
            if expires_at is None:
                return False
            if self._clock() > expires_at:
                del self._sessions[session_id]
                return False
            return True
