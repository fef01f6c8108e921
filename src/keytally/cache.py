import threading
import time
from typing import Callable, Iterable

# entries live for 24 hours by default
DEFAULT_MAX_AGE_SECONDS = 24 * 3600


class SecretCache:
    """
    SecretCache: Is a thread-safe, time-bounded cache of full secrets
    keyed by credential id.

    Entries older than max_age are dropped lazily on get() and in bulk
    via evict(). The clock is injectable so expiry can be tested
    without sleeping.
    """

    def __init__(
        self,
        max_age_seconds: "float" = DEFAULT_MAX_AGE_SECONDS,
        clock: "Callable[[], float]" = time.monotonic,
    ) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._entries: "dict[str, tuple[str, float]]" = {}
        self._max_age = max_age_seconds
        self._clock = clock

    def __len__(self) -> "int":
        with self._lock:
            return len(self._entries)

    def __contains__(self, credential_id: "object") -> "bool":
        return isinstance(credential_id, str) and self.get(credential_id) is not None

    def set(self, credential_id: "str", secret: "str") -> "None":
        with self._lock:
            self._entries[credential_id] = (secret, self._clock())

    def set_many(self, entries: "Iterable[tuple[str, str]]") -> "None":
        now = self._clock()
        with self._lock:
            for credential_id, secret in entries:
                self._entries[credential_id] = (secret, now)

    def get(self, credential_id: "str") -> "str | None":
        """
        returns the cached secret, or None when missing or expired.
        """
        with self._lock:
            entry = self._entries.get(credential_id)
            if entry is None:
                return None

            secret, stored_at = entry
            if self._clock() - stored_at > self._max_age:
                del self._entries[credential_id]
                return None
            return secret

    def discard(self, credential_id: "str") -> "None":
        with self._lock:
            self._entries.pop(credential_id, None)

    def evict(self, max_age_seconds: "float | None" = None) -> "int":
        """
        removes all entries older than max_age_seconds (the cache's
        own max age when omitted). Returns the number of evicted entries.
        """
        max_age = self._max_age if max_age_seconds is None else max_age_seconds
        cutoff = self._clock() - max_age
        with self._lock:
            to_remove = [k for k, (_, ts) in self._entries.items() if ts < cutoff]
            for k in to_remove:
                del self._entries[k]
            return len(to_remove)
