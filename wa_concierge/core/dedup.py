"""
In-memory deduplication of inbound webhook events.
No Redis, no persistence - message id tracking with per-id TTL and
two coarse safety nets that keep memory bounded.
"""
import logging
import time
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class DedupCache:
    """
    Admits each event id once per TTL window.

    Besides per-id expiry the whole set is dropped at once when it reaches
    ``max_entries`` and, regardless of size, every ``clear_interval`` seconds.
    An id dropped by one of those clears can be admitted again before its own
    TTL has elapsed.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 10000,
        clear_interval: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._seen: Dict[str, float] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clear_interval = clear_interval
        self._clock = clock
        self._last_full_clear = clock()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        expires_at = self._seen.get(event_id)
        return expires_at is not None and expires_at > self._clock()

    def _cleanup_expired(self, now: float):
        """Remove expired ids from memory."""
        expired = [eid for eid, expires_at in self._seen.items() if expires_at <= now]
        for eid in expired:
            self._seen.pop(eid, None)

    def _clear(self, reason: str, now: float):
        logger.info("DEDUP|full_clear|reason=%s|dropped=%d", reason, len(self._seen))
        self._seen.clear()
        self._last_full_clear = now

    def admit_once(self, event_id: str) -> bool:
        """
        Returns True the first time an id is seen, False for duplicates.
        """
        now = self._clock()

        if now - self._last_full_clear >= self._clear_interval:
            self._clear("interval", now)

        expires_at = self._seen.get(event_id)
        if expires_at is not None:
            if expires_at > now:
                return False
            self._seen.pop(event_id, None)

        if len(self._seen) >= self._max_entries:
            self._cleanup_expired(now)
            if len(self._seen) >= self._max_entries:
                self._clear("max_entries", now)

        self._seen[event_id] = now + self._ttl
        return True
