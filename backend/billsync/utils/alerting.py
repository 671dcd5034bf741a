import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600

# Per provider: three broken scrapes in an hour means an adapter needs fixing.
SYNC_ALERT_THRESHOLDS = {
    "SYNC_FAILED": 10,
    "SCRAPER_BROKEN": 3,
    "AUTOMATION_TRANSPORT_FAILED": 5,
    "CREDENTIAL_DECRYPT_FAILED": 1,
}


class SyncAlertTracker:
    """Sliding-window counters of sync audit actions, bucketed by provider."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._events: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def _expire(self, events: deque[float], now: float) -> None:
        horizon = now - self._window_seconds
        while events and events[0] <= horizon:
            events.popleft()

    def record(self, action: str, metadata: Optional[dict] = None) -> bool:
        """Count *action*; ``True`` when this occurrence hit the threshold."""
        limit = self._thresholds.get(action)
        if limit is None:
            return False
        provider_id = str((metadata or {}).get("provider_id") or "-")
        now = time.monotonic()
        with self._lock:
            events = self._events.setdefault((action, provider_id), deque())
            self._expire(events, now)
            events.append(now)
            seen = len(events)
        if seen % limit:
            return False
        logger.warning(
            "ALERT audit_action=%s provider=%s count=%s window_seconds=%s sync_job_id=%s",
            action,
            provider_id,
            seen,
            self._window_seconds,
            (metadata or {}).get("sync_job_id"),
        )
        return True

    def count(self, action: str, provider_id: Optional[str] = None) -> int:
        now = time.monotonic()
        with self._lock:
            total = 0
            for (name, provider), events in self._events.items():
                if name != action or (provider_id is not None and provider != provider_id):
                    continue
                self._expire(events, now)
                total += len(events)
            return total

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


alert_tracker = SyncAlertTracker(WINDOW_SECONDS, SYNC_ALERT_THRESHOLDS)
