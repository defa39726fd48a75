from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Optional


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(value.strip().lower().split())


class PostbackDeduplicator:
    """Suppresses repeated (subject, event type) postbacks inside a time window.

    A window of zero disables suppression entirely.
    """

    def __init__(
        self,
        window_seconds: float = 0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = max(0.0, float(window_seconds))
        self._clock = clock
        self._lock = Lock()
        self._last_sent: dict[tuple[str, str], float] = {}

    @property
    def enabled(self) -> bool:
        return self.window_seconds > 0

    def should_send(self, subject_id: str, event_type: str) -> bool:
        if not self.enabled:
            return True
        key = (subject_id, event_type)
        now = self._clock()
        with self._lock:
            last = self._last_sent.get(key)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last_sent[key] = now
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        expired = [key for key, sent in self._last_sent.items() if now - sent >= self.window_seconds]
        for key in expired:
            del self._last_sent[key]
