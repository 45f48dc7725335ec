"""Per-feed failure tracking with exponential backoff."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class FeedState:
    consecutive_failures: int = 0
    suspended_until: Optional[float] = None
    last_error: Optional[str] = None


class FeedHealth:
    """Suspend feeds that keep failing instead of hitting them every tick.

    A feed is suspended once it reaches ``failure_threshold`` consecutive
    failures. Each further failure doubles the suspension, up to
    ``max_backoff`` seconds. The first fetch after a suspension expires acts as
    the health probe: success clears the record, failure extends the backoff.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        base_backoff: float = 300.0,
        max_backoff: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1.")
        self.failure_threshold = failure_threshold
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._clock = clock
        self._feeds: Dict[str, FeedState] = {}
        # Fetches record outcomes from worker threads.
        self._lock = threading.Lock()

    def is_suspended(self, url: str) -> bool:
        with self._lock:
            state = self._feeds.get(url)
            if state is None or state.suspended_until is None:
                return False
            return self._clock() < state.suspended_until

    def record_success(self, url: str) -> None:
        with self._lock:
            state = self._feeds.pop(url, None)
        if state and state.consecutive_failures >= self.failure_threshold:
            logger.info(
                "Feed %s recovered after %d failures", url, state.consecutive_failures
            )

    def record_failure(self, url: str, error: str) -> None:
        with self._lock:
            state = self._feeds.setdefault(url, FeedState())
            state.consecutive_failures += 1
            state.last_error = error
            failures = state.consecutive_failures

            over = failures - self.failure_threshold
            if over < 0:
                return

            delay = min(self.base_backoff * (2**over), self.max_backoff)
            state.suspended_until = self._clock() + delay
        logger.warning(
            "Suspending feed %s for %.0fs after %d consecutive failures",
            url,
            delay,
            failures,
        )

    def snapshot(self) -> Dict[str, dict]:
        """Return failing feeds with their failure count and remaining backoff."""
        with self._lock:
            now = self._clock()
            report = {}
            for url, state in list(self._feeds.items()):
                remaining = 0.0
                if state.suspended_until is not None:
                    remaining = max(0.0, state.suspended_until - now)
                report[url] = {
                    "failures": state.consecutive_failures,
                    "suspended_for": remaining,
                    "last_error": state.last_error,
                }
        return report
