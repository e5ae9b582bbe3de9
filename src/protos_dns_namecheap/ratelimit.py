"""Request budget for the Namecheap API."""

import time
from collections import deque
from threading import Lock


class RateLimiter:
    """Sliding-window rate limiter enforcing several budgets at once.

    Namecheap throttles API users per minute and per hour; a request is only
    sent once it fits into every window.
    """

    def __init__(self, requests_per_minute: int = 20, requests_per_hour: int = 700) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests allowed in any 60 second window
            requests_per_hour: Maximum requests allowed in any 3600 second window
        """
        self.limits: list[tuple[float, int]] = [
            (60.0, requests_per_minute),
            (3600.0, requests_per_hour),
        ]
        self._sent: deque[float] = deque()
        self._lock = Lock()

    def _required_wait(self, now: float) -> float:
        wait = 0.0
        for window, limit in self.limits:
            in_window = [t for t in self._sent if now - t < window]
            if len(in_window) >= limit:
                # The oldest request in the window has to age out first
                wait = max(wait, in_window[-limit] + window - now)
        return wait

    def wait(self) -> None:
        """Block until a request fits into every window, then record it."""
        with self._lock:
            now = time.monotonic()
            delay = self._required_wait(now)
            if delay > 0:
                time.sleep(delay)
                now = time.monotonic()

            self._sent.append(now)
            longest = max(window for window, _ in self.limits)
            while self._sent and now - self._sent[0] >= longest:
                self._sent.popleft()
