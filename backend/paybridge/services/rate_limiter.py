"""
Fixed-window rate limiting keyed by client IP.

Three independent windows are configured: general traffic, authentication,
and payment creation. Counters live in-process; a multi-worker deployment
gets one budget per worker.
"""
import time
from typing import Callable, Dict, Tuple
import logging

from ..config import Settings
from ..exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """
    Allows max_requests per key in each window_seconds window.

    The window starts at the first request for a key and resets once it
    has elapsed.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: int,
        message: str,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._clock = clock
        # key -> (window_start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> int:
        """
        Count one request for key.

        Returns:
            Remaining requests in the current window

        Raises:
            RateLimitExceededError: budget for this window is spent
        """
        now = self._clock()
        window_start, count = self._windows.get(key, (now, 0))

        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        if count >= self.max_requests:
            retry_after = max(1, int(window_start + self.window_seconds - now))
            logger.warning(f"Rate limit '{self.name}' exceeded for {key}")
            raise RateLimitExceededError(self.message, retry_after)

        self._windows[key] = (window_start, count + 1)
        self._prune(now)
        return self.max_requests - (count + 1)

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        # Drop expired windows once the table grows
        if len(self._windows) < 10_000:
            return
        expired = [key for key, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._windows[key]


def build_rate_limiters(app_settings: Settings) -> Dict[str, FixedWindowRateLimiter]:
    return {
        "general": FixedWindowRateLimiter(
            "general",
            app_settings.rate_limit_max_requests,
            app_settings.rate_limit_window_seconds,
            "Too many requests from this IP, please try again later.",
        ),
        "auth": FixedWindowRateLimiter(
            "auth",
            app_settings.auth_rate_limit_max_requests,
            app_settings.auth_rate_limit_window_seconds,
            "Too many authentication attempts, please try again later.",
        ),
        "payment": FixedWindowRateLimiter(
            "payment",
            app_settings.payment_rate_limit_max_requests,
            app_settings.payment_rate_limit_window_seconds,
            "Too many payment attempts, please try again later.",
        ),
    }
