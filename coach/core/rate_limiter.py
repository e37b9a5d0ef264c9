"""
Rate Limiter - Control how often a user may start a conversation turn.

Each turn triggers two LLM streams, so the limit guards vendor spend as well
as abuse. State is in-process; multiple API instances each keep their own
window.
"""
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from coach.core.logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding window rate limiter keyed by an identifier (user id).

    Example:
        >>> limiter = RateLimiter(requests_per_minute=30)
        >>> limiter.is_allowed("user-123")
        (True, 29)
    """

    def __init__(
        self,
        requests_per_minute: int = 30,
        window_seconds: float = 60.0,
        cleanup_interval_seconds: float = 300.0,
    ):
        self.limit = requests_per_minute
        self.window = window_seconds
        self.cleanup_interval = cleanup_interval_seconds

        self._requests: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.monotonic()

        logger.info(f"RateLimiter initialized: {requests_per_minute} requests/minute")

    def is_allowed(self, identifier: str) -> Tuple[bool, int]:
        """
        Record a request for the identifier if it fits in the window.

        Returns:
            Tuple of (is_allowed, remaining_requests)
        """
        now = time.monotonic()
        with self._lock:
            self._maybe_cleanup(now)

            stamps = self._requests.setdefault(identifier, deque())
            self._expire(stamps, now)

            if len(stamps) >= self.limit:
                logger.warning(f"Rate limit exceeded for: {identifier[:8]}...")
                return False, 0

            stamps.append(now)
            return True, self.limit - len(stamps)

    def retry_after(self, identifier: str) -> int:
        """Seconds until the oldest request in the window expires."""
        now = time.monotonic()
        with self._lock:
            stamps = self._requests.get(identifier)
            if not stamps:
                return 0
            return max(1, int(stamps[0] + self.window - now) + 1)

    def _expire(self, stamps: Deque[float], now: float) -> None:
        cutoff = now - self.window
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

    def _maybe_cleanup(self, now: float) -> None:
        """Drop identifiers with no requests left in the window."""
        if now - self._last_cleanup < self.cleanup_interval:
            return

        for identifier in list(self._requests):
            stamps = self._requests[identifier]
            self._expire(stamps, now)
            if not stamps:
                del self._requests[identifier]

        self._last_cleanup = now
        logger.debug(f"Rate limiter cleanup: {len(self._requests)} active identifiers")


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        from coach.core.config import get_settings
        _rate_limiter = RateLimiter(
            requests_per_minute=get_settings().rate_limit_per_minute
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Forget all recorded requests (used by tests)."""
    global _rate_limiter
    _rate_limiter = None
