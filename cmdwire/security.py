"""Input sanitization and per-actor rate limiting for cmdwire."""

import time
import unicodedata
from collections import defaultdict
from typing import Callable, Dict, List

import structlog

logger = structlog.get_logger("cmdwire.security")

_BIDI_CHARS = frozenset("\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069")

_CLEANUP_INTERVAL = 300  # Prune stale actors every 5 minutes


def sanitize_input(text: str, max_length: int = 2000) -> str:
    """Strip control and bidi override characters and cap the length."""
    # Keep newline, tab and carriage return; they separate arguments
    text = "".join(
        ch for ch in text
        if ch in ("\n", "\r", "\t") or not unicodedata.category(ch).startswith("C")
    )
    text = "".join(ch for ch in text if ch not in _BIDI_CHARS)
    if len(text) > max_length:
        text = text[:max_length]
    return text


class RateLimiter:
    """Sliding-window request counter keyed by actor id.

    Dispatches run on one event loop, so check() is never re-entered
    concurrently and needs no lock.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._last_cleanup = clock()

    def check(self, actor_id: str) -> bool:
        """Record a request. Returns False if the actor is over the limit."""
        now = self._clock()
        window_start = now - self.window_seconds

        self._requests[actor_id] = [
            ts for ts in self._requests[actor_id] if ts > window_start
        ]

        if now - self._last_cleanup > _CLEANUP_INTERVAL:
            self._last_cleanup = now
            stale = [
                key for key, stamps in self._requests.items()
                if not stamps or stamps[-1] < window_start
            ]
            for key in stale:
                del self._requests[key]

        if len(self._requests[actor_id]) >= self.max_requests:
            logger.warning(
                "rate_limit_exceeded",
                actor=actor_id,
                requests_in_window=len(self._requests[actor_id]),
            )
            return False

        self._requests[actor_id].append(now)
        return True

    def reset(self) -> None:
        self._requests.clear()
