import math
import time
from typing import Callable, Dict, Tuple

from fastapi import Request

from app.core.exceptions import RateLimitExceededException
from app.core.logging import get_logger

logger = get_logger(__name__)


def client_ip(request: Request) -> str:
    # Behind a reverse proxy, prefer the first X-Forwarded-For hop.
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class FixedWindowRateLimiter:
    """In-process fixed-window counter keyed by client address."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._counts: Dict[Tuple[str, int], int] = {}

    def check(self, request: Request) -> None:
        """Count the request, raising 429 once the client exceeds the window budget."""
        if self.max_requests <= 0:
            return

        now = self._clock()
        window = int(now // self.window_seconds)
        self._prune(window)

        key = (client_ip(request), window)
        self._counts[key] = self._counts.get(key, 0) + 1
        if self._counts[key] > self.max_requests:
            retry_after = max(1, math.ceil((window + 1) * self.window_seconds - now))
            logger.warning(f"Rate limit '{self.name}' exceeded for {key[0]}, retry after {retry_after}s")
            raise RateLimitExceededException(retry_after)

    def reset(self) -> None:
        self._counts.clear()

    def _prune(self, current_window: int) -> None:
        stale = [key for key in self._counts if key[1] < current_window]
        for key in stale:
            del self._counts[key]
