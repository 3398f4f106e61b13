"""
Rate Limiting Middleware
Prevents abuse by limiting requests per client and scope
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple
import logging

from fastapi import Request

from config import Config
from utils.exception_handler import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory sliding-window rate limiter"""

    def __init__(self, sweep_interval: int = 60):
        self._requests: Dict[Tuple[str, str], list] = {}  # (client, scope) -> [timestamp, ...]
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = time.time()
        self._longest_window = 0

    def __len__(self) -> int:
        return len(self._requests)

    def is_rate_limited(
        self,
        client_id: str,
        scope: str = "api",
        max_requests: int = 100,
        window_seconds: int = 60,
    ) -> Tuple[bool, Optional[int]]:
        """
        Check if a client is rate limited and record the request if not

        Returns:
            Tuple of (is_limited, seconds_until_reset)
        """
        now = time.time()
        cutoff = now - window_seconds
        key = (client_id, scope)

        with self._lock:
            self._longest_window = max(self._longest_window, window_seconds)
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)

            recent = [req_time for req_time in self._requests.get(key, []) if req_time > cutoff]

            if len(recent) >= max_requests:
                self._requests[key] = recent
                reset_time = int(min(recent) + window_seconds - now)
                return True, max(1, reset_time)

            recent.append(now)
            self._requests[key] = recent
            return False, None

    def _sweep(self, now: float):
        """Drop clients with no request inside the longest window in use"""
        cutoff = now - self._longest_window
        stale = [key for key, times in self._requests.items() if not times or times[-1] <= cutoff]
        for key in stale:
            del self._requests[key]
        self._last_sweep = now
        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} idle clients")

    def reset_client_limits(self, client_id: str):
        with self._lock:
            for key in [key for key in self._requests if key[0] == client_id]:
                del self._requests[key]

    def reset(self):
        with self._lock:
            self._requests.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


def client_key(request: Request) -> str:
    """Client address; bearer tokens are not verified yet at this point and cannot be trusted as identity"""
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def rate_limit(scope: str, max_requests: Optional[int] = None, window_seconds: Optional[int] = None) -> Callable:
    """
    FastAPI dependency factory for rate limiting routes

    Usage:
        @router.post("/deposit", dependencies=[Depends(rate_limit("payments"))])
    """

    def dependency(request: Request) -> None:
        if not Config.RATE_LIMIT_ENABLED:
            return
        limit = max_requests or RATE_LIMITS.get(scope, Config.API_RATE_LIMIT)
        window = window_seconds or Config.RATE_LIMIT_WINDOW_SECONDS
        key = client_key(request)

        is_limited, reset_time = rate_limiter.is_rate_limited(key, scope, limit, window)
        if is_limited:
            logger.warning(f"Rate limit exceeded for {key} on {scope} ({request.url.path})")
            raise RateLimitExceededError(
                f"Too many requests. Please wait {reset_time} seconds and try again.",
                retry_after=reset_time,
            )

    return dependency


# Requests per window for each scope
RATE_LIMITS = {
    "api": Config.API_RATE_LIMIT,
    "payments": Config.PAYMENT_RATE_LIMIT,
}
