"""
Rate limiting for the login code endpoints.

A 6-digit code is guessable by brute force, so /send-code and /verify-code
are throttled per client IP. In-memory storage: one process, one window.
"""
import time
import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from stockbot.core.config import settings

logger = logging.getLogger(__name__)

LIMITED_PATHS = ("/send-code", "/verify-code")


class RateLimiter:
    """In-memory rate limiter with sliding window."""

    def __init__(self, requests: int = 20, window: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            requests: Maximum requests allowed in window
            window: Time window in seconds
            clock: Time source, replaceable in tests
        """
        self.requests = requests
        self.window = window
        self.clock = clock
        self.clients: Dict[str, List[float]] = defaultdict(list)
        self.last_cleanup = clock()

    def is_allowed(self, client_id: str) -> Tuple[bool, int]:
        """
        Check if client is allowed to make request.

        Returns:
            (allowed, remaining)
        """
        now = self.clock()

        if now - self.last_cleanup > 300:
            self._cleanup(now)
            self.last_cleanup = now

        cutoff = now - self.window
        timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]
        self.clients[client_id] = timestamps

        if len(timestamps) >= self.requests:
            return False, 0
        timestamps.append(now)
        return True, self.requests - len(timestamps)

    def _cleanup(self, now: float):
        """Remove expired entries to prevent memory bloat."""
        cutoff = now - self.window
        for client_id in list(self.clients.keys()):
            timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]
            if timestamps:
                self.clients[client_id] = timestamps
            else:
                del self.clients[client_id]

        logger.info(f"Rate limiter cleanup: {len(self.clients)} active clients")


# Global rate limiter instance
rate_limiter = RateLimiter(
    requests=settings.RATE_LIMIT_REQUESTS,
    window=settings.RATE_LIMIT_WINDOW_SECONDS,
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies a RateLimiter to the login code endpoints only."""

    def __init__(self, app, limiter: RateLimiter = None, paths: Iterable[str] = LIMITED_PATHS):
        super().__init__(app)
        self.limiter = limiter or rate_limiter
        self.paths = tuple(paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path not in self.paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        allowed, remaining = self.limiter.is_allowed(f"ip:{client_ip}")

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for ip:{client_ip} on {request.method} {request.url.path}"
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"success": False, "error": "Too many requests. Try again later."},
                headers={
                    "Retry-After": str(self.limiter.window),
                    "X-RateLimit-Limit": str(self.limiter.requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limiter.requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
