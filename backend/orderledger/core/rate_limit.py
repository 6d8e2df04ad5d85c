"""
Rate Limiting Middleware

Caps login attempts and money-moving writes per caller. Counters live in
process memory, so each worker limits on its own.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from collections import defaultdict, deque
from typing import Deque, Dict, NamedTuple, Optional, Tuple
import threading
import time
import logging

from orderledger.core.config import settings

logger = logging.getLogger(__name__)


class RateLimitRule(NamedTuple):
    prefix: str
    limit: int
    window_seconds: int
    reads_too: bool = False


# First matching prefix wins
RULES = (
    RateLimitRule("/api/v1/auth/login", 5, 60, reads_too=True),
    RateLimitRule("/api/v1/auth/users", 10, 300),
    RateLimitRule("/api/v1/banking/transfers", 10, 60),
    RateLimitRule("/api/v1/payments", 30, 60),
    RateLimitRule("/api/v1/banking", 30, 60),
    RateLimitRule("/api/v1/orders", 60, 60),
)
DEFAULT_RULE = RateLimitRule("/api/", 100, 60)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def rule_for(method: str, path: str) -> Optional[RateLimitRule]:
    """The rule governing a request, or None when it is not limited"""
    for rule in RULES:
        if path.startswith(rule.prefix):
            if method in SAFE_METHODS and not rule.reads_too:
                return None
            return rule
    if method in SAFE_METHODS:
        return None
    return DEFAULT_RULE


def caller_key(request: Request) -> str:
    """Client address, narrowed by token when the caller is signed in"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        address = forwarded.split(",")[0].strip()
    else:
        address = request.client.host if request.client else "unknown"

    token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
    if not token:
        token = request.cookies.get("access_token", "")
    return f"{address}:{token[-12:] or 'anonymous'}"


class RateLimiter:
    """Sliding window of request timestamps per (rule, caller)"""

    sweep_interval = 60

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._hits: Dict[Tuple[str, int, str], Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self):
        """Number of (rule, caller) windows being tracked"""
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        # Drop callers whose newest hit has left its window
        idle = [
            window_key for window_key, hits in self._hits.items()
            if not hits or hits[-1] <= now - window_key[1]
        ]
        for window_key in idle:
            del self._hits[window_key]
        self._last_sweep = now

    def hit(self, rule: RateLimitRule, key: str) -> Tuple[bool, int, int]:
        """
        Count one request.

        Returns (allowed, remaining, retry_after_seconds).
        """
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)
            hits = self._hits[(rule.prefix, rule.window_seconds, key)]
            while hits and hits[0] <= now - rule.window_seconds:
                hits.popleft()

            if len(hits) >= rule.limit:
                retry_after = max(1, int(hits[0] + rule.window_seconds - now))
                return False, 0, retry_after

            hits.append(now)
            return True, rule.limit - len(hits), 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.limiter = limiter if limiter is not None else RateLimiter()

    async def dispatch(self, request: Request, call_next):
        rule = rule_for(request.method, request.url.path) if settings.RATE_LIMIT_ENABLED else None
        if rule is None:
            return await call_next(request)

        key = caller_key(request)
        allowed, remaining, retry_after = self.limiter.hit(rule, key)
        if not allowed:
            logger.warning(f"Rate limit hit on {rule.prefix} by {key}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Too many requests. Please try again later.",
                    "code": "RATE_LIMITED",
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(rule.limit),
                    "X-RateLimit-Remaining": "0",
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rule.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
