"""Per-route request throttling backed by Redis sorted sets.

Each rule caps how many requests one caller may make to a path prefix in a
rolling window. Callers are told apart by client IP, or for ``user`` rules
by the authenticated user, then the guest cart session, then the IP.
"""

import secrets
import time
from dataclasses import dataclass
from typing import Literal, Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from beatbloom.api.responses import error_body
from beatbloom.config import settings

log = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitRule:
    prefix: str
    limit: int
    window_seconds: int
    scope: Literal["ip", "user"] = "ip"
    method: Optional[str] = None

    def matches(self, path: str, method: str) -> bool:
        if not path.startswith(self.prefix):
            return False
        return self.method is None or self.method.upper() == method.upper()

    def bucket(self, caller: str) -> str:
        return f"ratelimit:{self.prefix}:{caller}"


# First match wins, so narrower prefixes go first
RATE_LIMIT_RULES: list[RateLimitRule] = [
    RateLimitRule("/api/v1/auth/register", limit=3, window_seconds=3600),
    RateLimitRule("/api/v1/auth/login", limit=5, window_seconds=900),
    RateLimitRule("/api/v1/auth/refresh", limit=30, window_seconds=900),
    RateLimitRule("/api/v1/orders", limit=10, window_seconds=3600, scope="user", method="POST"),
    RateLimitRule("/api/v1/cart", limit=120, window_seconds=60, scope="user"),
    RateLimitRule("/api/v1/payments/webhook", limit=300, window_seconds=60),
    RateLimitRule("/api/v1/beats", limit=100, window_seconds=60),
]

UNTHROTTLED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})


def find_rule(path: str, method: str) -> Optional[RateLimitRule]:
    return next((r for r in RATE_LIMIT_RULES if r.matches(path, method)), None)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def caller_identity(request: Request, rule: RateLimitRule) -> str:
    if rule.scope == "ip":
        return client_ip(request)
    user_id = getattr(request.state, "user_id", None)
    return user_id or request.headers.get("x-session-id") or client_ip(request)


@dataclass
class WindowUsage:
    """Requests counted in the current window, including this one."""

    count: int
    rule: RateLimitRule
    reset_at: int

    @property
    def remaining(self) -> int:
        return max(0, self.rule.limit - self.count)

    @property
    def exceeded(self) -> bool:
        return self.count > self.rule.limit

    def apply_headers(self, response: Response) -> Response:
        response.headers["X-RateLimit-Limit"] = str(self.rule.limit)
        response.headers["X-RateLimit-Remaining"] = str(self.remaining)
        response.headers["X-RateLimit-Reset"] = str(self.reset_at)
        return response


class SlidingWindowLimiter:
    """Counts hits per bucket in a Redis sorted set scored by timestamp."""

    def __init__(self, redis, clock=time.time):
        self.redis = redis
        self._clock = clock

    async def hit(self, rule: RateLimitRule, caller: str) -> WindowUsage:
        now = int(self._clock())
        key = rule.bucket(caller)

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - rule.window_seconds)
        pipe.zadd(key, {f"{now}:{secrets.token_hex(4)}": now})
        pipe.zcard(key)
        pipe.expire(key, rule.window_seconds)
        _, _, count, _ = await pipe.execute()

        return WindowUsage(count=count, rule=rule, reset_at=now + rule.window_seconds)


def too_many_requests(usage: WindowUsage) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content=error_body("Too many requests. Please try again later."),
    )
    response.headers["Retry-After"] = str(usage.rule.window_seconds)
    return usage.apply_headers(response)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle requests matching a rule; fail open when Redis is unavailable."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or path in UNTHROTTLED_PATHS:
            return await call_next(request)

        rule = find_rule(path, request.method)
        if rule is None:
            return await call_next(request)

        caller = caller_identity(request, rule)
        try:
            usage = await SlidingWindowLimiter(request.app.state.redis).hit(rule, caller)
        except Exception as exc:
            log.warning("rate_limit_redis_error", error=str(exc), path=path)
            return await call_next(request)

        if usage.exceeded:
            log.warning(
                "rate_limit_exceeded",
                path=path,
                caller=caller,
                limit=rule.limit,
                count=usage.count,
            )
            return too_many_requests(usage)

        return usage.apply_headers(await call_next(request))
