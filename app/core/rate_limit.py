"""Per-key fixed-window rate limiting for limits that depend on request data.

slowapi covers the global per-IP limit; chat sessions, webhooks and public
test links need limits keyed on their own ids with limits read from the
database, so they go through the same ``limits`` backend directly.
"""
import math
import time
from dataclasses import dataclass
from typing import Dict

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

_storage = MemoryStorage()
_limiter = FixedWindowRateLimiter(_storage)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int


def check_rate_limit(key: str, limit: int, window_seconds: int = 60) -> RateLimitResult:
    """Count one hit against key and report whether it fits in the current window."""
    item = RateLimitItemPerSecond(limit, window_seconds)
    allowed = _limiter.hit(item, "ai-spot", key)
    stats = _limiter.get_window_stats(item, "ai-spot", key)
    retry_after = 0 if allowed else max(1, math.ceil(stats.reset_time - time.time()))
    return RateLimitResult(
        allowed=allowed,
        limit=limit,
        remaining=max(0, stats.remaining),
        reset_at=stats.reset_time,
        retry_after=retry_after,
    )


def reset_rate_limits() -> None:
    _storage.reset()


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(result.reset_at)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def get_client_ip(request) -> str:
    """First forwarded address, then the proxy headers, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip") or request.headers.get("cf-connecting-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"
