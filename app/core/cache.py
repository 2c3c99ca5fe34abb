"""HTTP cache headers, ETags and a small in-process TTL cache."""
import functools
import hashlib
import json
import time
from typing import Any, Callable, Dict, Iterable, Optional

from cachetools import TLRUCache
from fastapi import Request, Response

CACHE_CONFIG: Dict[str, str] = {
    "no_cache": "no-store, no-cache, must-revalidate",
    "short": "private, s-maxage=30, stale-while-revalidate=15",
    "medium": "private, s-maxage=60, stale-while-revalidate=30",
    "long": "private, s-maxage=300, stale-while-revalidate=150",
    "public": "public, s-maxage=3600, stale-while-revalidate=1800",
    "immutable": "public, max-age=31536000, immutable",
}


def with_cache(response: Response, config: str = "medium") -> Response:
    """Set Cache-Control from a preset name, or use config verbatim when it is not a preset."""
    response.headers["Cache-Control"] = CACHE_CONFIG.get(config, config)
    return response


def with_cache_tags(response: Response, tags: Iterable[str]) -> Response:
    tags = list(tags)
    if tags:
        response.headers["Cache-Tag"] = ",".join(tags)
    return response


def conditional_cache(response: Response, cache_on_success: bool = True, cache_on_error: bool = False,
                      success_config: str = "medium", error_config: str = "no_cache") -> Response:
    is_success = 200 <= response.status_code < 300
    if is_success and cache_on_success:
        return with_cache(response, success_config)
    if not is_success and cache_on_error:
        return with_cache(response, error_config)
    return with_cache(response, "no_cache")


def dynamic_cache(response: Response, status: Optional[str] = None, is_static: bool = False) -> Response:
    if is_static:
        return with_cache(response, "public")
    if status in ("completed", "failed"):
        return with_cache(response, "long")
    if status in ("running", "pending"):
        return with_cache(response, "short")
    return with_cache(response, "medium")


def generate_etag(data: Any) -> str:
    content = data if isinstance(data, str) else json.dumps(data, sort_keys=True, default=str)
    return hashlib.md5(content.encode()).hexdigest()


def handle_conditional_request(request: Request, data: Any) -> Optional[Response]:
    """304 when the client already holds the current representation, else None."""
    etag = generate_etag(data)
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag, "Cache-Control": CACHE_CONFIG["medium"]})
    return None


def with_cache_strategy(response: Response, data: Any, strategy: str = "medium", tags: Iterable[str] = (),
                        etag: bool = False, dynamic: bool = False, status: Optional[str] = None) -> Response:
    if dynamic:
        dynamic_cache(response, status=status)
    else:
        with_cache(response, strategy)
    with_cache_tags(response, tags)
    if etag:
        response.headers["ETag"] = generate_etag(data)
    return response


class MemoryCache:
    """TTL cache where each entry may carry its own lifetime (seconds)."""

    def __init__(self, ttl: float = 60, maxsize: int = 1024):
        self.ttl = ttl
        self._cache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, value, now: now + value[1],
            timer=time.monotonic,
        )

    def get(self, key: str) -> Any:
        item = self._cache.get(key)
        return item[0] if item is not None else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._cache[key] = (value, self.ttl if ttl is None else ttl)

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)


memory_cache = MemoryCache()


def memoize(ttl: float = 60, key_func: Optional[Callable[..., str]] = None):
    """Cache a function's non-None results for ttl seconds, keyed by its arguments."""
    def decorator(func):
        cache = MemoryCache(ttl)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            key = key_func(*args, **kwargs) if key_func else json.dumps([args, kwargs], default=str, sort_keys=True)
            cached = cache.get(key)
            if cached is not None:
                return cached
            result = func(*args, **kwargs)
            if result is not None:
                cache.set(key, result)
            return result

        wrapper.cache = cache
        return wrapper
    return decorator
