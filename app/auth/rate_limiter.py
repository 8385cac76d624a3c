"""
Fixed-window request rate limiting.

Two stores share one interface:
- MemoryRateLimitStore: per-process dict, expired windows purged lazily
  (at most once per minute). Limits are per instance.
- RedisRateLimitStore: INCR + EXPIRE, shared across instances.

RATE_LIMIT_BACKEND selects the store. Endpoints opt in with
Depends(rate_limit("bucket", STRICT)).
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request, Response, status

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_seconds: int


STRICT = RateLimitConfig(limit=5, window_seconds=60)
STANDARD = RateLimitConfig(limit=30, window_seconds=60)
RELAXED = RateLimitConfig(limit=100, window_seconds=60)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


class MemoryRateLimitStore:
    CLEANUP_INTERVAL_SECONDS = 60

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def _cleanup(self, now: float):
        if now - self._last_cleanup < self.CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        expired = [key for key, (_, reset_at) in self._entries.items() if reset_at <= now]
        for key in expired:
            del self._entries[key]

    def hit(self, key: str, window_seconds: int) -> Tuple[int, float]:
        """Count one request. Returns (count in window, window reset time)."""
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            count, reset_at = self._entries.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._entries[key] = (count, reset_at)
            return count, reset_at

    def get(self, key: str) -> int:
        with self._lock:
            count, reset_at = self._entries.get(key, (0, 0.0))
            return count if reset_at > self._clock() else 0

    def reset(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore:
    def __init__(self, redis_client=None, clock: Callable[[], float] = time.time):
        if redis_client is None:
            from app.redis_client import get_redis_client
            redis_client = get_redis_client()
        self.redis = redis_client
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"rate_limit:{key}"

    def hit(self, key: str, window_seconds: int) -> Tuple[int, float]:
        redis_key = self._key(key)
        pipe = self.redis.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            # First hit in this window
            self.redis.expire(redis_key, window_seconds)
            ttl = window_seconds
        return int(count), self._clock() + ttl

    def get(self, key: str) -> int:
        value = self.redis.get(self._key(key))
        return int(value) if value else 0

    def reset(self, key: str):
        self.redis.delete(self._key(key))


class RateLimiter:
    def __init__(self, store):
        self.store = store

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        count, reset_at = self.store.hit(key, config.window_seconds)
        return RateLimitResult(
            allowed=count <= config.limit,
            limit=config.limit,
            remaining=max(config.limit - count, 0),
            reset=math.ceil(reset_at),
        )


class LoginAttemptLimiter:
    """Failed-login counter keyed by email, cleared on successful login."""

    def __init__(self, store, max_attempts: int, window_minutes: int):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_minutes * 60

    def _key(self, identifier: str) -> str:
        return f"login:{identifier.strip().lower()}"

    def is_blocked(self, identifier: str) -> bool:
        return self.store.get(self._key(identifier)) >= self.max_attempts

    def record_failed_attempt(self, identifier: str) -> int:
        count, _ = self.store.hit(self._key(identifier), self.window_seconds)
        return count

    def reset(self, identifier: str):
        self.store.reset(self._key(identifier))


def build_store():
    if settings.rate_limit_backend == "redis":
        return RedisRateLimitStore()
    return MemoryRateLimitStore()


_limiter: Optional[RateLimiter] = None
_login_limiter: Optional[LoginAttemptLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(build_store())
    return _limiter


def get_login_limiter() -> LoginAttemptLimiter:
    global _login_limiter
    if _login_limiter is None:
        _login_limiter = LoginAttemptLimiter(
            build_store(),
            max_attempts=settings.rate_limit_failed_logins,
            window_minutes=settings.rate_limit_window_minutes,
        )
    return _login_limiter


def reset_rate_limiters():
    """Drop the process-wide limiters (next use rebuilds them from settings)."""
    global _limiter, _login_limiter
    _limiter = None
    _login_limiter = None


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(bucket: str, config: RateLimitConfig = STANDARD):
    """Dependency factory: limit requests per client IP within a named bucket."""

    def dependency(request: Request, response: Response) -> RateLimitResult:
        client_ip = get_client_ip(request)
        result = get_rate_limiter().check(f"{bucket}:{client_ip}", config)
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_ip, bucket)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"error": "Too many requests. Please try again later.", "code": "RATE_LIMITED"},
                headers=result.headers(),
            )
        for name, value in result.headers().items():
            response.headers[name] = value
        return result

    return dependency
