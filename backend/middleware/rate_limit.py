"""
In-memory rate limiting for the storefront API.

Sliding-window counters keyed by client fingerprint + route. Three presets
cover every route:

    strict    5 / minute   login, register, payment verify, admin bootstrap
    moderate  20 / minute  checkout, contact form
    lenient   100 / minute read-mostly endpoints

Counters live in process memory, so limits are per worker.
"""
import time
import logging
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

from config import settings
from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitTier:
    name: str
    max_requests: int
    window_seconds: int


STRICT = RateLimitTier("strict", 5, 60)
MODERATE = RateLimitTier("moderate", 20, 60)
LENIENT = RateLimitTier("lenient", 100, 60)

TIERS = {t.name: t for t in (STRICT, MODERATE, LENIENT)}


class RateLimiter:
    """
    Sliding-window rate limiter.

    Tracks request timestamps per key; a request is allowed while fewer than
    max_requests timestamps fall inside the window.
    """

    def __init__(self):
        # {key: [timestamp1, timestamp2, ...]}
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._lock = Lock()

    def _cleanup(self, key: str, window_seconds: int):
        cutoff = time.time() - window_seconds
        self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit for key and return True, or return False if over the limit."""
        with self._lock:
            self._cleanup(key, window_seconds)
            if len(self._requests[key]) >= max_requests:
                return False
            self._requests[key].append(time.time())
            return True

    def remaining(self, key: str, max_requests: int, window_seconds: int) -> int:
        with self._lock:
            self._cleanup(key, window_seconds)
            return max(0, max_requests - len(self._requests[key]))

    def reset(self):
        with self._lock:
            self._requests.clear()


# Global rate limiter instance
_limiter = RateLimiter()


def client_fingerprint(request: Request) -> str:
    """
    Identify a caller as "<ip>:<user-agent>".

    The IP is the first X-Forwarded-For hop, else X-Real-IP, else the socket
    peer.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else ""
    if not ip:
        ip = request.headers.get("x-real-ip", "").strip()
    if not ip:
        ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("user-agent", "unknown")
    return f"{ip}:{user_agent}"


def rate_limit(tier: RateLimitTier | str = MODERATE):
    """
    FastAPI dependency factory for rate limiting.

    Usage:
        @router.post("/auth/login")
        async def login(..., _rate=Depends(rate_limit(STRICT))):
            ...
    """
    if isinstance(tier, str):
        tier = TIERS[tier]

    async def _check_rate_limit(request: Request):
        if not settings.rate_limit_enabled:
            return
        client_id = client_fingerprint(request)
        route_path = request.url.path
        key = f"{client_id}:{route_path}"

        if not _limiter.check(key, tier.max_requests, tier.window_seconds):
            remaining = _limiter.remaining(key, tier.max_requests, tier.window_seconds)
            logger.warning(
                f"Rate limit exceeded ({tier.name}): {client_id.split(':')[0]} on {route_path} "
                f"({tier.max_requests}/{tier.window_seconds}s)"
            )
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {tier.max_requests} requests "
                f"per {tier.window_seconds} seconds. Try again later.",
                headers={
                    "Retry-After": str(tier.window_seconds),
                    "X-RateLimit-Limit": str(tier.max_requests),
                    "X-RateLimit-Remaining": str(remaining),
                },
            )

    return _check_rate_limit
