"""
Request hardening: security headers, same-origin checks, replay protection.

  - SecurityHeadersMiddleware adds conservative headers to every response.
  - require_same_origin rejects state-changing browser requests whose
    Origin (or Host, when Origin is absent) is not an allowed storefront origin.
  - ReplayGuard remembers request fingerprints for a few minutes so an
    identical checkout / contact submission is rejected with 409.
"""
import hashlib
import json
import logging
import time
from threading import Lock
from typing import Any
from urllib.parse import urlsplit

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from config import settings
from utils.safe_logging import log_security_event

logger = logging.getLogger(__name__)

REPLAY_WINDOW_SECONDS = 5 * 60


# ════════════════════════════════════════════════════════════════════
# Security headers
# ════════════════════════════════════════════════════════════════════

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
        if settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
            )
        return response


# ════════════════════════════════════════════════════════════════════
# Same-origin (CSRF) check
# ════════════════════════════════════════════════════════════════════

def _origin_tuple(url: str) -> tuple[str, str, int | None] | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    port = parts.port or (443 if parts.scheme == "https" else 80)
    return parts.scheme, parts.hostname, port


def is_allowed_origin(origin: str | None, host: str | None) -> bool:
    """
    Origin present: scheme, host and port must equal an allowed origin.
    Origin absent: the Host header must match an allowed origin or the API itself.
    """
    allowed = [settings.api_base_url, *settings.cors_origins_list]
    if origin:
        candidate = _origin_tuple(origin)
        if candidate is None:
            return False
        return any(_origin_tuple(a) == candidate for a in allowed)

    if not host:
        return False
    for a in allowed:
        parts = urlsplit(a)
        if parts.netloc == host or parts.hostname == host:
            return True
    return False


async def require_same_origin(request: Request) -> None:
    """FastAPI dependency for state-changing browser endpoints."""
    origin = request.headers.get("origin")
    host = request.headers.get("host")
    if not is_allowed_origin(origin, host):
        log_security_event(
            "origin_rejected",
            origin=(origin or "")[:100],
            host=(host or "")[:100],
            path=request.url.path,
        )
        raise HTTPException(status_code=403, detail="Invalid origin")


# ════════════════════════════════════════════════════════════════════
# Replay protection
# ════════════════════════════════════════════════════════════════════

class ReplayGuard:
    """Thread-safe map of request fingerprint -> first-seen time."""

    def __init__(self, window_seconds: int = REPLAY_WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self._seen: dict[str, float] = {}
        self._lock = Lock()

    @staticmethod
    def request_id(payload: Any, headers: dict | None = None, now: float | None = None) -> str:
        """
        sha256 over the payload, the current second, user-agent and
        content-length. Identical submissions inside the same second collide.
        """
        headers = headers or {}
        content = json.dumps(
            {
                "payload": payload,
                "timestamp": int(now if now is not None else time.time()),
                "userAgent": headers.get("user-agent"),
                "contentLength": headers.get("content-length"),
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def check_and_mark(self, request_id: str, now: float | None = None) -> bool:
        """Return True and remember request_id if unseen (or expired); False on replay."""
        now = now if now is not None else time.time()
        with self._lock:
            first_seen = self._seen.get(request_id)
            if first_seen is not None and now - first_seen <= self.window_seconds:
                return False
            self._seen[request_id] = now
            return True

    def sweep(self, now: float | None = None) -> int:
        """Drop expired fingerprints. Returns how many were removed."""
        now = now if now is not None else time.time()
        with self._lock:
            expired = [k for k, t in self._seen.items() if now - t > self.window_seconds]
            for k in expired:
                del self._seen[k]
            return len(expired)

    def reset(self):
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


replay_guard = ReplayGuard()


def ensure_not_replayed(payload: Any, request: Request, message: str) -> str:
    """Raise 409 with `message` when this payload was just submitted."""
    replay_guard.sweep()
    headers = {k.lower(): v for k, v in request.headers.items()}
    request_id = ReplayGuard.request_id(payload, headers)
    if not replay_guard.check_and_mark(request_id):
        log_security_event("replay_detected", path=request.url.path, request_id=request_id[:16])
        raise HTTPException(status_code=409, detail=message)
    return request_id
