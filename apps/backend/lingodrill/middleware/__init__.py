from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ..auth import read_session_cookie, verify_session_token
from ..config import settings
from ..logging import logger

__all__ = [
    "SecurityHeadersMiddleware",
    "RequestIDMiddleware",
    "RateLimitMiddleware",
]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach strict security headers (HSTS, CSP, frame and content-type policies) to every response."""

    def __init__(self, app) -> None:
        super().__init__(app)
        self._headers = self._build_header_map()

    @staticmethod
    def _merge_sources(*groups: Iterable[str]) -> tuple[str, ...]:
        merged: list[str] = []
        seen: set[str] = set()
        for group in groups:
            for candidate in group:
                if not candidate or candidate in seen:
                    continue
                seen.add(candidate)
                merged.append(candidate)
        return tuple(merged)

    def _build_csp_value(self) -> str:
        default_sources = settings.security_csp_default_src or ("'self'",)
        # Swagger UI の inline CSS と data URI 画像のみ追加で許可する。
        directives = [
            ("default-src", default_sources),
            ("connect-src", default_sources),
            ("img-src", self._merge_sources(default_sources, ("data:",))),
            ("media-src", self._merge_sources(default_sources, ("blob:",))),
            ("script-src", default_sources),
            ("style-src", self._merge_sources(default_sources, ("'unsafe-inline'",))),
            ("frame-ancestors", ("'none'",)),
            ("object-src", ("'none'",)),
            ("base-uri", ("'self'",)),
        ]
        return "; ".join(f"{name} {' '.join(sources)}" for name, sources in directives if sources)

    def _build_header_map(self) -> dict[str, str]:
        max_age = max(0, int(settings.security_hsts_max_age_seconds))
        return {
            "Strict-Transport-Security": f"max-age={max_age}; includeSubDomains",
            "Content-Security-Policy": self._build_csp_value(),
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": "camera=(), microphone=(self), geolocation=()",
        }

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        response = await call_next(request)
        for header_name, value in self._headers.items():
            response.headers[header_name] = value
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Sets `request.state.request_id` (reusing one assigned by an outer middleware)
    - Adds `X-Request-ID` to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class _TokenBucket:
    """Thread-safe token bucket that refills to capacity every fixed interval (seconds)."""

    def __init__(self, capacity: int, refill_interval_sec: float) -> None:
        self.capacity = max(1, capacity)
        self.tokens = self.capacity
        self.refill_interval = max(1.0, float(refill_interval_sec))
        self.last_refill = time.time()
        self._lock = threading.Lock()

    def allow(self) -> tuple[bool, int]:
        """Consume one token if available and return the remaining count."""
        now = time.time()
        with self._lock:
            if now - self.last_refill >= self.refill_interval:
                self.tokens = self.capacity
                self.last_refill = now
            if self.tokens > 0:
                self.tokens -= 1
                return True, self.tokens
            return False, 0


@dataclass
class _TrackedBucket:
    bucket: _TokenBucket
    last_seen: float


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting per IP and per authenticated session using token buckets.

    ユーザー単位のバケットは署名検証済みのセッションからのみ割り当てる。
    長時間アクセスのないバケットは TTL と上限件数で破棄する。
    """

    def __init__(
        self,
        app,
        *,
        ip_capacity_per_minute: int,
        user_capacity_per_minute: int,
        user_bucket_ttl_seconds: float = 15 * 60,
        max_user_buckets: int = 10_000,
    ) -> None:
        super().__init__(app)
        self._ip_capacity = max(1, int(ip_capacity_per_minute))
        self._user_capacity = max(1, int(user_capacity_per_minute))
        self._ip_buckets: dict[str, _TokenBucket] = {}
        self._user_buckets: OrderedDict[str, _TrackedBucket] = OrderedDict()
        self._lock = threading.Lock()
        self._user_bucket_ttl = max(1.0, float(user_bucket_ttl_seconds))
        self._max_user_buckets = max(1, int(max_user_buckets))

    def _get_ip_bucket(self, key: str) -> _TokenBucket:
        with self._lock:
            if key not in self._ip_buckets:
                self._ip_buckets[key] = _TokenBucket(self._ip_capacity, refill_interval_sec=60.0)
            return self._ip_buckets[key]

    def _prune_user_buckets(self, now: float) -> None:
        expired = [
            key
            for key, entry in self._user_buckets.items()
            if now - entry.last_seen > self._user_bucket_ttl
        ]
        for key in expired:
            self._user_buckets.pop(key, None)
        while len(self._user_buckets) >= self._max_user_buckets:
            self._user_buckets.popitem(last=False)

    def _get_user_bucket(self, key: str, now: float) -> _TokenBucket:
        with self._lock:
            self._prune_user_buckets(now)
            entry = self._user_buckets.get(key)
            if entry is None:
                entry = _TrackedBucket(
                    bucket=_TokenBucket(self._user_capacity, refill_interval_sec=60.0),
                    last_seen=now,
                )
                self._user_buckets[key] = entry
            else:
                entry.last_seen = now
                self._user_buckets.move_to_end(key, last=True)
            return entry.bucket

    def _resolve_user_key(self, request: Request, client_ip: str) -> str | None:
        """Resolve the session subject from the signed cookie, or None when anonymous."""

        raw_token = read_session_cookie(request)
        if not raw_token:
            return None
        try:
            payload = verify_session_token(raw_token)
        except SignatureExpired:
            logger.debug("rate_limit_session_invalid", reason="expired", client_ip=client_ip)
            return None
        except BadSignature:
            logger.debug("rate_limit_session_invalid", reason="bad_signature", client_ip=client_ip)
            return None
        except RuntimeError:
            logger.error("rate_limit_session_invalid", reason="configuration_error", client_ip=client_ip)
            return None
        sub = payload.get("sub") if isinstance(payload, dict) else None
        return sub if isinstance(sub, str) and sub else None

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        client_ip = request.client.host if request.client else "unknown"
        user_key = self._resolve_user_key(request, client_ip)
        ok_ip, remaining_ip = self._get_ip_bucket(client_ip).allow()
        headers = {
            "X-RateLimit-Limit-Ip": str(self._ip_capacity),
            "X-RateLimit-Remaining-Ip": str(remaining_ip),
        }
        if not ok_ip:
            logger.warning("rate_limited", scope="ip", client_ip=client_ip, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too Many Requests (per IP)"},
                headers={"Retry-After": "60", **headers},
            )

        if user_key is not None:
            ok_user, remaining_user = self._get_user_bucket(user_key, time.time()).allow()
            headers["X-RateLimit-Limit-User"] = str(self._user_capacity)
            headers["X-RateLimit-Remaining-User"] = str(remaining_user)
            if not ok_user:
                logger.warning("rate_limited", scope="user", user_id=user_key, path=request.url.path)
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Too Many Requests (per User)"},
                    headers={"Retry-After": "60", **headers},
                )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response
