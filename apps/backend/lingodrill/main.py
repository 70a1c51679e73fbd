from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .config import settings
from .logging import configure_logging, logger
from .metrics import registry
from .middleware import RateLimitMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware
from .providers import shutdown_providers
from .routers import (
    admin,
    auth,
    bidirectional,
    billing,
    blog,
    config,
    curriculum,
    exercises,
    health,
    streaks,
    tts,
    vocabulary,
)


class AccessLogAndMetricsMiddleware(BaseHTTPMiddleware):
    """Emit one structured `request_complete` log per call and record latency metrics.

    ログには request_id を紐付け、ハンドラ内のログとも突合できるようにする。
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:  # type: ignore[override]
        start = time.time()
        path = request.url.path
        method = request.method
        request_id = getattr(request.state, "request_id", None)
        if not request_id:
            request_id = uuid4().hex
            request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        client_ip = request.client.host if request.client else "unknown"
        is_error = False
        is_timeout = False
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            is_error = status_code >= 500
            return response
        except Exception as exc:
            is_error = True
            status_code = 500
            error_type = exc.__class__.__name__
            is_timeout = isinstance(exc, asyncio.TimeoutError)
            raise
        finally:
            latency_ms = (time.time() - start) * 1000
            registry.record(
                path,
                latency_ms,
                status_code=status_code,
                is_error=is_error,
                is_timeout=is_timeout,
            )
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=path,
                method=method,
                latency_ms=latency_ms,
                status_code=status_code,
                is_error=is_error,
                is_timeout=is_timeout,
                error_type=error_type,
                client_ip=client_ip,
                user_agent=request.headers.get("user-agent", "-"),
            )
            structlog_contextvars.unbind_contextvars("request_id")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    shutdown_providers()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="LingoDrill API", version="0.1.0", lifespan=lifespan)

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]
    # ワイルドカード許可時は資格情報付き CORS を無効にする。
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # 後から追加したものほど外側: RequestID → AccessLog → RateLimit → SecurityHeaders
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(AccessLogAndMetricsMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        ip_capacity_per_minute=settings.rate_limit_per_min_ip,
        user_capacity_per_minute=settings.rate_limit_per_min_user,
    )
    app.add_middleware(SecurityHeadersMiddleware)

    if settings.disable_session_auth:
        logger.warning("session_auth_disabled", reason="config_flag")

    for module in (
        health,
        auth,
        config,
        bidirectional,
        exercises,
        curriculum,
        vocabulary,
        streaks,
        tts,
        billing,
        blog,
        admin,
    ):
        app.include_router(module.router)

    return app


app = create_app()
