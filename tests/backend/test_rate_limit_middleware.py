from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from starlette.requests import Request
from starlette.responses import Response

import lingodrill.middleware as middleware_module
from lingodrill.config import settings
from lingodrill.middleware import RateLimitMiddleware


async def _call_next(_: Request) -> Response:
    return Response("ok", media_type="text/plain")


def _dispatch(middleware: RateLimitMiddleware, request: Request) -> Response:
    return asyncio.run(middleware.dispatch(request, _call_next))


def _make_request(*, cookie_token: str | None = None, client_ip: str = "198.51.100.10") -> Request:
    headers: list[tuple[bytes, bytes]] = []
    if cookie_token is not None:
        headers.append((b"cookie", f"{settings.session_cookie_name}={cookie_token}".encode("latin-1")))
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "path": "/api/bidirectional/due",
        "raw_path": b"/api/bidirectional/due",
        "query_string": b"",
        "headers": headers,
        "client": (client_ip, 52314),
        "state": SimpleNamespace(),
    }
    return Request(scope)


def _middleware(**overrides: float) -> RateLimitMiddleware:
    options = {
        "ip_capacity_per_minute": 100,
        "user_capacity_per_minute": 5,
        "user_bucket_ttl_seconds": 60,
        "max_user_buckets": 8,
        **overrides,
    }
    return RateLimitMiddleware(app=lambda scope, receive, send: None, **options)


def test_per_ip_bucket_returns_429_with_retry_after() -> None:
    middleware = _middleware(ip_capacity_per_minute=2)

    statuses = [_dispatch(middleware, _make_request()).status_code for _ in range(3)]
    blocked = _dispatch(middleware, _make_request())

    assert statuses == [200, 200, 429]
    assert blocked.headers["Retry-After"] == "60"
    assert _dispatch(middleware, _make_request(client_ip="203.0.113.5")).status_code == 200


def test_per_user_bucket_uses_verified_session(monkeypatch: pytest.MonkeyPatch) -> None:
    observed: list[str] = []

    def fake_verify(token: str) -> dict[str, str]:
        observed.append(token)
        return {"sub": "user-123"}

    monkeypatch.setattr(middleware_module, "verify_session_token", fake_verify)
    middleware = _middleware(user_capacity_per_minute=2)

    responses = [_dispatch(middleware, _make_request(cookie_token="session-token")) for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 429]
    assert responses[0].headers["X-RateLimit-Remaining-User"] == "1"
    assert observed == ["session-token"] * 3


def test_invalid_session_falls_back_to_ip_bucket() -> None:
    middleware = _middleware(user_capacity_per_minute=1)

    responses = [_dispatch(middleware, _make_request(cookie_token="not-a-signed-token")) for _ in range(3)]

    assert all(r.status_code == 200 for r in responses)
    assert "X-RateLimit-Limit-User" not in responses[0].headers
    assert len(middleware._user_buckets) == 0


def test_stale_user_buckets_are_pruned(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = {"now": 0.0}
    monkeypatch.setattr(middleware_module.time, "time", lambda: clock["now"])
    monkeypatch.setattr(middleware_module, "verify_session_token", lambda token: {"sub": token})
    middleware = _middleware(user_bucket_ttl_seconds=5, max_user_buckets=2)

    _dispatch(middleware, _make_request(cookie_token="user-A"))
    clock["now"] = 1.0
    _dispatch(middleware, _make_request(cookie_token="user-B"))
    assert set(middleware._user_buckets) == {"user-A", "user-B"}

    clock["now"] = 6.5
    _dispatch(middleware, _make_request(cookie_token="user-C"))

    assert "user-A" not in middleware._user_buckets
    assert "user-C" in middleware._user_buckets
    assert len(middleware._user_buckets) <= 2
