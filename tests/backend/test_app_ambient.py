from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from lingodrill.config import Settings, settings
from lingodrill.logging import _sanitize_event_dict
from lingodrill.metrics import MetricsRegistry, calculate_p95


def test_security_headers_and_request_id(api_client: TestClient) -> None:
    response = api_client.get("/healthz")

    assert response.json() == {"status": "ok"}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Strict-Transport-Security"].endswith("includeSubDomains")
    assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
    assert response.headers["X-Request-ID"]


def test_metrics_endpoint_reports_recorded_paths(api_client: TestClient) -> None:
    api_client.get("/healthz")

    paths = api_client.get("/metrics").json()["paths"]

    assert paths["/healthz"]["count"] >= 1
    assert paths["/healthz"]["status"]["200"] >= 1


def test_runtime_config_exposes_limits(api_client: TestClient) -> None:
    body = api_client.get("/api/config").json()

    assert body["free_limits"] == {
        "dictation_exercises": settings.free_exercise_limit,
        "bidirectional_exercises": settings.free_bidirectional_exercise_limit,
        "vocabulary_export": settings.free_vocabulary_export_limit,
    }
    assert {p["plan_id"] for p in body["plans"]} == {"monthly", "quarterly", "annual", "lifetime"}
    assert body["is_premium"] is False


def test_metrics_registry_counts_errors() -> None:
    registry = MetricsRegistry(window_size=10)
    registry.record("/x", 10.0, status_code=200)
    registry.record("/x", 30.0, status_code=500, is_error=True)

    snapshot = registry.snapshot()["/x"]

    assert snapshot["count"] == 2
    assert snapshot["errors"] == 1
    assert snapshot["status"] == {"200": 1, "500": 1}
    assert calculate_p95([]) == 0.0


def test_sensitive_log_fields_are_masked(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_live_abcdefghijklmnop")

    event = _sanitize_event_dict(
        None,
        "info",
        {
            "event": "stripe_request_failed",
            "api_key": "sk-abcdefghijklmnopqrstuvwxyz",
            "error": "auth failed for sk_live_abcdefghijklmnop",
            "nested": {"authorization": "Bearer xyz"},
            "user_id": "u-1",
        },
    )

    assert event["event"] == "stripe_request_failed"
    assert event["api_key"] == "sk-a…wxyz"
    assert "sk_live_abcdefghijklmnop" not in event["error"]
    assert event["nested"]["authorization"] == "Bear… xyz"
    assert event["user_id"] == "u-1"


@pytest.mark.parametrize("secret", ["", "change-me", "too-short"])
def test_session_secret_must_be_strong(secret: str) -> None:
    with pytest.raises(ValidationError):
        Settings(session_secret_key=secret)


def test_admin_allowlist_is_parsed_and_lowercased() -> None:
    parsed = Settings(admin_email_allowlist="Admin@Example.com, ops@example.com ,")

    assert parsed.admin_email_allowlist == ("admin@example.com", "ops@example.com")


def test_production_enables_secure_cookie_by_default() -> None:
    assert Settings(environment="production").session_cookie_secure is True
    assert Settings(environment="production", session_cookie_secure=False).session_cookie_secure is False


def test_request_complete_is_logged_as_json(api_client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = api_client.get("/healthz")

    events = [json.loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
    entry = next(e for e in events if e.get("event") == "request_complete")
    assert entry["path"] == "/healthz"
    assert entry["status_code"] == 200
    assert entry["level"] == "info"
    assert entry["request_id"] == response.headers["X-Request-ID"]


def test_providers_are_shut_down_when_app_stops(monkeypatch: pytest.MonkeyPatch) -> None:
    import lingodrill.main as main_module

    calls: list[str] = []
    monkeypatch.setattr(main_module, "shutdown_providers", lambda: calls.append("shutdown"))
    app = main_module.create_app()

    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
        assert calls == []

    assert calls == ["shutdown"]
