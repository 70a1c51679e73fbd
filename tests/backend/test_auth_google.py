from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

import lingodrill.routers.auth as auth_router
from lingodrill.auth import issue_session_token
from lingodrill.config import settings


@pytest.fixture()
def auth_client(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(settings, "disable_session_auth", False)
    monkeypatch.setattr(settings, "google_client_id", "test-client-id")
    monkeypatch.setattr(settings, "session_cookie_secure", False)
    return api_client


@pytest.fixture()
def sent_emails(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str]]:
    sent: list[tuple[str, str]] = []

    def fake_send(template: Any, to: str, **_: Any) -> bool:
        sent.append((template.value, to))
        return True

    monkeypatch.setattr(auth_router, "send_email", fake_send)
    return sent


def _stub_verifier(monkeypatch: pytest.MonkeyPatch, claims: dict[str, str] | Exception) -> None:
    def _verify(token: str, request: object, audience: str, **kwargs: Any) -> dict[str, str]:
        assert audience == settings.google_client_id
        if isinstance(claims, Exception):
            raise claims
        return claims

    monkeypatch.setattr(auth_router.id_token, "verify_oauth2_token", _verify)


def test_google_login_issues_session_and_sends_welcome_once(
    auth_client: TestClient, monkeypatch: pytest.MonkeyPatch, sent_emails: list[tuple[str, str]]
) -> None:
    _stub_verifier(monkeypatch, {"sub": "g-123", "email": "Learner@Example.com", "name": "Learner"})

    first = auth_client.post("/api/auth/google", json={"id_token": "token"})
    assert first.status_code == 200
    assert first.json()["is_new_user"] is True
    assert first.json()["user"]["email"] == "learner@example.com"
    assert settings.session_cookie_name in first.cookies

    me = auth_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["google_sub"] == "g-123"
    assert me.json()["is_premium"] is False

    second = auth_client.post("/api/auth/google", json={"id_token": "token"})
    assert second.json()["is_new_user"] is False
    assert sent_emails == [("welcome", "learner@example.com")]


def test_invalid_token_is_rejected(
    auth_client: TestClient, monkeypatch: pytest.MonkeyPatch, sent_emails: list[tuple[str, str]]
) -> None:
    _stub_verifier(monkeypatch, ValueError("Token expired"))

    response = auth_client.post("/api/auth/google", json={"id_token": "bad"})

    assert response.status_code == 401
    assert sent_emails == []


def test_missing_email_claim_is_rejected(auth_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_verifier(monkeypatch, {"sub": "g-1"})

    assert auth_client.post("/api/auth/google", json={"id_token": "t"}).status_code == 401


def test_protected_routes_require_session(auth_client: TestClient) -> None:
    assert auth_client.get("/api/bidirectional/exercises").status_code == 401
    assert auth_client.post("/api/tts", json={"text": "hola"}).status_code == 401

    auth_client.cookies.set(settings.session_cookie_name, "tampered-token")
    assert auth_client.get("/api/auth/me").status_code == 401


def test_session_for_unknown_user_is_rejected(auth_client: TestClient) -> None:
    auth_client.cookies.set(settings.session_cookie_name, issue_session_token("ghost"))

    assert auth_client.get("/api/auth/me").status_code == 401


def test_logout_clears_cookie(
    auth_client: TestClient, monkeypatch: pytest.MonkeyPatch, sent_emails: list[tuple[str, str]]
) -> None:
    _stub_verifier(monkeypatch, {"sub": "g-9", "email": "a@example.com"})
    auth_client.post("/api/auth/google", json={"id_token": "t"})

    response = auth_client.post("/api/auth/logout")

    assert response.status_code == 200
    assert auth_client.get("/api/auth/me").status_code == 401


def test_google_auth_requires_client_id(auth_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "google_client_id", "")

    assert auth_client.post("/api/auth/google", json={"id_token": "t"}).status_code == 500
