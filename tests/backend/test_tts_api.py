from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from fastapi.testclient import TestClient

import lingodrill.providers as providers
from lingodrill.config import settings


class _SpeechStub:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._error = error

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return SimpleNamespace(content=f"[{kwargs['input']}]".encode())


def _install(monkeypatch: pytest.MonkeyPatch, speech: _SpeechStub) -> None:
    monkeypatch.setattr(providers, "_OPENAI_CLIENT", SimpleNamespace(audio=SimpleNamespace(speech=speech)))


def test_tts_returns_concatenated_mp3_chunks(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    speech = _SpeechStub()
    _install(monkeypatch, speech)
    monkeypatch.setattr(settings, "tts_chunk_max_chars", 14)

    response = api_client.post("/api/tts", json={"text": "Bonjour. Comment ça va?", "language": "french"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == "[Bonjour.][Comment ça va?]".encode()
    assert [c["input"] for c in speech.calls] == ["Bonjour.", "Comment ça va?"]
    assert {c["voice"] for c in speech.calls} == {"echo"}
    assert {c["model"] for c in speech.calls} == {settings.tts_model}


def test_explicit_voice_wins_over_language(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    speech = _SpeechStub()
    _install(monkeypatch, speech)

    api_client.post("/api/tts", json={"text": "Hallo", "language": "german", "voice": "shimmer"})

    assert speech.calls[0]["voice"] == "shimmer"


def test_text_over_limit_is_rejected_with_413(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    speech = _SpeechStub()
    _install(monkeypatch, speech)

    response = api_client.post("/api/tts", json={"text": "a" * (settings.tts_text_max_length + 1)})

    assert response.status_code == 413
    assert response.json()["detail"]["error"] == "tts_text_too_long"
    assert speech.calls == []


def test_blank_text_is_rejected(api_client: TestClient) -> None:
    assert api_client.post("/api/tts", json={"text": ""}).status_code == 422
    assert api_client.post("/api/tts", json={"text": "   "}).status_code == 422


def test_missing_client_returns_500(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(providers, "_OPENAI_CLIENT", None)
    monkeypatch.setattr(settings, "openai_api_key", None)

    assert api_client.post("/api/tts", json={"text": "hola"}).status_code == 500


def test_openai_rate_limit_maps_to_429(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/speech")
    error = openai.RateLimitError(
        "slow down", response=httpx.Response(429, request=request), body=None
    )
    _install(monkeypatch, _SpeechStub(error))

    response = api_client.post("/api/tts", json={"text": "hola"})

    assert response.status_code == 429
    assert response.json()["detail"] == "OpenAI rate limit exceeded"
