"""Pytest configuration shared by the backend test-suite."""

import os
import sys
from pathlib import Path

import pytest

# Disable session authentication by default so API tests can call endpoints without
# provisioning cookies. Individual tests can override this via monkeypatch when needed.
os.environ.setdefault("DISABLE_SESSION_AUTH", "true")
# 起動時バリデーションを満たす 32 文字以上の署名鍵。
os.environ.setdefault("SESSION_SECRET_KEY", "S9kD2fH5jL8pQ1tV4yX7zB0cN3mR6wA9")
# モジュール読み込み時に作られる Firestore クライアントをエミュレータ向けに固定する。
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
os.environ.setdefault("FIRESTORE_PROJECT_ID", "test-project")

_TESTS_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_TESTS_DIR.parent / "apps" / "backend"))
sys.path.insert(0, str(_TESTS_DIR))

from firestore_fakes import FakeFirestoreClient  # noqa: E402


@pytest.fixture()
def fake_firestore(monkeypatch: pytest.MonkeyPatch) -> FakeFirestoreClient:
    """Swap every sub-store of the shared `store` onto a fresh in-memory client."""

    from lingodrill.store import AppFirestoreStore, store

    client = FakeFirestoreClient()
    fresh = AppFirestoreStore(client=client)
    for name in (
        "_client",
        "users",
        "subscribers",
        "bidirectional",
        "exercises",
        "vocabulary",
        "activity",
        "blog",
        "curriculum",
    ):
        monkeypatch.setattr(store, name, getattr(fresh, name))
    return client


@pytest.fixture()
def api_client(fake_firestore: FakeFirestoreClient, monkeypatch: pytest.MonkeyPatch):
    """TestClient backed by the fake Firestore, with a generous rate limit."""

    from fastapi.testclient import TestClient

    from lingodrill.config import settings
    from lingodrill.main import create_app

    monkeypatch.setattr(settings, "rate_limit_per_min_ip", 10_000)
    monkeypatch.setattr(settings, "rate_limit_per_min_user", 10_000)
    with TestClient(create_app()) as client:
        yield client
