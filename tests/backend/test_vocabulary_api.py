from __future__ import annotations

from fastapi.testclient import TestClient

from lingodrill.config import settings
from lingodrill.store import store


def _add(client: TestClient, word: str, **extra: str) -> dict:
    response = client.post("/api/vocabulary", json={"word": word, "language": "french", **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_add_word_is_deduplicated_case_insensitively(api_client: TestClient) -> None:
    first = _add(api_client, "Bonjour", definition="hello")
    second = _add(api_client, "bonjour", example_sentence="Bonjour, ça va ?")

    assert first["id"] == second["id"]
    assert second["word"] == "bonjour"
    assert second["definition"] == "hello"
    assert second["example_sentence"] == "Bonjour, ça va ?"
    assert len(api_client.get("/api/vocabulary").json()) == 1


def test_export_json_and_tsv(api_client: TestClient) -> None:
    _add(api_client, "chat", definition="cat", example_sentence="Le chat\tdort.")

    as_json = api_client.get("/api/vocabulary/export", params={"format": "json"})
    assert as_json.status_code == 200
    assert as_json.json()[0]["word"] == "chat"

    as_tsv = api_client.get("/api/vocabulary/export", params={"format": "tsv"})
    assert as_tsv.status_code == 200
    assert as_tsv.headers["content-type"].startswith("text/tab-separated-values")
    assert as_tsv.text == "chat\tcat\tLe chat dort.\n"


def test_free_export_limit(api_client: TestClient) -> None:
    for word in ["un", "deux", "trois", "quatre"][: settings.free_vocabulary_export_limit + 1]:
        _add(api_client, word)

    blocked = api_client.get("/api/vocabulary/export")
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["error"] == "free_limit_reached"

    store.subscribers.upsert_subscriber(settings.local_user_email, subscribed=True)
    assert api_client.get("/api/vocabulary/export").status_code == 200


def test_delete_word(api_client: TestClient) -> None:
    item = _add(api_client, "merci")

    assert api_client.delete(f"/api/vocabulary/{item['id']}").status_code == 204
    assert api_client.delete(f"/api/vocabulary/{item['id']}").status_code == 404
    assert api_client.get("/api/vocabulary").json() == []


def test_unknown_export_format_is_rejected(api_client: TestClient) -> None:
    assert api_client.get("/api/vocabulary/export", params={"format": "csv"}).status_code == 422
