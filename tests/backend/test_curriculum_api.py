from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from lingodrill.config import settings
from lingodrill.store import store

SENTENCES = ["Hola, me llamo Ana.", "Vivo en Madrid.", "Me gusta el café."]


@pytest.fixture()
def as_admin(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "admin_email_allowlist", (settings.local_user_email.lower(),))


@pytest.fixture()
def spanish_a1(api_client: TestClient, as_admin: None) -> dict:
    path = api_client.post(
        "/api/curriculum/paths",
        json={"language": "Spanish", "level": "a1", "title": "Primeros pasos"},
    ).json()
    nodes = {}
    # 作成順と position 順をずらしておく
    for position in (2, 0, 1):
        nodes[position] = api_client.post(
            f"/api/curriculum/paths/{path['id']}/nodes",
            json={
                "title": f"Lección {position + 1}",
                "position": position,
                "exercise_title": f"Dictado {position + 1}",
                "exercise_text": SENTENCES[position],
            },
        ).json()
    return {"path": path, "nodes": [nodes[0], nodes[1], nodes[2]]}


def _statuses(api_client: TestClient, path_id: str) -> list[tuple[str, int]]:
    return [
        (node["status"], node["progress_count"])
        for node in api_client.get(f"/api/curriculum/paths/{path_id}/nodes").json()
    ]


def test_authoring_requires_admin(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "admin_email_allowlist", ("someone-else@example.com",))

    response = api_client.post(
        "/api/curriculum/paths", json={"language": "spanish", "level": "A1", "title": "x"}
    )

    assert response.status_code == 403


def test_unknown_level_is_rejected(api_client: TestClient, as_admin: None) -> None:
    response = api_client.post(
        "/api/curriculum/paths", json={"language": "spanish", "level": "D1", "title": "x"}
    )

    assert response.status_code == 422


def test_paths_are_listed_by_level(api_client: TestClient, as_admin: None) -> None:
    for level in ("B1", "A1", "A2"):
        api_client.post("/api/curriculum/paths", json={"language": "spanish", "level": level, "title": level})
    api_client.post("/api/curriculum/paths", json={"language": "french", "level": "A1", "title": "fr"})

    levels = [p["level"] for p in api_client.get("/api/curriculum/paths", params={"language": "spanish"}).json()]
    only_a2 = api_client.get("/api/curriculum/paths", params={"language": "spanish", "level": "a2"}).json()

    assert levels == ["A1", "A2", "B1"]
    assert [p["title"] for p in only_a2] == ["A2"]


def test_start_sets_first_node_and_is_reused(api_client: TestClient, spanish_a1: dict) -> None:
    first = api_client.post("/api/curriculum/start", json={"language": "spanish", "level": "A1"})
    again = api_client.post("/api/curriculum/start", json={"language": "spanish", "level": "a1"})

    assert first.status_code == 201
    assert again.status_code == 200
    assert first.json()["id"] == again.json()["id"]
    assert first.json()["current_node_id"] == spanish_a1["nodes"][0]["id"]
    assert [p["path_id"] for p in api_client.get("/api/curriculum/me").json()] == [spanish_a1["path"]["id"]]
    assert _statuses(api_client, spanish_a1["path"]["id"]) == [
        ("current", 0),
        ("locked", 0),
        ("locked", 0),
    ]


def test_start_without_matching_path_is_404(api_client: TestClient) -> None:
    response = api_client.post("/api/curriculum/start", json={"language": "german", "level": "C1"})

    assert response.status_code == 404


def test_three_accurate_attempts_complete_node_and_advance(api_client: TestClient, spanish_a1: dict) -> None:
    path_id = spanish_a1["path"]["id"]
    first, second, _ = spanish_a1["nodes"]
    api_client.post("/api/curriculum/start", json={"language": "spanish", "level": "A1"})

    sloppy = api_client.post(f"/api/curriculum/nodes/{first['id']}/attempts", json={"user_input": "Hola"}).json()
    assert sloppy["counted_as_completion"] is False
    assert sloppy["progress"]["completion_count"] == 0

    results = [
        api_client.post(
            f"/api/curriculum/nodes/{first['id']}/attempts", json={"user_input": "hola me llamo ana"}
        ).json()
        for _ in range(3)
    ]

    assert [r["progress"]["completion_count"] for r in results] == [1, 2, 3]
    assert [r["progress"]["is_completed"] for r in results] == [False, False, True]
    assert results[-1]["progress"]["next_node_id"] == second["id"]
    assert api_client.get("/api/curriculum/me").json()[0]["current_node_id"] == second["id"]
    assert _statuses(api_client, path_id) == [("completed", 3), ("current", 0), ("locked", 0)]

    # 完了済みノードの復習では現在地は戻らない
    extra = api_client.post(
        f"/api/curriculum/nodes/{first['id']}/attempts", json={"user_input": "Hola, me llamo Ana."}
    ).json()
    assert extra["progress"]["next_node_id"] is None
    assert api_client.get("/api/curriculum/me").json()[0]["current_node_id"] == second["id"]

    activity = store.activity.list_activity(settings.local_user_id, "spanish")
    assert activity[0]["exercises_completed"] == 4


def test_attempt_on_unstarted_path_is_404(api_client: TestClient, spanish_a1: dict) -> None:
    node_id = spanish_a1["nodes"][0]["id"]

    assert api_client.post(f"/api/curriculum/nodes/{node_id}/attempts", json={"user_input": "x"}).status_code == 404
    assert api_client.post("/api/curriculum/nodes/cn:missing/complete").status_code == 404


def test_mark_completed_and_reset(api_client: TestClient, spanish_a1: dict) -> None:
    path_id = spanish_a1["path"]["id"]
    first, second, _ = spanish_a1["nodes"]
    api_client.post("/api/curriculum/start", json={"language": "spanish", "level": "A1"})

    marked = api_client.post(f"/api/curriculum/nodes/{first['id']}/complete").json()
    api_client.post(f"/api/curriculum/nodes/{second['id']}/complete")

    assert marked == {
        "node_id": first["id"],
        "completion_count": 3,
        "is_completed": True,
        "next_node_id": second["id"],
    }
    assert _statuses(api_client, path_id) == [("completed", 3), ("completed", 3), ("current", 0)]

    assert api_client.delete(f"/api/curriculum/paths/{path_id}/progress").status_code == 204

    assert _statuses(api_client, path_id) == [("current", 0), ("locked", 0), ("locked", 0)]
    assert api_client.get("/api/curriculum/me").json()[0]["current_node_id"] == first["id"]


def test_reset_of_unstarted_path_is_404(api_client: TestClient, spanish_a1: dict) -> None:
    assert api_client.delete(f"/api/curriculum/paths/{spanish_a1['path']['id']}/progress").status_code == 404
