from __future__ import annotations

from typing import Any

from google.cloud import firestore

from ..curriculum import NODE_COMPLETIONS_REQUIRED, level_rank
from ..id_factory import generate_curriculum_node_id, generate_curriculum_path_id
from .common import (
    coerce_snapshot,
    delete_in_batches,
    normalize_non_negative_int,
    now_iso,
    run_in_transaction,
    snapshot_to_record,
    stable_doc_id,
)
from .users import FirestoreBaseStore


class FirestoreCurriculumStore(FirestoreBaseStore):
    """カリキュラム (パス・ノード) と学習者ごとの進捗を管理する。

    - curriculum_paths / curriculum_nodes: 管理者が作成する共有データ
    - user_curriculum_paths: (ユーザー, パス) ごとに 1 行。現在地ノードを持つ
    - curriculum_node_progress: (ユーザー, ノード) ごとに 1 行。完了回数を持つ
    """

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._paths = client.collection("curriculum_paths")
        self._nodes = client.collection("curriculum_nodes")
        self._user_paths = client.collection("user_curriculum_paths")
        self._node_progress = client.collection("curriculum_node_progress")

    @staticmethod
    def _user_path_id(user_id: str, path_id: str) -> str:
        return stable_doc_id("ucp", user_id, path_id)

    @staticmethod
    def _progress_id(user_id: str, node_id: str) -> str:
        return stable_doc_id("cnp", user_id, node_id)

    # --- paths ---

    def create_path(
        self, *, language: str, level: str, title: str, description: str | None = None
    ) -> dict[str, Any]:
        path_id = generate_curriculum_path_id()
        timestamp = now_iso()
        payload = {
            "language": language,
            "level": level,
            "title": title,
            "description": description or "",
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        self._paths.document(path_id).set(payload)
        return {**payload, "id": path_id}

    def get_path(self, path_id: str) -> dict[str, Any] | None:
        doc = self._paths.document(path_id).get()
        return snapshot_to_record(doc) if doc.exists else None

    def list_paths(self, language: str, level: str | None = None) -> list[dict[str, Any]]:
        """言語のパス一覧をレベル順 (A1 → C2) で返す。"""

        query = self._paths.where("language", "==", language)
        if level:
            query = query.where("level", "==", level)
        records = [snapshot_to_record(doc) for doc in query.stream()]
        return sorted(records, key=lambda r: (level_rank(r.get("level")), r.get("created_at") or ""))

    # --- nodes ---

    def add_node(
        self,
        path_id: str,
        *,
        title: str,
        position: int,
        exercise_title: str,
        exercise_text: str,
        description: str | None = None,
        is_bonus: bool = False,
    ) -> dict[str, Any]:
        node_id = generate_curriculum_node_id()
        timestamp = now_iso()
        payload = {
            "path_id": path_id,
            "title": title,
            "description": description or "",
            "position": int(position),
            "is_bonus": bool(is_bonus),
            "exercise_title": exercise_title,
            "exercise_text": exercise_text,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        self._nodes.document(node_id).set(payload)
        return {**payload, "id": node_id}

    def get_node(self, node_id: str) -> dict[str, Any] | None:
        doc = self._nodes.document(node_id).get()
        return snapshot_to_record(doc) if doc.exists else None

    def list_nodes(self, path_id: str) -> list[dict[str, Any]]:
        query = self._nodes.where("path_id", "==", path_id).order_by("position")
        return [snapshot_to_record(doc) for doc in query.stream()]

    # --- learner progress ---

    def start_path(self, user_id: str, path: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """パスを開始する。既に開始済みなら既存の行をそのまま返す。

        新規作成時は position 最小のノードを現在地にする。戻り値は (行, 新規作成したか)。
        """

        doc_ref = self._user_paths.document(self._user_path_id(user_id, path["id"]))
        nodes = self.list_nodes(path["id"])
        first_node_id = nodes[0]["id"] if nodes else None

        def _start(transaction: firestore.Transaction) -> tuple[dict[str, Any], bool]:
            snapshot = coerce_snapshot(transaction.get(doc_ref))
            if snapshot is not None and snapshot.exists:
                return {**(snapshot.to_dict() or {}), "id": doc_ref.id}, False
            timestamp = now_iso()
            payload = {
                "user_id": user_id,
                "path_id": path["id"],
                "language": path["language"],
                "level": path["level"],
                "title": path["title"],
                "current_node_id": first_node_id,
                "created_at": timestamp,
                "updated_at": timestamp,
            }
            transaction.set(doc_ref, payload)
            return {**payload, "id": doc_ref.id}, True

        return run_in_transaction(self._client, _start, operation="start_curriculum_path")

    def get_user_path(self, user_id: str, path_id: str) -> dict[str, Any] | None:
        doc = self._user_paths.document(self._user_path_id(user_id, path_id)).get()
        return snapshot_to_record(doc) if doc.exists else None

    def list_user_paths(self, user_id: str, language: str | None = None) -> list[dict[str, Any]]:
        query = self._user_paths.where("user_id", "==", user_id)
        if language:
            query = query.where("language", "==", language)
        records = [snapshot_to_record(doc) for doc in query.stream()]
        return sorted(records, key=lambda r: (level_rank(r.get("level")), r.get("created_at") or ""))

    def list_progress(self, user_id: str, path_id: str) -> dict[str, dict[str, Any]]:
        """ノード ID → 進捗行。未着手のノードは含まれない。"""

        query = self._node_progress.where("user_id", "==", user_id).where("path_id", "==", path_id)
        progress: dict[str, dict[str, Any]] = {}
        for doc in query.stream():
            record = snapshot_to_record(doc)
            record["completion_count"] = normalize_non_negative_int(record.get("completion_count"))
            progress[record["node_id"]] = record
        return progress

    def record_node_completion(
        self,
        user_id: str,
        node: dict[str, Any],
        *,
        next_node_id: str | None,
        mark_completed: bool = False,
    ) -> dict[str, Any]:
        """ノードの完了回数を 1 加算する (mark_completed なら規定回数まで引き上げる)。

        未完了 → 完了に変わったときだけ、学習者の現在地を next_node_id へ進める。
        進捗行と現在地の更新は同じトランザクションで行う。
        """

        progress_ref = self._node_progress.document(self._progress_id(user_id, node["id"]))
        user_path_ref = self._user_paths.document(self._user_path_id(user_id, node["path_id"]))

        def _record(transaction: firestore.Transaction) -> dict[str, Any]:
            snapshot = coerce_snapshot(transaction.get(progress_ref))
            user_path = coerce_snapshot(transaction.get(user_path_ref))
            data = (snapshot.to_dict() if snapshot is not None and snapshot.exists else None) or {}
            previous = normalize_non_negative_int(data.get("completion_count"))
            was_completed = bool(data.get("is_completed"))
            if mark_completed:
                count = max(previous, NODE_COMPLETIONS_REQUIRED)
            else:
                count = previous + 1
            timestamp = now_iso()
            payload = {
                "user_id": user_id,
                "path_id": node["path_id"],
                "node_id": node["id"],
                "completion_count": count,
                "is_completed": count >= NODE_COMPLETIONS_REQUIRED,
                "last_practiced_at": timestamp,
                "updated_at": timestamp,
            }
            if not data:
                payload["created_at"] = timestamp
            transaction.set(progress_ref, payload, merge=True)

            advanced_to = None
            just_completed = payload["is_completed"] and not was_completed
            if just_completed and next_node_id and user_path is not None and user_path.exists:
                transaction.update(
                    user_path_ref, {"current_node_id": next_node_id, "updated_at": timestamp}
                )
                advanced_to = next_node_id
            return {**payload, "id": progress_ref.id, "next_node_id": advanced_to}

        return run_in_transaction(self._client, _record, operation="record_node_completion")

    def reset_progress(self, user_id: str, path_id: str) -> int:
        """パスの進捗を消し、現在地を先頭ノードへ戻す。削除した進捗行数を返す。"""

        docs = list(
            self._node_progress.where("user_id", "==", user_id).where("path_id", "==", path_id).stream()
        )
        deleted = delete_in_batches(self._client, docs)
        user_path_ref = self._user_paths.document(self._user_path_id(user_id, path_id))
        if user_path_ref.get().exists:
            nodes = self.list_nodes(path_id)
            user_path_ref.update(
                {"current_node_id": nodes[0]["id"] if nodes else None, "updated_at": now_iso()}
            )
        return deleted
