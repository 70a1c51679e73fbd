from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from google.cloud import firestore

from ..id_factory import generate_exercise_id
from .common import (
    coerce_snapshot,
    count_query,
    normalize_non_negative_int,
    now_iso,
    run_in_transaction,
    snapshot_to_record,
)
from .users import FirestoreBaseStore

COMPLETIONS_REQUIRED = 3

_EDITABLE_FIELDS = frozenset({"title", "text", "language", "tags", "audio_url"})


class FirestoreExerciseStore(FirestoreBaseStore):
    """書き取り問題（exercises コレクション）を管理する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._exercises = client.collection("exercises")

    def _owned_snapshot(self, user_id: str, exercise_id: str) -> firestore.DocumentSnapshot | None:
        doc = self._exercises.document(exercise_id).get()
        if not doc.exists or (doc.to_dict() or {}).get("user_id") != user_id:
            return None
        return doc

    @staticmethod
    def _normalize_record(doc: firestore.DocumentSnapshot) -> dict[str, Any]:
        record = snapshot_to_record(doc)
        record["completion_count"] = normalize_non_negative_int(record.get("completion_count"))
        record["is_completed"] = bool(record.get("is_completed"))
        record["tags"] = list(record.get("tags") or [])
        return record

    def create_exercise(
        self,
        user_id: str,
        *,
        title: str,
        text: str,
        language: str,
        tags: list[str] | None = None,
        audio_url: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        created_at = now_iso(now)
        exercise_id = generate_exercise_id()
        payload = {
            "user_id": user_id,
            "title": title,
            "text": text,
            "language": language,
            "tags": list(tags or []),
            "audio_url": audio_url,
            "completion_count": 0,
            "is_completed": False,
            "created_at": created_at,
            "updated_at": created_at,
        }
        self._exercises.document(exercise_id).set(payload)
        return {**payload, "id": exercise_id}

    def count_exercises(self, user_id: str) -> int:
        return count_query(self._exercises.where("user_id", "==", user_id))

    def count_all(self) -> int:
        return count_query(self._exercises)

    def list_exercises(self, user_id: str, language: str | None = None) -> list[dict[str, Any]]:
        query = self._exercises.where("user_id", "==", user_id)
        if language:
            query = query.where("language", "==", language)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)
        return [self._normalize_record(doc) for doc in query.stream()]

    def get_exercise(self, user_id: str, exercise_id: str) -> dict[str, Any] | None:
        doc = self._owned_snapshot(user_id, exercise_id)
        return None if doc is None else self._normalize_record(doc)

    def update_exercise(
        self, user_id: str, exercise_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        doc = self._owned_snapshot(user_id, exercise_id)
        if doc is None:
            return None
        updates = {k: v for k, v in fields.items() if k in _EDITABLE_FIELDS}
        if updates:
            updates["updated_at"] = now_iso()
            doc.reference.update(updates)
        return self.get_exercise(user_id, exercise_id)

    def record_completion(self, user_id: str, exercise_id: str) -> dict[str, Any] | None:
        """高精度で書き取れた回数を加算し、規定回数に達したら完了扱いにする。"""

        doc_ref = self._exercises.document(exercise_id)

        def _increment(transaction: firestore.Transaction) -> bool:
            snapshot = coerce_snapshot(transaction.get(doc_ref))
            if snapshot is None or not snapshot.exists:
                return False
            data = snapshot.to_dict() or {}
            if data.get("user_id") != user_id:
                return False
            completion_count = normalize_non_negative_int(data.get("completion_count")) + 1
            transaction.update(
                doc_ref,
                {
                    "completion_count": completion_count,
                    "is_completed": completion_count >= COMPLETIONS_REQUIRED,
                    "updated_at": now_iso(),
                },
            )
            return True

        if not run_in_transaction(self._client, _increment, operation="record_completion"):
            return None
        return self.get_exercise(user_id, exercise_id)

    def delete_exercise(self, user_id: str, exercise_id: str) -> bool:
        doc = self._owned_snapshot(user_id, exercise_id)
        if doc is None:
            return False
        doc.reference.delete()
        return True
