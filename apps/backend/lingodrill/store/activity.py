from __future__ import annotations

from datetime import date
from typing import Any

from google.cloud import firestore

from .common import (
    coerce_snapshot,
    normalize_non_negative_int,
    now_iso,
    run_in_transaction,
    snapshot_to_record,
    stable_doc_id,
    today_iso,
)
from .users import FirestoreBaseStore


class FirestoreActivityStore(FirestoreBaseStore):
    """日次の学習記録（連続学習日数の算出元）を管理する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._daily_activity = client.collection("daily_activity")

    def record_activity(
        self,
        user_id: str,
        language: str,
        *,
        exercises_completed: int = 0,
        words_mastered: int = 0,
        activity_date: date | None = None,
    ) -> dict[str, Any]:
        """(ユーザー, 言語, 日付) の行へ完了数と習得語数を加算する。

        同時リクエストでも加算が失われないよう、読み取りと書き込みを 1 トランザクションで行う。"""

        day = today_iso(activity_date)
        doc_ref = self._daily_activity.document(stable_doc_id("act", user_id, language, day))

        def _accumulate(transaction: firestore.Transaction) -> dict[str, Any]:
            snapshot = coerce_snapshot(transaction.get(doc_ref))
            data = (snapshot.to_dict() if snapshot is not None else None) or {}
            payload = {
                "user_id": user_id,
                "language": language,
                "activity_date": day,
                "exercises_completed": normalize_non_negative_int(data.get("exercises_completed"))
                + normalize_non_negative_int(exercises_completed),
                "words_mastered": normalize_non_negative_int(data.get("words_mastered"))
                + normalize_non_negative_int(words_mastered),
                "updated_at": now_iso(),
            }
            transaction.set(doc_ref, payload, merge=True)
            return payload

        payload = run_in_transaction(self._client, _accumulate, operation="record_activity")
        return {**payload, "id": doc_ref.id}

    def list_activity(self, user_id: str, language: str | None = None) -> list[dict[str, Any]]:
        query = self._daily_activity.where("user_id", "==", user_id)
        if language:
            query = query.where("language", "==", language)
        query = query.order_by("activity_date", direction=firestore.Query.DESCENDING)
        return [snapshot_to_record(doc) for doc in query.stream()]

    def list_activity_dates(self, user_id: str, language: str | None = None) -> list[date]:
        dates: set[date] = set()
        for row in self.list_activity(user_id, language):
            raw = row.get("activity_date")
            if not raw:
                continue
            try:
                dates.add(date.fromisoformat(str(raw)))
            except ValueError:
                continue
        return sorted(dates)
