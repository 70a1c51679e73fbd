from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from google.cloud import firestore

from ..id_factory import generate_bidirectional_exercise_id, generate_review_id
from ..logging import logger
from ..srs import FIRST_ROUND, ReviewDecision, ReviewStatus, schedule_review
from .common import (
    coerce_snapshot,
    count_query,
    delete_in_batches,
    normalize_non_negative_int,
    now_iso,
    run_in_transaction,
    snapshot_to_record,
    stable_doc_id,
)
from .users import FirestoreBaseStore

_EDITABLE_FIELDS = frozenset(
    {"user_forward_translation", "user_back_translation", "reflection_notes"}
)


class FirestoreBidirectionalStore(FirestoreBaseStore):
    """双方向（順訳・逆訳）復習用の問題、復習履歴、習得語を管理する。

    - `bidirectional_exercises`: 問題本体と現在の復習状態（status/review_round/due_at）
    - `bidirectional_reviews`: 1 回ごとの復習結果（前後ラウンドと間隔を含む）
    - `mastered_words`: 習得時に原文から抽出した単語（ユーザー・言語・単語で一意）
    """

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._exercises = client.collection("bidirectional_exercises")
        self._reviews = client.collection("bidirectional_reviews")
        self._mastered_words = client.collection("mastered_words")

    def _owned_snapshot(self, user_id: str, exercise_id: str) -> firestore.DocumentSnapshot | None:
        doc = self._exercises.document(exercise_id).get()
        if not doc.exists:
            return None
        if (doc.to_dict() or {}).get("user_id") != user_id:
            return None
        return doc

    @staticmethod
    def _normalize_record(doc: firestore.DocumentSnapshot) -> dict[str, Any]:
        record = snapshot_to_record(doc)
        record["review_round"] = max(
            FIRST_ROUND, normalize_non_negative_int(record.get("review_round"))
        )
        record.setdefault("status", ReviewStatus.learning.value)
        return record

    def create_exercise(
        self,
        user_id: str,
        *,
        original_sentence: str,
        target_language: str,
        support_language: str,
        normal_translation: str = "",
        literal_translation: str = "",
        now: datetime | None = None,
    ) -> dict[str, Any]:
        created_at = now_iso(now)
        exercise_id = generate_bidirectional_exercise_id()
        payload = {
            "user_id": user_id,
            "original_sentence": original_sentence,
            "target_language": target_language,
            "support_language": support_language,
            "normal_translation": normal_translation,
            "literal_translation": literal_translation,
            "user_forward_translation": None,
            "user_back_translation": None,
            "reflection_notes": None,
            "status": ReviewStatus.learning.value,
            "review_round": FIRST_ROUND,
            "due_at": None,
            "last_review_type": None,
            "last_reviewed_at": None,
            "created_at": created_at,
            "updated_at": created_at,
        }
        self._exercises.document(exercise_id).set(payload)
        return {**payload, "id": exercise_id}

    def count_exercises(self, user_id: str) -> int:
        return count_query(self._exercises.where("user_id", "==", user_id))

    def list_exercises(self, user_id: str, status: str | None = None) -> list[dict[str, Any]]:
        query = self._exercises.where("user_id", "==", user_id)
        if status:
            query = query.where("status", "==", status)
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

    def promote_exercise(
        self, user_id: str, exercise_id: str, *, now: datetime | None = None
    ) -> tuple[dict[str, Any], bool] | None:
        """学習中の問題を復習スタックへ移し、即時に期日を迎えた状態にする。

        learning 以外（reviewing / mastered）の問題は変更せずそのまま返す。
        ラウンドは誤答時以外に減らない。戻り値は (問題, 移行したか)。"""

        doc_ref = self._exercises.document(exercise_id)
        moment = now_iso(now)

        def _promote(transaction: firestore.Transaction) -> bool | None:
            snapshot = coerce_snapshot(transaction.get(doc_ref))
            if snapshot is None or not snapshot.exists:
                return None
            data = snapshot.to_dict() or {}
            if data.get("user_id") != user_id:
                return None
            if data.get("status", ReviewStatus.learning.value) != ReviewStatus.learning.value:
                return False
            transaction.update(
                doc_ref,
                {
                    "status": ReviewStatus.reviewing.value,
                    "review_round": FIRST_ROUND,
                    "due_at": moment,
                    "updated_at": moment,
                },
            )
            return True

        promoted = run_in_transaction(self._client, _promote, operation="promote_exercise")
        if promoted is None:
            return None
        record = self.get_exercise(user_id, exercise_id)
        if record is None:
            return None
        if not promoted:
            logger.info(
                "bidirectional_promote_skipped",
                exercise_id=exercise_id,
                user_id=user_id,
                status=record["status"],
                review_round=record["review_round"],
            )
        return record, promoted

    def apply_review(
        self,
        user_id: str,
        exercise_id: str,
        *,
        review_type: str,
        user_recall_attempt: str,
        is_correct: bool,
        feedback: str | None = None,
        now: datetime | None = None,
    ) -> tuple[dict[str, Any], dict[str, Any], ReviewDecision] | None:
        """復習結果を記録し、次回の間隔・ラウンド・ステータスを反映する。

        学習中 (learning) の問題に対する復習は暗黙的に復習スタックへの移行として扱う。
        習得済みの問題を誤答した場合もラウンド 1 の reviewing に戻る。
        現在ラウンドの読み取りと更新は 1 トランザクションで行い、二重送信でも
        同じ round_before の履歴が 2 件できないようにする。"""

        doc_ref = self._exercises.document(exercise_id)
        moment = now or datetime.now(UTC)
        reviewed_at = now_iso(moment)

        def _review(
            transaction: firestore.Transaction,
        ) -> tuple[dict[str, Any], dict[str, Any], ReviewDecision] | None:
            snapshot = coerce_snapshot(transaction.get(doc_ref))
            if snapshot is None or not snapshot.exists:
                return None
            if (snapshot.to_dict() or {}).get("user_id") != user_id:
                return None
            current = self._normalize_record(snapshot)
            round_before = int(current["review_round"])
            decision = schedule_review(is_correct, round_before, moment)
            due_at = now_iso(decision.due_at) if decision.due_at is not None else None
            review_id = generate_review_id()
            review = {
                "exercise_id": exercise_id,
                "user_id": user_id,
                "review_type": review_type,
                "user_recall_attempt": user_recall_attempt,
                "is_correct": bool(is_correct),
                "feedback": feedback,
                "round_before": round_before,
                "round_after": decision.next_round,
                "interval": decision.interval.value,
                "due_at": due_at,
                "created_at": reviewed_at,
            }
            updates = {
                "status": decision.status.value,
                "review_round": decision.next_round,
                "due_at": due_at,
                "last_review_type": review_type,
                "last_reviewed_at": reviewed_at,
                "updated_at": reviewed_at,
            }
            transaction.set(self._reviews.document(review_id), review)
            transaction.update(doc_ref, updates)
            return {**current, **updates}, {**review, "id": review_id}, decision

        outcome = run_in_transaction(self._client, _review, operation="apply_review")
        if outcome is None:
            return None
        updated, review, decision = outcome
        logger.info(
            "bidirectional_review_recorded",
            exercise_id=exercise_id,
            user_id=user_id,
            review_type=review_type,
            is_correct=bool(is_correct),
            round_before=review["round_before"],
            round_after=decision.next_round,
            interval=decision.interval.value,
            status=decision.status.value,
        )
        return updated, review, decision

    def list_reviews(self, user_id: str, exercise_id: str) -> list[dict[str, Any]]:
        query = (
            self._reviews.where("exercise_id", "==", exercise_id)
            .where("user_id", "==", user_id)
            .order_by("created_at", direction=firestore.Query.ASCENDING)
        )
        return [snapshot_to_record(doc) for doc in query.stream()]

    def list_due(self, user_id: str, *, now: datetime | None = None) -> list[dict[str, Any]]:
        """期日 (`due_at`) を迎えた reviewing 状態の問題を期日の古い順に返す。"""

        query = (
            self._exercises.where("user_id", "==", user_id)
            .where("status", "==", ReviewStatus.reviewing.value)
            .where("due_at", "<=", now_iso(now))
            .order_by("due_at", direction=firestore.Query.ASCENDING)
        )
        return [self._normalize_record(doc) for doc in query.stream()]

    def add_mastered_words(
        self,
        user_id: str,
        words: Iterable[str],
        *,
        language: str,
        exercise_id: str,
        now: datetime | None = None,
    ) -> list[str]:
        """未登録の単語だけを習得語として追加し、追加した単語を返す。

        既存の行（別の問題で先に習得した単語）は exercise_id も mastered_at も変えない。
        問題の削除で消えるのは、その問題が最初に登録した単語だけになる。"""

        mastered_at = now_iso(now)
        refs = {
            word: self._mastered_words.document(stable_doc_id("mw", user_id, language, word))
            for word in dict.fromkeys(words)
        }
        if not refs:
            return []

        def _insert_missing(transaction: firestore.Transaction) -> list[str]:
            missing = []
            for word, doc_ref in refs.items():
                snapshot = coerce_snapshot(transaction.get(doc_ref))
                if snapshot is None or not snapshot.exists:
                    missing.append(word)
            for word in missing:
                transaction.set(
                    refs[word],
                    {
                        "user_id": user_id,
                        "word": word,
                        "language": language,
                        "exercise_id": exercise_id,
                        "mastered_at": mastered_at,
                    },
                )
            return missing

        return run_in_transaction(self._client, _insert_missing, operation="add_mastered_words")

    def list_mastered_words(self, user_id: str, language: str | None = None) -> list[dict[str, Any]]:
        query = self._mastered_words.where("user_id", "==", user_id)
        if language:
            query = query.where("language", "==", language)
        query = query.order_by("mastered_at", direction=firestore.Query.DESCENDING)
        return [snapshot_to_record(doc) for doc in query.stream()]

    def delete_exercise(self, user_id: str, exercise_id: str) -> bool:
        doc = self._owned_snapshot(user_id, exercise_id)
        if doc is None:
            return False
        reviews = list(self._reviews.where("exercise_id", "==", exercise_id).stream())
        words = list(self._mastered_words.where("exercise_id", "==", exercise_id).stream())
        delete_in_batches(self._client, reviews + words)
        doc.reference.delete()
        return True

    def count_all(self, status: str | None = None) -> int:
        if status:
            return count_query(self._exercises.where("status", "==", status))
        return count_query(self._exercises)
