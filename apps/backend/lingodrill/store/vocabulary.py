from __future__ import annotations

from datetime import datetime
from typing import Any

from google.cloud import firestore

from .common import (
    coerce_snapshot,
    count_query,
    now_iso,
    run_in_transaction,
    snapshot_to_record,
    stable_doc_id,
)
from .users import FirestoreBaseStore


class FirestoreVocabularyStore(FirestoreBaseStore):
    """語彙リストを (ユーザー, 単語, 言語) 単位で upsert して管理する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._vocabulary = client.collection("vocabulary")

    @staticmethod
    def _doc_id(user_id: str, word: str, language: str) -> str:
        return stable_doc_id("voc", user_id, language, word)

    def upsert_word(
        self,
        user_id: str,
        *,
        word: str,
        language: str,
        definition: str | None = None,
        example_sentence: str | None = None,
        exercise_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """同じ単語を二重登録せず、新しい定義・例文だけを上書きする。"""

        normalized_word = word.strip().lower()
        doc_ref = self._vocabulary.document(self._doc_id(user_id, normalized_word, language))
        snapshot = doc_ref.get()
        timestamp = now_iso(now)
        payload: dict[str, Any] = {
            "user_id": user_id,
            "word": normalized_word,
            "language": language,
            "updated_at": timestamp,
        }
        if definition is not None:
            payload["definition"] = definition
        if example_sentence is not None:
            payload["example_sentence"] = example_sentence
        if exercise_id is not None:
            payload["exercise_id"] = exercise_id
        if not snapshot.exists:
            payload.setdefault("definition", "")
            payload.setdefault("example_sentence", "")
            payload.setdefault("exercise_id", None)
            payload["created_at"] = timestamp
        doc_ref.set(payload, merge=True)
        return snapshot_to_record(doc_ref.get())

    def add_missing_words(
        self,
        user_id: str,
        words: list[str],
        *,
        language: str,
        example_sentence: str | None = None,
        exercise_id: str | None = None,
    ) -> list[str]:
        """未登録の単語だけを語彙に追加する（習得時の自動登録用）。

        既に登録済みの単語は定義・例文・exercise_id を含めて一切変更しない。"""

        timestamp = now_iso()
        refs: dict[str, Any] = {}
        for word in words:
            normalized_word = word.strip().lower()
            if normalized_word:
                refs.setdefault(
                    normalized_word,
                    self._vocabulary.document(self._doc_id(user_id, normalized_word, language)),
                )
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
                        "definition": "",
                        "example_sentence": example_sentence or "",
                        "exercise_id": exercise_id,
                        "created_at": timestamp,
                        "updated_at": timestamp,
                    },
                )
            return missing

        return run_in_transaction(self._client, _insert_missing, operation="add_vocabulary_words")

    def list_words(
        self, user_id: str, language: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        query = self._vocabulary.where("user_id", "==", user_id)
        if language:
            query = query.where("language", "==", language)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)
        if limit is not None:
            query = query.limit(max(0, int(limit)))
        return [snapshot_to_record(doc) for doc in query.stream()]

    def count_words(self, user_id: str) -> int:
        return count_query(self._vocabulary.where("user_id", "==", user_id))

    def count_all(self) -> int:
        return count_query(self._vocabulary)

    def delete_word(self, user_id: str, word_id: str) -> bool:
        doc_ref = self._vocabulary.document(word_id)
        snapshot = doc_ref.get()
        if not snapshot.exists or (snapshot.to_dict() or {}).get("user_id") != user_id:
            return False
        doc_ref.delete()
        return True
