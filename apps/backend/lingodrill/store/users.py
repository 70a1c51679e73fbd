from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from google.cloud import firestore

from .common import count_query, now_iso, stable_doc_id


class FirestoreBaseStore:
    """Firestore クライアント共通のヘルパー。"""

    def __init__(self, client: firestore.Client):
        self._client = client


class FirestoreUserStore(FirestoreBaseStore):
    """Firestore 上のユーザードキュメントを管理する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._users = client.collection("users")

    def record_user_login(
        self,
        *,
        google_sub: str,
        email: str,
        display_name: str,
        login_at: datetime | None = None,
    ) -> tuple[dict[str, str], bool]:
        """ログイン情報を upsert し、保存結果と新規作成かどうかを返す。

        初回ログインの判定はウェルカムメール送信に使うため、upsert 前の存在確認で行う。"""

        login_time = now_iso(login_at or datetime.now(UTC))
        doc_ref = self._users.document(google_sub)
        is_new = not doc_ref.get().exists
        payload: dict[str, Any] = {
            "google_sub": google_sub,
            "email": email.strip().lower(),
            "display_name": display_name,
            "last_login_at": login_time,
        }
        if is_new:
            payload["created_at"] = login_time
        doc_ref.set(payload, merge=True)
        user = self.get_user_by_google_sub(google_sub)
        if user is None:  # pragma: no cover
            raise RuntimeError("failed to persist user login")
        return user, is_new

    def get_user_by_google_sub(self, google_sub: str) -> dict[str, str] | None:
        doc = self._users.document(google_sub).get()
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        return {
            "google_sub": str(data.get("google_sub") or google_sub),
            "email": str(data.get("email") or ""),
            "display_name": str(data.get("display_name") or ""),
            "last_login_at": str(data.get("last_login_at") or ""),
        }

    def delete_user(self, google_sub: str) -> None:
        self._users.document(google_sub).delete()

    def count_users(self) -> int:
        return count_query(self._users)


class FirestoreSubscriberStore(FirestoreBaseStore):
    """課金状態（subscribers コレクション）をメールアドレス単位で管理する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._subscribers = client.collection("subscribers")

    @staticmethod
    def _doc_id(email: str) -> str:
        return stable_doc_id("sub", email)

    def upsert_subscriber(self, email: str, **fields: Any) -> dict[str, Any]:
        """メールアドレスをキーに購読情報を部分更新する。"""

        normalized = email.strip().lower()
        doc_ref = self._subscribers.document(self._doc_id(normalized))
        payload = {k: v for k, v in fields.items()}
        payload["email"] = normalized
        payload["updated_at"] = now_iso()
        doc_ref.set(payload, merge=True)
        return self.get_subscriber(normalized) or payload

    def get_subscriber(self, email: str) -> dict[str, Any] | None:
        doc = self._subscribers.document(self._doc_id(email.strip().lower())).get()
        if not doc.exists:
            return None
        return doc.to_dict() or {}

    def is_premium(self, email: str | None) -> bool:
        if not email:
            return False
        record = self.get_subscriber(email)
        return bool(record and record.get("subscribed"))

    def count_subscribed(self) -> int:
        return count_query(self._subscribers.where("subscribed", "==", True))
