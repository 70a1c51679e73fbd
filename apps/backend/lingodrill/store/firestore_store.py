from __future__ import annotations

from datetime import datetime

from google.cloud import firestore

from .activity import FirestoreActivityStore
from .bidirectional import FirestoreBidirectionalStore
from .curriculum import FirestoreCurriculumStore
from .blog import FirestoreBlogStore
from .exercises import FirestoreExerciseStore
from .users import FirestoreSubscriberStore, FirestoreUserStore
from .vocabulary import FirestoreVocabularyStore


class AppFirestoreStore:
    """アプリ全体で共有する Firestore ストアのファサード。

    コレクションごとの小さなストアを束ね、ルーターはここから各ストアへアクセスする。
    ユーザー関連はセッション検証で頻繁に使うため委譲メソッドも用意する。
    """

    def __init__(self, *, client: firestore.Client | None = None) -> None:
        self._client = client or firestore.Client()
        self.users = FirestoreUserStore(self._client)
        self.subscribers = FirestoreSubscriberStore(self._client)
        self.bidirectional = FirestoreBidirectionalStore(self._client)
        self.exercises = FirestoreExerciseStore(self._client)
        self.vocabulary = FirestoreVocabularyStore(self._client)
        self.activity = FirestoreActivityStore(self._client)
        self.blog = FirestoreBlogStore(self._client)
        self.curriculum = FirestoreCurriculumStore(self._client)

    def record_user_login(
        self,
        *,
        google_sub: str,
        email: str,
        display_name: str,
        login_at: datetime | None = None,
    ) -> tuple[dict[str, str], bool]:
        return self.users.record_user_login(
            google_sub=google_sub,
            email=email,
            display_name=display_name,
            login_at=login_at,
        )

    def get_user_by_google_sub(self, google_sub: str) -> dict[str, str] | None:
        return self.users.get_user_by_google_sub(google_sub)

    def delete_user(self, google_sub: str) -> None:
        self.users.delete_user(google_sub)

    def is_premium(self, email: str | None) -> bool:
        return self.subscribers.is_premium(email)
