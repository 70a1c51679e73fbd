from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from typing import Any

from google.cloud import firestore

from ..id_factory import generate_blog_post_id
from .common import now_iso, snapshot_to_record
from .users import FirestoreBaseStore

_EDITABLE_FIELDS = frozenset({"title", "content", "excerpt", "published"})


def slugify(title: str) -> str:
    """タイトルから URL 用の slug を生成する（ASCII 化・小文字・ハイフン区切り）。"""

    ascii_title = (
        unicodedata.normalize("NFKD", title or "").encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")
    return slug or "post"


class FirestoreBlogStore(FirestoreBaseStore):
    """blog_posts コレクションを管理する。slug は全記事で一意に保つ。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._posts = client.collection("blog_posts")

    def _slug_exists(self, slug: str, *, exclude_id: str | None = None) -> bool:
        for doc in self._posts.where("slug", "==", slug).limit(2).stream():
            if doc.id != exclude_id:
                return True
        return False

    def _unique_slug(self, title: str, *, exclude_id: str | None = None) -> str:
        base = slugify(title)
        candidate = base
        suffix = 2
        while self._slug_exists(candidate, exclude_id=exclude_id):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def create_post(
        self,
        *,
        title: str,
        content: str,
        excerpt: str | None = None,
        published: bool = False,
        author_id: str | None = None,
    ) -> dict[str, Any]:
        post_id = generate_blog_post_id()
        timestamp = now_iso()
        payload = {
            "title": title,
            "slug": self._unique_slug(title),
            "content": content,
            "excerpt": excerpt or "",
            "published": bool(published),
            "author_id": author_id,
            "published_at": timestamp if published else None,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        self._posts.document(post_id).set(payload)
        return {**payload, "id": post_id}

    def update_post(self, post_id: str, fields: Mapping[str, Any]) -> dict[str, Any] | None:
        doc_ref = self._posts.document(post_id)
        snapshot = doc_ref.get()
        if not snapshot.exists:
            return None
        current = snapshot.to_dict() or {}
        updates = {k: v for k, v in fields.items() if k in _EDITABLE_FIELDS and v is not None}
        if "title" in updates and updates["title"] != current.get("title"):
            updates["slug"] = self._unique_slug(updates["title"], exclude_id=post_id)
        if updates.get("published") and not current.get("published_at"):
            updates["published_at"] = now_iso()
        if updates:
            updates["updated_at"] = now_iso()
            doc_ref.update(updates)
        return snapshot_to_record(doc_ref.get())

    def delete_post(self, post_id: str) -> bool:
        doc_ref = self._posts.document(post_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True

    def list_posts(self, *, published_only: bool) -> list[dict[str, Any]]:
        query: Any = self._posts
        if published_only:
            query = query.where("published", "==", True)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)
        return [snapshot_to_record(doc) for doc in query.stream()]

    def get_published_post(self, slug: str) -> dict[str, Any] | None:
        query = self._posts.where("slug", "==", slug).where("published", "==", True).limit(1)
        for doc in query.stream():
            return snapshot_to_record(doc)
        return None
