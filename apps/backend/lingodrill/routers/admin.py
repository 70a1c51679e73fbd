from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..auth import require_admin
from ..logging import logger
from ..models.blog import AdminStats, BlogPost, BlogPostCreate, BlogPostUpdate
from ..srs import ReviewStatus
from ..store import store

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/stats", response_model=AdminStats)
def get_stats(_: dict = Depends(require_admin)) -> AdminStats:
    """サイト全体の件数集計（Firestore の count 集計クエリを使う）。"""

    return AdminStats(
        total_users=store.users.count_users(),
        subscribed_users=store.subscribers.count_subscribed(),
        dictation_exercises=store.exercises.count_all(),
        bidirectional_exercises={
            "total": store.bidirectional.count_all(),
            **{s.value: store.bidirectional.count_all(s.value) for s in ReviewStatus},
        },
        vocabulary_entries=store.vocabulary.count_all(),
    )


@router.get("/blog", response_model=list[BlogPost])
def list_all_posts(_: dict = Depends(require_admin)) -> list[BlogPost]:
    return [BlogPost.model_validate(p) for p in store.blog.list_posts(published_only=False)]


@router.post("/blog", response_model=BlogPost, status_code=status.HTTP_201_CREATED)
def create_post(payload: BlogPostCreate, admin: dict = Depends(require_admin)) -> BlogPost:
    record = store.blog.create_post(
        title=payload.title.strip(),
        content=payload.content,
        excerpt=payload.excerpt,
        published=payload.published,
        author_id=admin["google_sub"],
    )
    logger.info("blog_post_created", post_id=record["id"], slug=record["slug"], published=record["published"])
    return BlogPost.model_validate(record)


@router.patch("/blog/{post_id}", response_model=BlogPost)
def update_post(post_id: str, payload: BlogPostUpdate, _: dict = Depends(require_admin)) -> BlogPost:
    record = store.blog.update_post(post_id, payload.model_dump(exclude_unset=True))
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return BlogPost.model_validate(record)


@router.delete("/blog/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(post_id: str, _: dict = Depends(require_admin)) -> Response:
    if not store.blog.delete_post(post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    logger.info("blog_post_deleted", post_id=post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
