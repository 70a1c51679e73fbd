from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ..models.blog import BlogPost
from ..store import store

router = APIRouter(prefix="/api/blog", tags=["blog"])


@router.get("", response_model=list[BlogPost])
def list_published_posts() -> list[BlogPost]:
    """Public list of published posts, newest first. 認証不要。"""

    return [BlogPost.model_validate(p) for p in store.blog.list_posts(published_only=True)]


@router.get("/{slug}", response_model=BlogPost)
def get_post(slug: str) -> BlogPost:
    record = store.blog.get_published_post(slug)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return BlogPost.model_validate(record)
