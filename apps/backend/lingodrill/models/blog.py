from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class BlogPostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    excerpt: str | None = Field(default=None, max_length=500)
    published: bool = False


class BlogPostUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = Field(default=None, min_length=1)
    excerpt: str | None = Field(default=None, max_length=500)
    published: bool | None = None


class BlogPost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    slug: str
    content: str
    excerpt: str = ""
    published: bool = False
    published_at: str | None = None
    created_at: str
    updated_at: str


class AdminStats(BaseModel):
    total_users: int
    subscribed_users: int
    dictation_exercises: int
    bidirectional_exercises: dict[str, int]
    vocabulary_entries: int
