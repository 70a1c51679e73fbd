from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ExerciseCreate(BaseModel):
    """Request model for a dictation exercise / 書き取り問題の作成リクエスト。"""

    title: str = Field(min_length=1, max_length=200)
    text: str = Field(min_length=1, max_length=4000)
    language: str = Field(min_length=1, max_length=32)
    tags: list[str] = Field(default_factory=list, max_length=20)
    audio_url: str | None = Field(default=None, max_length=2048)


class ExerciseUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    text: str | None = Field(default=None, min_length=1, max_length=4000)
    language: str | None = Field(default=None, min_length=1, max_length=32)
    tags: list[str] | None = Field(default=None, max_length=20)
    audio_url: str | None = Field(default=None, max_length=2048)


class Exercise(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    text: str
    language: str
    tags: list[str] = Field(default_factory=list)
    audio_url: str | None = None
    completion_count: int = 0
    is_completed: bool = False
    created_at: str
    updated_at: str


class AttemptRequest(BaseModel):
    user_input: str = Field(max_length=4000)


class AttemptResult(BaseModel):
    accuracy: int = Field(ge=0, le=100)
    missing_words: list[str] = Field(default_factory=list)
    extra_words: list[str] = Field(default_factory=list)
    differences: list[str] = Field(default_factory=list)
    counted_as_completion: bool
    exercise: Exercise
