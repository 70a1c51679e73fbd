from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ExportFormat(str, Enum):
    json = "json"
    tsv = "tsv"


class VocabularyCreate(BaseModel):
    word: str = Field(min_length=1, max_length=100)
    language: str = Field(min_length=1, max_length=32)
    definition: str | None = Field(default=None, max_length=2000)
    example_sentence: str | None = Field(default=None, max_length=2000)
    exercise_id: str | None = None


class VocabularyItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    word: str
    language: str
    definition: str | None = ""
    example_sentence: str | None = ""
    exercise_id: str | None = None
    created_at: str | None = None
