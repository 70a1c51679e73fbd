from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..srs import ReviewInterval, ReviewStatus


class ReviewType(str, Enum):
    """Recall direction: forward = original → support language, backward = reverse."""

    forward = "forward"
    backward = "backward"


class BidirectionalExerciseCreate(BaseModel):
    """Request model for saving a new bidirectional exercise.

    翻訳が未指定の場合はサーバー側で生成を試みる。生成に失敗しても作成は継続する。
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "original_sentence": "Me gusta aprender idiomas.",
                    "target_language": "spanish",
                    "support_language": "english",
                }
            ]
        }
    )

    original_sentence: str = Field(min_length=1, max_length=1000)
    target_language: str = Field(min_length=1, max_length=32)
    support_language: str = Field(min_length=1, max_length=32)
    normal_translation: str | None = Field(default=None, max_length=2000)
    literal_translation: str | None = Field(default=None, max_length=2000)


class BidirectionalExerciseUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_forward_translation: str | None = Field(default=None, max_length=2000)
    user_back_translation: str | None = Field(default=None, max_length=2000)
    reflection_notes: str | None = Field(default=None, max_length=4000)


class BidirectionalExercise(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    original_sentence: str
    target_language: str
    support_language: str
    normal_translation: str | None = ""
    literal_translation: str | None = ""
    user_forward_translation: str | None = None
    user_back_translation: str | None = None
    reflection_notes: str | None = None
    status: ReviewStatus = ReviewStatus.learning
    review_round: int = 1
    due_at: str | None = None
    last_review_type: ReviewType | None = None
    last_reviewed_at: str | None = None
    created_at: str
    updated_at: str


class ReviewSubmission(BaseModel):
    """復習結果の送信内容。正誤判定は利用者の自己申告を受け付ける。"""

    review_type: ReviewType
    user_recall_attempt: str = Field(default="", max_length=2000)
    is_correct: bool
    feedback: str | None = Field(default=None, max_length=2000)


class ReviewRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    exercise_id: str
    review_type: ReviewType
    user_recall_attempt: str = ""
    is_correct: bool
    feedback: str | None = None
    round_before: int
    round_after: int
    interval: ReviewInterval
    due_at: str | None = None
    created_at: str


class ReviewResult(BaseModel):
    exercise: BidirectionalExercise
    review: ReviewRecord
    interval: ReviewInterval
    mastered: bool
    mastered_words: list[str] = Field(default_factory=list)


class DueExercise(BaseModel):
    exercise: BidirectionalExercise
    suggested_review_type: ReviewType


class MasteredWord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    word: str
    language: str
    exercise_id: str | None = None
    mastered_at: str
