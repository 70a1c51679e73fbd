from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..auth import get_current_user, is_premium_user
from ..config import settings
from ..logging import logger
from ..models.dictation import (
    AttemptRequest,
    AttemptResult,
    Exercise,
    ExerciseCreate,
    ExerciseUpdate,
)
from ..store import store
from ..text_compare import COMPLETION_ACCURACY, score_dictation

router = APIRouter(prefix="/api/exercises", tags=["exercises"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")


@router.post("", response_model=Exercise, status_code=status.HTTP_201_CREATED)
def create_exercise(payload: ExerciseCreate, user: dict = Depends(get_current_user)) -> Exercise:
    """Create a dictation exercise (free accounts are capped at FREE_EXERCISE_LIMIT)."""

    user_id = user["google_sub"]
    limit = settings.free_exercise_limit
    if not is_premium_user(user) and store.exercises.count_exercises(user_id) >= limit:
        logger.info("free_limit_reached", feature="dictation", user_id=user_id, limit=limit)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "free_limit_reached",
                "message": f"Free accounts can create up to {limit} exercises.",
                "limit": limit,
            },
        )
    record = store.exercises.create_exercise(
        user_id,
        title=payload.title.strip(),
        text=payload.text.strip(),
        language=payload.language.strip().lower(),
        tags=[t.strip() for t in payload.tags if t.strip()],
        audio_url=payload.audio_url,
    )
    logger.info("exercise_created", exercise_id=record["id"], user_id=user_id, language=record["language"])
    return Exercise.model_validate(record)


@router.get("", response_model=list[Exercise])
def list_exercises(
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> list[Exercise]:
    records = store.exercises.list_exercises(
        user["google_sub"], language.strip().lower() if language else None
    )
    return [Exercise.model_validate(r) for r in records]


@router.get("/{exercise_id}", response_model=Exercise)
def get_exercise(exercise_id: str, user: dict = Depends(get_current_user)) -> Exercise:
    record = store.exercises.get_exercise(user["google_sub"], exercise_id)
    if record is None:
        raise _not_found()
    return Exercise.model_validate(record)


@router.patch("/{exercise_id}", response_model=Exercise)
def update_exercise(
    exercise_id: str, payload: ExerciseUpdate, user: dict = Depends(get_current_user)
) -> Exercise:
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("language"):
        fields["language"] = fields["language"].strip().lower()
    record = store.exercises.update_exercise(user["google_sub"], exercise_id, fields)
    if record is None:
        raise _not_found()
    return Exercise.model_validate(record)


@router.delete("/{exercise_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_exercise(exercise_id: str, user: dict = Depends(get_current_user)) -> Response:
    if not store.exercises.delete_exercise(user["google_sub"], exercise_id):
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{exercise_id}/attempts", response_model=AttemptResult)
def submit_attempt(
    exercise_id: str, payload: AttemptRequest, user: dict = Depends(get_current_user)
) -> AttemptResult:
    """Score a dictation attempt by word position.

    正解率が COMPLETION_ACCURACY 以上なら完了回数を加算し、3 回で完了扱いにする。
    """

    user_id = user["google_sub"]
    record = store.exercises.get_exercise(user_id, exercise_id)
    if record is None:
        raise _not_found()

    result = score_dictation(record["text"], payload.user_input)
    counted = result.accuracy >= COMPLETION_ACCURACY
    if counted:
        record = store.exercises.record_completion(user_id, exercise_id) or record
    try:
        store.activity.record_activity(
            user_id, record["language"], exercises_completed=1 if counted else 0
        )
    except Exception as exc:
        logger.warning("activity_record_failed", user_id=user_id, error=str(exc))
    logger.info(
        "dictation_attempt_scored",
        exercise_id=exercise_id,
        user_id=user_id,
        accuracy=result.accuracy,
        counted_as_completion=counted,
        completion_count=record["completion_count"],
    )
    return AttemptResult(
        accuracy=result.accuracy,
        missing_words=result.missing_words,
        extra_words=result.extra_words,
        differences=result.differences,
        counted_as_completion=counted,
        exercise=Exercise.model_validate(record),
    )
