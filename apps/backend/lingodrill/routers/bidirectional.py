from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..auth import get_current_user, is_premium_user
from ..config import settings
from ..logging import logger
from ..models.bidirectional import (
    BidirectionalExercise,
    BidirectionalExerciseCreate,
    BidirectionalExerciseUpdate,
    DueExercise,
    MasteredWord,
    ReviewRecord,
    ReviewResult,
    ReviewSubmission,
    ReviewType,
)
from ..srs import ReviewStatus, suggested_review_type
from ..store import store
from ..text_compare import extract_vocabulary_words
from ..translation import translation_service

router = APIRouter(prefix="/api/bidirectional", tags=["bidirectional"])


def _get_owned_or_404(user_id: str, exercise_id: str) -> dict:
    record = store.bidirectional.get_exercise(user_id, exercise_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")
    return record


def _record_activity(user_id: str, language: str, **counts: int) -> None:
    """連続学習日数用の記録。失敗しても本処理は継続する。"""

    try:
        store.activity.record_activity(user_id, language, **counts)
    except Exception as exc:
        logger.warning(
            "activity_record_failed",
            user_id=user_id,
            language=language,
            error_class=exc.__class__.__name__,
            error=str(exc),
        )


@router.post("/exercises", response_model=BidirectionalExercise, status_code=status.HTTP_201_CREATED)
def create_exercise(
    payload: BidirectionalExerciseCreate,
    request: Request,
    user: dict = Depends(get_current_user),
) -> BidirectionalExercise:
    """Save a bidirectional exercise, generating missing translations.

    無料ユーザーは FREE_BIDIRECTIONAL_EXERCISE_LIMIT 件までしか作成できない。
    """

    user_id = user["google_sub"]
    limit = settings.free_bidirectional_exercise_limit
    if not is_premium_user(user) and store.bidirectional.count_exercises(user_id) >= limit:
        logger.info("free_limit_reached", feature="bidirectional", user_id=user_id, limit=limit)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "free_limit_reached",
                "message": f"Free accounts can create up to {limit} bidirectional exercises.",
                "limit": limit,
            },
        )

    normal = (payload.normal_translation or "").strip()
    literal = (payload.literal_translation or "").strip()
    if not normal or not literal:
        generated = translation_service.translate(
            payload.original_sentence,
            payload.target_language,
            payload.support_language,
        )
        normal = normal or generated.normal
        literal = literal or generated.literal

    record = store.bidirectional.create_exercise(
        user_id,
        original_sentence=payload.original_sentence.strip(),
        target_language=payload.target_language.strip().lower(),
        support_language=payload.support_language.strip().lower(),
        normal_translation=normal,
        literal_translation=literal,
    )
    logger.info(
        "bidirectional_exercise_created",
        exercise_id=record["id"],
        user_id=user_id,
        target_language=record["target_language"],
        has_translation=bool(normal),
        request_id=getattr(request.state, "request_id", None),
    )
    return BidirectionalExercise.model_validate(record)


@router.get("/exercises", response_model=list[BidirectionalExercise])
def list_exercises(
    status_filter: ReviewStatus | None = Query(default=None, alias="status"),
    user: dict = Depends(get_current_user),
) -> list[BidirectionalExercise]:
    records = store.bidirectional.list_exercises(
        user["google_sub"], status_filter.value if status_filter else None
    )
    return [BidirectionalExercise.model_validate(r) for r in records]


@router.get("/exercises/{exercise_id}", response_model=BidirectionalExercise)
def get_exercise(exercise_id: str, user: dict = Depends(get_current_user)) -> BidirectionalExercise:
    return BidirectionalExercise.model_validate(_get_owned_or_404(user["google_sub"], exercise_id))


@router.patch("/exercises/{exercise_id}", response_model=BidirectionalExercise)
def update_exercise(
    exercise_id: str,
    payload: BidirectionalExerciseUpdate,
    user: dict = Depends(get_current_user),
) -> BidirectionalExercise:
    record = store.bidirectional.update_exercise(
        user["google_sub"], exercise_id, payload.model_dump(exclude_unset=True)
    )
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")
    return BidirectionalExercise.model_validate(record)


@router.post("/exercises/{exercise_id}/promote", response_model=BidirectionalExercise)
def promote_exercise(exercise_id: str, user: dict = Depends(get_current_user)) -> BidirectionalExercise:
    """Move a learning exercise into the review stack, due immediately.

    既に reviewing / mastered の問題は状態を変えずにそのまま返す。
    """

    user_id = user["google_sub"]
    outcome = store.bidirectional.promote_exercise(user_id, exercise_id)
    if outcome is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")
    record, promoted = outcome
    if promoted:
        _record_activity(user_id, record["target_language"], exercises_completed=1)
    return BidirectionalExercise.model_validate(record)


@router.post("/exercises/{exercise_id}/reviews", response_model=ReviewResult)
def submit_review(
    exercise_id: str,
    payload: ReviewSubmission,
    user: dict = Depends(get_current_user),
) -> ReviewResult:
    """Record a forward/backward recall outcome and schedule the next review.

    習得（mastered）に到達した場合は原文から 3 文字以上の単語を抽出し、
    習得語と語彙リストへ登録する。
    """

    user_id = user["google_sub"]
    outcome = store.bidirectional.apply_review(
        user_id,
        exercise_id,
        review_type=payload.review_type.value,
        user_recall_attempt=payload.user_recall_attempt,
        is_correct=payload.is_correct,
        feedback=payload.feedback,
        now=datetime.now(UTC),
    )
    if outcome is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")
    record, review, decision = outcome

    mastered_words: list[str] = []
    newly_mastered: list[str] = []
    if decision.is_mastered:
        language = record["target_language"]
        mastered_words = extract_vocabulary_words(record["original_sentence"])
        newly_mastered = store.bidirectional.add_mastered_words(
            user_id, mastered_words, language=language, exercise_id=exercise_id
        )
        store.vocabulary.add_missing_words(
            user_id,
            mastered_words,
            language=language,
            example_sentence=record["original_sentence"],
            exercise_id=exercise_id,
        )
        logger.info(
            "bidirectional_exercise_mastered",
            exercise_id=exercise_id,
            user_id=user_id,
            words=len(mastered_words),
            new_words=len(newly_mastered),
        )
    _record_activity(
        user_id,
        record["target_language"],
        exercises_completed=1,
        words_mastered=len(newly_mastered),
    )
    return ReviewResult(
        exercise=BidirectionalExercise.model_validate(record),
        review=ReviewRecord.model_validate(review),
        interval=decision.interval,
        mastered=decision.is_mastered,
        mastered_words=mastered_words,
    )


@router.get("/exercises/{exercise_id}/reviews", response_model=list[ReviewRecord])
def list_reviews(exercise_id: str, user: dict = Depends(get_current_user)) -> list[ReviewRecord]:
    user_id = user["google_sub"]
    _get_owned_or_404(user_id, exercise_id)
    return [ReviewRecord.model_validate(r) for r in store.bidirectional.list_reviews(user_id, exercise_id)]


@router.get("/due", response_model=list[DueExercise])
def list_due(user: dict = Depends(get_current_user)) -> list[DueExercise]:
    """Exercises in review whose due date has passed, oldest first."""

    records = store.bidirectional.list_due(user["google_sub"], now=datetime.now(UTC))
    return [
        DueExercise(
            exercise=BidirectionalExercise.model_validate(r),
            suggested_review_type=ReviewType(suggested_review_type(r["review_round"])),
        )
        for r in records
    ]


@router.get("/mastered-words", response_model=list[MasteredWord])
def list_mastered_words(
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> list[MasteredWord]:
    records = store.bidirectional.list_mastered_words(
        user["google_sub"], language.strip().lower() if language else None
    )
    return [MasteredWord.model_validate(r) for r in records]


@router.delete("/exercises/{exercise_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_exercise(exercise_id: str, user: dict = Depends(get_current_user)) -> Response:
    if not store.bidirectional.delete_exercise(user["google_sub"], exercise_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
