from __future__ import annotations

import csv
import io

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..auth import get_current_user, is_premium_user
from ..config import settings
from ..logging import logger
from ..models.vocabulary import ExportFormat, VocabularyCreate, VocabularyItem
from ..store import store

router = APIRouter(prefix="/api/vocabulary", tags=["vocabulary"])


def _to_tsv(items: list[dict]) -> str:
    """Anki で取り込める `word<TAB>definition<TAB>example` 形式に変換する。"""

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter="\t", lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    for item in items:
        writer.writerow(
            [
                " ".join(str(item.get("word") or "").split()),
                " ".join(str(item.get("definition") or "").split()),
                " ".join(str(item.get("example_sentence") or "").split()),
            ]
        )
    return buffer.getvalue()


@router.get("", response_model=list[VocabularyItem])
def list_vocabulary(
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> list[VocabularyItem]:
    records = store.vocabulary.list_words(
        user["google_sub"], language.strip().lower() if language else None
    )
    return [VocabularyItem.model_validate(r) for r in records]


@router.post("", response_model=VocabularyItem, status_code=status.HTTP_201_CREATED)
def add_vocabulary(payload: VocabularyCreate, user: dict = Depends(get_current_user)) -> VocabularyItem:
    record = store.vocabulary.upsert_word(
        user["google_sub"],
        word=payload.word,
        language=payload.language.strip().lower(),
        definition=payload.definition,
        example_sentence=payload.example_sentence,
        exercise_id=payload.exercise_id,
    )
    return VocabularyItem.model_validate(record)


@router.get("/export")
def export_vocabulary(
    export_format: ExportFormat = Query(default=ExportFormat.json, alias="format"),
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> Response:
    """Export the caller's vocabulary as JSON or Anki-compatible TSV.

    無料ユーザーは FREE_VOCABULARY_EXPORT_LIMIT 件を超える語彙をエクスポートできない。
    """

    user_id = user["google_sub"]
    items = store.vocabulary.list_words(user_id, language.strip().lower() if language else None)
    limit = settings.free_vocabulary_export_limit
    if len(items) > limit and not is_premium_user(user):
        logger.info("free_limit_reached", feature="vocabulary_export", user_id=user_id, limit=limit)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "free_limit_reached",
                "message": f"Free accounts can export up to {limit} vocabulary items.",
                "limit": limit,
            },
        )
    logger.info("vocabulary_exported", user_id=user_id, format=export_format.value, items=len(items))
    if export_format is ExportFormat.tsv:
        return PlainTextResponse(
            _to_tsv(items),
            media_type="text/tab-separated-values",
            headers={"Content-Disposition": 'attachment; filename="vocabulary.tsv"'},
        )
    return JSONResponse(
        content=[VocabularyItem.model_validate(i).model_dump() for i in items],
        headers={"Content-Disposition": 'attachment; filename="vocabulary.json"'},
    )


@router.delete("/{word_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_vocabulary(word_id: str, user: dict = Depends(get_current_user)) -> Response:
    if not store.vocabulary.delete_word(user["google_sub"], word_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vocabulary item not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
