from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query

from ..auth import get_current_user
from ..store import store
from ..streaks import compute_streak

router = APIRouter(prefix="/api/streaks", tags=["streaks"])


@router.get("")
def get_streak(
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> dict[str, object]:
    """Current and longest streak for the caller (optionally per language)."""

    dates = store.activity.list_activity_dates(
        user["google_sub"], language.strip().lower() if language else None
    )
    summary = compute_streak(dates, datetime.now(UTC).date())
    return summary.as_dict()
