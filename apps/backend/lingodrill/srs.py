"""Spaced-repetition interval selection for bidirectional review.

復習間隔は固定の段階表で決まる: 30秒 → 1日 → 3日 → 7日 → 習得済み。
不正解の場合は常に30秒へ戻り、ラウンドも 1 にリセットされる。
ここでは副作用を持たない純粋関数だけを提供し、永続化はストア側で行う。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class ReviewStatus(str, Enum):
    """Lifecycle state of a reviewable item."""

    learning = "learning"
    reviewing = "reviewing"
    mastered = "mastered"


class ReviewInterval(str, Enum):
    """Fixed review intervals used by the bidirectional review stack."""

    thirty_seconds = "30s"
    one_day = "1d"
    three_days = "3d"
    seven_days = "7d"
    mastered = "mastered"

    @property
    def delay(self) -> timedelta | None:
        """Wait before the next review; ``None`` once the item is mastered."""

        return _INTERVAL_DELAYS[self]


_INTERVAL_DELAYS: dict[ReviewInterval, timedelta | None] = {
    ReviewInterval.thirty_seconds: timedelta(seconds=30),
    ReviewInterval.one_day: timedelta(days=1),
    ReviewInterval.three_days: timedelta(days=3),
    ReviewInterval.seven_days: timedelta(days=7),
    ReviewInterval.mastered: None,
}

# ラウンド番号（正解時）→ 次の間隔。5 以上は習得済み扱い。
_CORRECT_INTERVALS: dict[int, ReviewInterval] = {
    1: ReviewInterval.thirty_seconds,
    2: ReviewInterval.one_day,
    3: ReviewInterval.three_days,
    4: ReviewInterval.seven_days,
}

FIRST_ROUND = 1
MASTERY_ROUND = 5


@dataclass(frozen=True)
class ReviewDecision:
    """Result of applying one review outcome to an item."""

    interval: ReviewInterval
    next_round: int
    status: ReviewStatus
    due_at: datetime | None

    @property
    def is_mastered(self) -> bool:
        return self.status is ReviewStatus.mastered


def _normalize_round(review_round: int) -> int:
    try:
        value = int(review_round)
    except (TypeError, ValueError):
        return FIRST_ROUND
    return value if value >= FIRST_ROUND else FIRST_ROUND


def next_interval(is_correct: bool, review_round: int) -> ReviewInterval:
    """Return the next review interval for the given outcome and round.

    | round | correct | result |
    |-------|---------|--------|
    | any   | False   | 30s    |
    | 1     | True    | 30s    |
    | 2     | True    | 1d     |
    | 3     | True    | 3d     |
    | 4     | True    | 7d     |
    | >=5   | True    | mastered |

    ラウンドが 1 未満（不正値）の場合は 1 として扱い、関数を全域で定義する。
    """

    if not is_correct:
        return ReviewInterval.thirty_seconds
    current = _normalize_round(review_round)
    if current >= MASTERY_ROUND:
        return ReviewInterval.mastered
    return _CORRECT_INTERVALS[current]


def next_round(is_correct: bool, review_round: int) -> int:
    """Advance the round counter on success, reset it to 1 on failure."""

    if not is_correct:
        return FIRST_ROUND
    return _normalize_round(review_round) + 1


def schedule_review(
    is_correct: bool, review_round: int, now: datetime
) -> ReviewDecision:
    """Apply a review outcome and compute the item's next state.

    習得済みになった場合は期日を持たない（due_at=None）。それ以外は
    `now + 間隔` を次回期日とし、ステータスは reviewing とする。
    """

    interval = next_interval(is_correct, review_round)
    advanced = next_round(is_correct, review_round)
    delay = interval.delay
    if delay is None:
        return ReviewDecision(
            interval=interval,
            next_round=advanced,
            status=ReviewStatus.mastered,
            due_at=None,
        )
    return ReviewDecision(
        interval=interval,
        next_round=advanced,
        status=ReviewStatus.reviewing,
        due_at=now + delay,
    )


def suggested_review_type(review_round: int) -> str:
    """Alternate recall direction by round: odd rounds forward, even rounds backward."""

    return "forward" if _normalize_round(review_round) % 2 == 1 else "backward"
