"""Streak calculation from daily activity dates.

連続学習日数は「今日」から遡って数える。今日まだ学習していない場合は昨日から
数え、途切れる直前の状態（at risk）として扱う。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(frozen=True)
class StreakSummary:
    current_streak: int
    longest_streak: int
    last_activity_date: date | None
    streak_active: bool
    is_at_risk: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_activity_date": (
                self.last_activity_date.isoformat() if self.last_activity_date else None
            ),
            "streak_active": self.streak_active,
            "is_at_risk": self.is_at_risk,
        }


def _longest_run(days: list[date]) -> int:
    longest = 0
    run = 0
    previous: date | None = None
    for day in days:
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def compute_streak(activity_dates: Iterable[date], today: date) -> StreakSummary:
    """Summarise current and longest streaks; future dates are ignored."""

    days = sorted({d for d in activity_dates if d <= today})
    if not days:
        return StreakSummary(0, 0, None, False, False)

    day_set = set(days)
    last_activity = days[-1]
    yesterday = today - timedelta(days=1)
    if today in day_set:
        anchor, at_risk = today, False
    elif yesterday in day_set:
        anchor, at_risk = yesterday, True
    else:
        anchor, at_risk = None, False

    current = 0
    if anchor is not None:
        cursor = anchor
        while cursor in day_set:
            current += 1
            cursor -= timedelta(days=1)

    return StreakSummary(
        current_streak=current,
        longest_streak=max(_longest_run(days), current),
        last_activity_date=last_activity,
        streak_active=current > 0,
        is_at_risk=at_risk,
    )
