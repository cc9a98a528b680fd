"""Daily rollover archiving and prayer-list migration.

A HistoryRecord is written once per calendar date, from the DailyState that
went stale at the day boundary, and is never modified afterwards.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Iterable, Sequence

from .models import (
    DailyState,
    HistoryRecord,
    MindfulnessSummary,
    NutritionSummary,
    PrayerStatus,
    PrayerSummary,
    WorkoutHistoryItem,
    WorkoutSummary,
)
from .persisted import PersistedState
from .presets import CALORIES_PER_MINUTE

logger = logging.getLogger("stemmy.history")


def now_iso() -> str:
    return datetime.now().isoformat()


def normalize_prayers(
    prayers: Iterable[PrayerStatus | str], now: str | None = None
) -> tuple[list[PrayerStatus], bool]:
    """Convert legacy bare-id entries and drop duplicate ids.

    The first entry seen for an id wins. Returns the cleaned list and whether
    anything had to change.
    """
    completed_at = now or now_iso()
    unique: dict[str, PrayerStatus] = {}
    changed = False

    for prayer in prayers:
        if isinstance(prayer, str):
            changed = True
            if prayer not in unique:
                unique[prayer] = PrayerStatus(id=prayer, type="alone", completed_at=completed_at)
        elif prayer.id in unique:
            changed = True
        else:
            unique[prayer.id] = prayer

    return list(unique.values()), changed


def workouts_on(date_str: str, workout_log: Iterable[WorkoutHistoryItem]) -> list[WorkoutHistoryItem]:
    """Log entries whose local timestamp falls on ``date_str``."""
    return [item for item in workout_log if item.date[:10] == date_str]


def estimate_calories(duration_seconds: int) -> int:
    # half-up rounding
    return math.floor(duration_seconds / 60 * CALORIES_PER_MINUTE + 0.5)


def build_history_record(
    stale: DailyState,
    stale_date: str,
    workout_log: Iterable[WorkoutHistoryItem],
    now: str | None = None,
) -> HistoryRecord:
    day_workouts = workouts_on(stale_date, workout_log)
    duration = sum(item.duration for item in day_workouts)
    prayers, _ = normalize_prayers(stale.prayers, now)

    return HistoryRecord(
        date=stale_date,
        workout=WorkoutSummary(
            count=len(day_workouts),
            duration=duration,
            calories=estimate_calories(duration),
        ),
        nutrition=NutritionSummary(
            protein=stale.protein.current,
            water=stale.hydration.glasses,
        ),
        mindfulness=MindfulnessSummary(minutes=stale.mindfulness.minutes),
        prayers=PrayerSummary(completed=prayers),
    )


def append_history(
    history: Sequence[HistoryRecord], record: HistoryRecord
) -> tuple[list[HistoryRecord], bool]:
    """Insert ``record`` unless its date is already archived.

    Returns the history sorted newest first, and whether it was inserted.
    """
    if any(existing.date == record.date for existing in history):
        return list(history), False
    updated = sorted([*history, record], key=lambda h: h.date, reverse=True)
    return updated, True


class HistoryArchiver:
    """Rollover callback for the daily-state container.

    ``workout_log`` is read at rollover time, so it always sees the latest
    stats, not a snapshot taken when the archiver was built.
    """

    def __init__(
        self,
        history: PersistedState[list[HistoryRecord]],
        workout_log: Callable[[], Sequence[WorkoutHistoryItem]],
        now: Callable[[], str] = now_iso,
    ):
        self.history = history
        self._workout_log = workout_log
        self._now = now

    def __call__(self, stale: DailyState, stale_date: str) -> None:
        self.archive(stale, stale_date)

    def archive(self, stale: DailyState, stale_date: str) -> bool:
        record = build_history_record(stale, stale_date, self._workout_log(), self._now())
        updated, inserted = append_history(self.history.value, record)
        if not inserted:
            logger.info("History for %s already archived, skipping", stale_date)
            return False
        self.history.set(updated)
        logger.info(
            "Archived %s: %d workout(s), %dg protein, %d glasses, %d/%d prayers",
            stale_date,
            record.workout.count,
            record.nutrition.protein,
            record.nutrition.water,
            len(record.prayers.completed),
            record.prayers.total,
        )
        return True
