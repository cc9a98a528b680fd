"""Application state: one object owning every persisted container.

Created once at process start and passed to whatever needs it (API,
session runner, CLI). Each container is loaded from the store on
construction and saved on every mutation.

Construction order matters: history and stats must exist before the daily
container, because loading a stale daily envelope archives it immediately.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from datetime import date, timedelta
from typing import Any, Callable, Optional

from .history import HistoryArchiver, normalize_prayers, now_iso
from .models import (
    CUSTOM_ID_PREFIX,
    DailyState,
    Exercise,
    HistoryRecord,
    HydrationTracker,
    MindfulnessTracker,
    PrayerStatus,
    PrayerType,
    ProteinTracker,
    Task,
    UserProfile,
    WorkoutHistoryItem,
    WorkoutPreset,
    WorkoutStats,
)
from .persisted import PersistedState, today_local
from .presets import (
    DEFAULT_HYDRATION_GOAL,
    DEFAULT_MINDFULNESS_GOAL,
    DEFAULT_PROTEIN_GOAL,
    NON_NEGOTIABLES,
    WORKOUTS,
    get_builtin_workout,
    tasks_for_routine,
)
from .store import KeyValueStore, storage_key

logger = logging.getLogger("stemmy.app_state")


class NotFoundError(LookupError):
    """No task, workout or exercise with the given id/index."""


class PresetLockedError(Exception):
    """Built-in presets are read-only; duplicate them to edit."""


def new_custom_id() -> str:
    return f"{CUSTOM_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _percent(part: float, whole: float) -> int:
    if not whole:
        return 0
    return min(100, math.floor(part / whole * 100 + 0.5))


class AppState:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        today: Callable[[], str] = today_local,
        now: Callable[[], str] = now_iso,
    ):
        self.store = store
        self._today = today
        self._now = now
        # Held by the session runner and rollover job while they touch state
        self.lock = threading.RLock()

        self.user = PersistedState(
            store, storage_key("user"), UserProfile, UserProfile, today=today
        )
        self.stats = PersistedState(
            store, storage_key("stats"), WorkoutStats, WorkoutStats, today=today
        )
        self.history = PersistedState(
            store, storage_key("history"), list[HistoryRecord], list, today=today
        )
        self.archiver = HistoryArchiver(self.history, lambda: self.stats.value.history, now=now)
        self.daily = PersistedState(
            store,
            storage_key("daily"),
            DailyState,
            self._default_daily,
            reset_at_midnight=True,
            on_rollover=self.archiver,
            today=today,
        )
        self.active_workout = PersistedState(
            store, storage_key("active"), Optional[WorkoutPreset], lambda: None, today=today
        )
        self.custom_workouts = PersistedState(
            store, storage_key("custom-workouts"), list[WorkoutPreset], list, today=today
        )
        self.notifications_enabled = PersistedState(
            store, storage_key("notifications"), bool, lambda: False, today=today
        )
        self.voice_enabled = PersistedState(
            store, storage_key("voice"), bool, lambda: True, today=today
        )

        self.normalize_prayers()
        self.ensure_tasks()

    def _default_daily(self) -> DailyState:
        user = self.user.value
        return DailyState(
            date=self._today(),
            tasks=tasks_for_routine(user.routine) if user.is_onboarded else [],
            protein=ProteinTracker(goal=DEFAULT_PROTEIN_GOAL),
            hydration=HydrationTracker(goal=DEFAULT_HYDRATION_GOAL),
            mindfulness=MindfulnessTracker(goal=DEFAULT_MINDFULNESS_GOAL),
            non_negotiables=[n.model_copy(update={"completed": False}) for n in NON_NEGOTIABLES],
            active_routine=user.routine,
        )

    # ---- Day boundary ----

    def check_rollover(self) -> bool:
        """Periodic staleness check; archives and resets yesterday if needed."""
        return self.daily.check_stale()

    def on_visibility_change(self, visible: bool) -> bool:
        return self.daily.on_visibility_change(visible)

    def _today_daily(self) -> DailyState:
        """Today's daily state, rolling yesterday over first if needed."""
        self.daily.check_stale()
        return self.daily.value

    def ensure_tasks(self) -> None:
        """Seed today's schedule for an onboarded user with no tasks yet."""
        user = self.user.value
        if user.is_onboarded and not self._today_daily().tasks:
            tasks = tasks_for_routine(user.routine)
            self.daily.update(lambda d: d.model_copy(update={"tasks": tasks}))

    # ---- User ----

    def update_user(self, **changes: Any) -> UserProfile:
        current = self.user.value
        updated = UserProfile.model_validate({**current.model_dump(), **changes})
        self.user.set(updated)
        self.ensure_tasks()
        return updated

    # ---- Daily trackers ----

    def update_protein(self, delta: int) -> DailyState:
        return self.daily.update(lambda d: d.model_copy(update={
            "protein": d.protein.model_copy(update={"current": max(0, d.protein.current + delta)}),
        }))

    def update_hydration(self, delta: int) -> DailyState:
        return self.daily.update(lambda d: d.model_copy(update={
            "hydration": d.hydration.model_copy(update={"glasses": max(0, d.hydration.glasses + delta)}),
        }))

    def update_mindfulness(self, delta: int) -> DailyState:
        return self.daily.update(lambda d: d.model_copy(update={
            "mindfulness": d.mindfulness.model_copy(update={"minutes": max(0, d.mindfulness.minutes + delta)}),
        }))

    def toggle_non_negotiable(self, item_id: str) -> DailyState:
        def _toggle(d: DailyState) -> DailyState:
            items = [
                n.model_copy(update={"completed": not n.completed}) if n.id == item_id else n
                for n in d.non_negotiables
            ]
            return d.model_copy(update={"non_negotiables": items})

        if not any(n.id == item_id for n in self._today_daily().non_negotiables):
            raise NotFoundError(f"Unknown non-negotiable: {item_id}")
        return self.daily.update(_toggle)

    # ---- Tasks ----

    def _require_task(self, task_id: str) -> Task:
        for task in self._today_daily().tasks:
            if task.id == task_id:
                return task
        raise NotFoundError(f"Unknown task: {task_id}")

    def toggle_task(self, task_id: str) -> DailyState:
        self._require_task(task_id)
        return self.daily.update(lambda d: d.model_copy(update={"tasks": [
            t.model_copy(update={"completed": not t.completed}) if t.id == task_id else t
            for t in d.tasks
        ]}))

    def add_task(self, **fields: Any) -> Task:
        task = Task.model_validate({**fields, "id": new_custom_id()})
        self.daily.update(lambda d: d.model_copy(update={
            "tasks": sorted([*d.tasks, task], key=lambda t: t.time),
        }))
        return task

    def update_task(self, task_id: str, **changes: Any) -> Task:
        current = self._require_task(task_id)
        updated = Task.model_validate({**current.model_dump(), **changes, "id": task_id})
        self.daily.update(lambda d: d.model_copy(update={"tasks": sorted(
            [updated if t.id == task_id else t for t in d.tasks],
            key=lambda t: t.time,
        )}))
        return updated

    def delete_task(self, task_id: str) -> None:
        self._require_task(task_id)
        self.daily.update(lambda d: d.model_copy(update={
            "tasks": [t for t in d.tasks if t.id != task_id],
        }))

    # ---- Prayers ----

    def normalize_prayers(self) -> bool:
        """Rewrite legacy/duplicate prayer entries. Returns True if it saved."""
        prayers, changed = normalize_prayers(self._today_daily().prayers, self._now())
        if changed:
            logger.info("Normalized prayer list (%d entries)", len(prayers))
            self.daily.update(lambda d: d.model_copy(update={"prayers": prayers}))
        return changed

    def mark_prayer(self, prayer_id: str, prayer_type: PrayerType) -> DailyState:
        """Toggle a prayer: add it, switch its type, or clear it if unchanged."""
        self.normalize_prayers()

        def _mark(d: DailyState) -> DailyState:
            prayers: list[PrayerStatus] = list(d.prayers)  # normalized above
            existing = next((p for p in prayers if p.id == prayer_id), None)
            if existing is None:
                prayers.append(PrayerStatus(id=prayer_id, type=prayer_type, completed_at=self._now()))
            elif existing.type == prayer_type:
                prayers = [p for p in prayers if p.id != prayer_id]
            else:
                prayers = [
                    p.model_copy(update={"type": prayer_type}) if p.id == prayer_id else p
                    for p in prayers
                ]
            return d.model_copy(update={"prayers": prayers})

        return self.daily.update(_mark)

    # ---- Computed ----

    def daily_progress(self) -> dict[str, int]:
        d = self.daily.value
        completed = sum(1 for t in d.tasks if t.completed)
        activity = _percent(completed, len(d.tasks) or 1)
        nutrition = _percent(d.protein.current, d.protein.goal or DEFAULT_PROTEIN_GOAL)
        mindfulness = _percent(d.mindfulness.minutes, d.mindfulness.goal or DEFAULT_MINDFULNESS_GOAL)
        overall = math.floor((activity + nutrition + mindfulness) / 3 + 0.5)
        return {
            "activity": activity,
            "nutrition": nutrition,
            "mindfulness": mindfulness,
            "overall": overall,
        }

    def filtered_tasks(self) -> list[Task]:
        tasks = self.daily.value.tasks
        return list(tasks) if tasks else tasks_for_routine(self.user.value.routine)

    # ---- Workout stats ----

    def record_workout(self, workout_id: str, duration: int, exercises: int) -> WorkoutStats:
        """Log a finished session, extend the streak and tick off workout tasks."""
        today = self._today()
        yesterday = (date.fromisoformat(today) - timedelta(days=1)).isoformat()

        def _record(prev: WorkoutStats) -> WorkoutStats:
            if prev.last_workout == today:
                streak = max(1, prev.streak)
            elif prev.last_workout == yesterday:
                streak = prev.streak + 1
            else:
                streak = 1
            item = WorkoutHistoryItem(
                date=self._now(),
                workout_id=workout_id,
                duration=duration,
                exercises_completed=exercises,
            )
            return WorkoutStats(
                total_workouts=prev.total_workouts + 1,
                total_time=prev.total_time + duration,
                last_workout=today,
                streak=streak,
                history=[*prev.history, item],
            )

        stats = self.stats.update(_record)
        self.daily.update(lambda d: d.model_copy(update={"tasks": [
            t.model_copy(update={"completed": True}) if t.type == "workout" else t
            for t in d.tasks
        ]}))
        self.active_workout.set(None)
        logger.info("Recorded workout %s: %ds, %d exercises, streak %d",
                    workout_id, duration, exercises, stats.streak)
        return stats

    def reset_stats(self) -> None:
        """Clear workout stats and the whole history archive."""
        self.stats.set(WorkoutStats())
        self.history.set([])

    # ---- Workouts ----

    def available_workouts(self) -> list[WorkoutPreset]:
        routine = self.user.value.routine
        builtins = [w for w in WORKOUTS if w.routine is None or w.routine == routine]
        return [*builtins, *self.custom_workouts.value]

    def get_workout(self, workout_id: str) -> WorkoutPreset:
        preset = get_builtin_workout(workout_id)
        if preset is not None:
            return preset
        for preset in self.custom_workouts.value:
            if preset.id == workout_id:
                return preset
        raise NotFoundError(f"Unknown workout: {workout_id}")

    def select_workout(self, preset: WorkoutPreset | None) -> None:
        self.active_workout.set(preset)

    def add_workout(self, name: str, exercises: list[Exercise] | None = None,
                    icon: str = "", routine: str | None = None) -> WorkoutPreset:
        preset = WorkoutPreset(
            id=new_custom_id(), name=name, icon=icon,
            exercises=list(exercises or []), routine=routine,
        )
        self.custom_workouts.update(lambda ws: [*ws, preset])
        return preset

    def duplicate_workout(self, workout_id: str) -> WorkoutPreset:
        """Editable copy of any preset, built-in or custom."""
        source = self.get_workout(workout_id)
        copy = source.model_copy(update={"id": new_custom_id(), "name": f"{source.name} (Copy)"}, deep=True)
        self.custom_workouts.update(lambda ws: [*ws, copy])
        return copy

    def _require_custom(self, workout_id: str) -> WorkoutPreset:
        preset = self.get_workout(workout_id)
        if not preset.is_custom:
            raise PresetLockedError(f"Built-in workout '{workout_id}' cannot be edited")
        return preset

    def _replace_custom(self, updated: WorkoutPreset) -> WorkoutPreset:
        self.custom_workouts.update(lambda ws: [updated if w.id == updated.id else w for w in ws])
        return updated

    def update_workout(self, workout_id: str, **changes: Any) -> WorkoutPreset:
        current = self._require_custom(workout_id)
        updated = WorkoutPreset.model_validate({**current.model_dump(), **changes, "id": workout_id})
        return self._replace_custom(updated)

    def delete_workout(self, workout_id: str) -> None:
        self._require_custom(workout_id)
        self.custom_workouts.update(lambda ws: [w for w in ws if w.id != workout_id])

    def add_exercise(self, workout_id: str, exercise: Exercise) -> WorkoutPreset:
        current = self._require_custom(workout_id)
        return self._replace_custom(current.model_copy(update={"exercises": [*current.exercises, exercise]}))

    def update_exercise(self, workout_id: str, index: int, **changes: Any) -> WorkoutPreset:
        current = self._require_custom(workout_id)
        if not 0 <= index < len(current.exercises):
            raise NotFoundError(f"Workout {workout_id} has no exercise {index}")
        exercises = list(current.exercises)
        exercises[index] = Exercise.model_validate({**exercises[index].model_dump(), **changes})
        return self._replace_custom(current.model_copy(update={"exercises": exercises}))

    def delete_exercise(self, workout_id: str, index: int) -> WorkoutPreset:
        current = self._require_custom(workout_id)
        if not 0 <= index < len(current.exercises):
            raise NotFoundError(f"Workout {workout_id} has no exercise {index}")
        exercises = [e for i, e in enumerate(current.exercises) if i != index]
        return self._replace_custom(current.model_copy(update={"exercises": exercises}))
