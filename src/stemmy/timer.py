"""Workout session timer: pure logic, no I/O.

All durations are whole seconds. The engine never reads a clock; a tick
source (see :mod:`stemmy.scheduler`) calls ``tick()`` once per elapsed second
while the session is running, so every phase-boundary evaluation happens
inside a single ``tick()`` call.

Phase flow::

    IDLE -> PREP -> WORK -> REST -> WORK ... -> REST -> PREP (next exercise) ... -> COMPLETE

The last set of the last exercise skips its REST and goes straight to
COMPLETE.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from .models import Exercise
from .presets import PREP_TIME

logger = logging.getLogger("stemmy.timer")


class Phase(str, Enum):
    IDLE = "IDLE"
    PREP = "PREP"
    WORK = "WORK"
    REST = "REST"
    COMPLETE = "COMPLETE"


class TimerEvent(Enum):
    PHASE_CHANGED = "phase_changed"          # (new_phase, prev_phase)
    EXERCISE_COMPLETE = "exercise_complete"  # (exercise_index,)
    WORKOUT_COMPLETE = "workout_complete"    # ()
    TICK = "tick"                            # (time_remaining, phase)


ACTIVE_PHASES = (Phase.PREP, Phase.WORK, Phase.REST)


@dataclass
class TimerState:
    phase: Phase = Phase.IDLE
    time_remaining: int = 0
    current_set: int = 0
    total_sets: int = 0
    current_exercise_index: int = 0
    total_exercises: int = 0
    work_time: int = 0
    rest_time: int = 0
    is_running: bool = False


@dataclass
class TickResult:
    """What one action did. Listeners have already been notified."""

    events: list[TimerEvent] = field(default_factory=list)
    transitions: list[tuple[Phase, Phase]] = field(default_factory=list)
    completed_exercise: int | None = None


Listener = Callable[..., None]


def format_time(seconds: int) -> str:
    """Format seconds as 'M:SS'."""
    mins, secs = divmod(max(0, seconds), 60)
    return f"{mins}:{secs:02d}"


def format_duration(seconds: int) -> str:
    return f"{round(seconds / 60)} min"


def calculate_workout_duration(exercises: Sequence[Exercise]) -> int:
    """Planned session length in seconds, excluding prep countdowns."""
    return sum(ex.sets * ex.work + (ex.sets - 1) * ex.rest for ex in exercises)


class SessionTimer:
    """Drives one guided session across exercises and sets.

    Callbacks may be passed as keyword arguments or registered later with
    ``add_listener``. They fire synchronously, after the state change, in
    this order: exercise/workout complete, tick, phase changed.
    """

    def __init__(
        self,
        exercises: Sequence[Exercise] = (),
        *,
        on_phase_change: Listener | None = None,
        on_exercise_complete: Listener | None = None,
        on_workout_complete: Listener | None = None,
        on_tick: Listener | None = None,
    ):
        self._listeners: dict[TimerEvent, list[Listener]] = {event: [] for event in TimerEvent}
        for event, callback in (
            (TimerEvent.PHASE_CHANGED, on_phase_change),
            (TimerEvent.EXERCISE_COMPLETE, on_exercise_complete),
            (TimerEvent.WORKOUT_COMPLETE, on_workout_complete),
            (TimerEvent.TICK, on_tick),
        ):
            if callback is not None:
                self._listeners[event].append(callback)

        self._exercises: list[Exercise] = []
        self._state = TimerState()
        self._elapsed_seconds = 0
        self.init(exercises)

    # ---- Listeners ----

    def add_listener(self, event: TimerEvent, callback: Listener) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: TimerEvent, callback: Listener) -> None:
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    # ---- Read-only properties ----

    @property
    def state(self) -> TimerState:
        """A copy of the live state. Mutating it has no effect on the timer."""
        return dataclasses.replace(self._state)

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def time_remaining(self) -> int:
        return self._state.time_remaining

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def exercises(self) -> tuple[Exercise, ...]:
        return tuple(self._exercises)

    @property
    def current_exercise(self) -> Exercise | None:
        index = self._state.current_exercise_index
        if self._exercises and 0 <= index < len(self._exercises):
            return self._exercises[index]
        return None

    @property
    def elapsed_seconds(self) -> int:
        """Seconds actually ticked since ``start()``; pauses are excluded."""
        return self._elapsed_seconds

    def snapshot(self) -> dict:
        """Read-only camelCase view for UI clients."""
        s = self._state
        current = self.current_exercise
        return {
            "phase": s.phase.value,
            "timeRemaining": s.time_remaining,
            "currentSet": s.current_set,
            "totalSets": s.total_sets,
            "currentExerciseIndex": s.current_exercise_index,
            "totalExercises": s.total_exercises,
            "isRunning": s.is_running,
            "currentExercise": current.to_json_dict() if current else None,
        }

    # ---- Actions ----

    def init(self, exercises: Sequence[Exercise]) -> TickResult:
        """Load a plan and park at IDLE on its first exercise."""
        self._exercises = list(exercises)
        return self._load(0)

    def start(self) -> TickResult:
        if self._state.phase != Phase.IDLE or not self._exercises:
            return TickResult()
        prev = self._state.phase
        self._state.phase = Phase.PREP
        self._state.time_remaining = PREP_TIME
        self._state.is_running = True
        self._elapsed_seconds = 0
        result = TickResult(transitions=[(Phase.PREP, prev)])
        self._notify_phase_changes(result)
        return result

    def pause(self) -> TickResult:
        self._state.is_running = False
        return TickResult()

    def resume(self) -> TickResult:
        if self._state.phase in ACTIVE_PHASES:
            self._state.is_running = True
        return TickResult()

    def toggle(self) -> TickResult:
        if self._state.phase == Phase.IDLE:
            return self.start()
        if self._state.is_running:
            return self.pause()
        return self.resume()

    def reset(self) -> TickResult:
        """Abort the session and reload the plan from its first exercise."""
        return self._load(0)

    def set_exercise(self, index: int) -> bool:
        """Jump to ``index`` and park at IDLE there. Out-of-range is ignored."""
        if not 0 <= index < len(self._exercises):
            logger.debug("set_exercise(%d) rejected, plan has %d exercises", index, len(self._exercises))
            return False
        self._load(index)
        return True

    def tick(self) -> TickResult:
        """Apply one elapsed second. No-op while paused or stopped."""
        result = TickResult()
        if not self._state.is_running:
            return result

        self._state.time_remaining = max(0, self._state.time_remaining - 1)
        self._elapsed_seconds += 1

        # A zero-length REST resolves within the same tick.
        while self._state.is_running and self._state.time_remaining == 0:
            self._advance_phase(result)

        if result.completed_exercise is not None:
            result.events.append(TimerEvent.EXERCISE_COMPLETE)
            self._emit(TimerEvent.EXERCISE_COMPLETE, result.completed_exercise)
        if self._state.phase == Phase.COMPLETE and result.transitions:
            result.events.append(TimerEvent.WORKOUT_COMPLETE)
            self._emit(TimerEvent.WORKOUT_COMPLETE)

        result.events.append(TimerEvent.TICK)
        self._emit(TimerEvent.TICK, self._state.time_remaining, self._state.phase)

        self._notify_phase_changes(result)
        return result

    # ---- Internal ----

    def _load(self, index: int) -> TickResult:
        prev = self._state.phase
        if not self._exercises:
            self._state = TimerState()
        else:
            exercise = self._exercises[index]
            self._state = TimerState(
                phase=Phase.IDLE,
                time_remaining=PREP_TIME,
                current_set=1,
                total_sets=exercise.sets,
                current_exercise_index=index,
                total_exercises=len(self._exercises),
                work_time=exercise.work,
                rest_time=exercise.rest,
                is_running=False,
            )
        self._elapsed_seconds = 0
        result = TickResult()
        if prev != Phase.IDLE:
            result.transitions.append((Phase.IDLE, prev))
        self._notify_phase_changes(result)
        return result

    def _is_last_set_of_last_exercise(self) -> bool:
        s = self._state
        return s.current_set >= s.total_sets and s.current_exercise_index >= s.total_exercises - 1

    def _advance_phase(self, result: TickResult) -> None:
        s = self._state
        prev = s.phase

        if s.phase == Phase.PREP:
            s.phase = Phase.WORK
            s.time_remaining = s.work_time

        elif s.phase == Phase.WORK:
            if self._is_last_set_of_last_exercise():
                self._complete()
            else:
                # Next set vs next exercise is decided when this rest ends.
                s.phase = Phase.REST
                s.time_remaining = s.rest_time

        elif s.phase == Phase.REST:
            if s.current_set < s.total_sets:
                s.phase = Phase.WORK
                s.current_set += 1
                s.time_remaining = s.work_time
            elif s.current_exercise_index < s.total_exercises - 1:
                result.completed_exercise = s.current_exercise_index
                nxt = self._exercises[s.current_exercise_index + 1]
                s.phase = Phase.PREP
                s.time_remaining = PREP_TIME
                s.current_exercise_index += 1
                s.current_set = 1
                s.total_sets = nxt.sets
                s.work_time = nxt.work
                s.rest_time = nxt.rest
                s.is_running = True
            else:
                self._complete()

        else:
            # IDLE/COMPLETE are never running; nothing to advance.
            s.is_running = False
            return

        logger.debug("Phase %s -> %s (exercise %d, set %d/%d)",
                     prev.value, s.phase.value, s.current_exercise_index, s.current_set, s.total_sets)
        result.transitions.append((s.phase, prev))

    def _complete(self) -> None:
        self._state.phase = Phase.COMPLETE
        self._state.time_remaining = 0
        self._state.is_running = False

    def _notify_phase_changes(self, result: TickResult) -> None:
        for new_phase, prev_phase in result.transitions:
            result.events.append(TimerEvent.PHASE_CHANGED)
            self._emit(TimerEvent.PHASE_CHANGED, new_phase, prev_phase)

    def _emit(self, event: TimerEvent, *args) -> None:
        for callback in list(self._listeners[event]):
            callback(*args)
