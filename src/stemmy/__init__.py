"""Workout session timer and daily health tracker."""

__version__ = "0.1.0"

from .app_state import AppState, NotFoundError, PresetLockedError
from .models import DailyState, Exercise, HistoryRecord, WorkoutPreset, WorkoutStats
from .persisted import PersistedState
from .store import KeyValueStore, storage_key
from .timer import Phase, SessionTimer, TickResult, TimerEvent

__all__ = [
    "AppState",
    "DailyState",
    "Exercise",
    "HistoryRecord",
    "KeyValueStore",
    "NotFoundError",
    "PersistedState",
    "Phase",
    "PresetLockedError",
    "SessionTimer",
    "TickResult",
    "TimerEvent",
    "WorkoutPreset",
    "WorkoutStats",
    "storage_key",
]
