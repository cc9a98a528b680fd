"""Record types shared by the timer, the daily tracker and the history archive.

Stored and served in camelCase (``completedAt``, ``isOnboarded``) so that
envelopes written by earlier app versions load unchanged. Python code uses
the snake_case attribute names.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Routine = Literal["A", "B"]
PrayerType = Literal["alone", "jamat"]
TaskType = Literal["meal", "supplement", "workout", "habit", "hydration", "cardio"]
TaskCategory = Literal["morning", "afternoon", "evening"]

CUSTOM_ID_PREFIX = "custom-"
PRAYERS_PER_DAY = 5


class StemmyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        """Dump with camelCase keys, the format used on disk and over HTTP."""
        return self.model_dump(mode="json", by_alias=True)


# ---- Workouts ----

class Exercise(StemmyModel):
    name: str
    detail: str = ""
    sets: int = Field(ge=1)
    work: int = Field(ge=1, description="Work interval in seconds")
    rest: int = Field(ge=0, description="Rest interval in seconds")


class WorkoutPreset(StemmyModel):
    id: str
    name: str
    icon: str = ""
    exercises: list[Exercise] = Field(default_factory=list)
    routine: Optional[Routine] = None

    @property
    def is_custom(self) -> bool:
        """Only custom presets may be edited; built-ins must be duplicated first."""
        return self.id.startswith(CUSTOM_ID_PREFIX)


# ---- Planner ----

class TaskMeta(StemmyModel):
    protein: Optional[int] = None
    calories: Optional[int] = None
    workout_id: Optional[str] = None
    routine: Optional[Routine] = None


class Task(StemmyModel):
    id: str
    title: str
    subtitle: Optional[str] = None
    time: str = Field(pattern=r"^\d{2}:\d{2}$", description="HH:MM")
    type: TaskType
    icon: Optional[str] = None
    category: Optional[TaskCategory] = None
    completed: bool = False
    meta: Optional[TaskMeta] = None


class NonNegotiable(StemmyModel):
    id: str
    label: str
    icon: Optional[str] = None
    completed: bool = False


# ---- Daily trackers ----

class ProteinTracker(StemmyModel):
    current: int = 0
    goal: int = 140


class HydrationTracker(StemmyModel):
    glasses: int = 0
    goal: int = 8


class MindfulnessTracker(StemmyModel):
    minutes: int = 0
    goal: int = 30


class PrayerStatus(StemmyModel):
    id: str
    type: PrayerType = "alone"
    completed_at: str = ""


class DailyState(StemmyModel):
    """The single mutable "today" record.

    ``prayers`` also accepts the bare prayer ids written by the old schema.
    :func:`stemmy.history.normalize_prayers` rewrites them on open.
    """

    date: str
    tasks: list[Task] = Field(default_factory=list)
    protein: ProteinTracker = Field(default_factory=ProteinTracker)
    hydration: HydrationTracker = Field(default_factory=HydrationTracker)
    mindfulness: MindfulnessTracker = Field(default_factory=MindfulnessTracker)
    non_negotiables: list[NonNegotiable] = Field(default_factory=list)
    active_routine: Routine = "A"
    prayers: list[PrayerStatus | str] = Field(default_factory=list)


# ---- Workout stats ----

class WorkoutHistoryItem(StemmyModel):
    date: str  # ISO timestamp of completion
    workout_id: str
    duration: int  # seconds
    exercises_completed: int


class WorkoutStats(StemmyModel):
    total_workouts: int = 0
    total_time: int = 0
    last_workout: Optional[str] = None
    streak: int = 0
    history: list[WorkoutHistoryItem] = Field(default_factory=list)


# ---- History archive ----

class WorkoutSummary(StemmyModel):
    count: int = 0
    duration: int = 0  # seconds
    calories: int = 0


class NutritionSummary(StemmyModel):
    protein: int = 0
    water: int = 0


class MindfulnessSummary(StemmyModel):
    minutes: int = 0


class PrayerSummary(StemmyModel):
    completed: list[PrayerStatus] = Field(default_factory=list)
    total: int = PRAYERS_PER_DAY


class HistoryRecord(StemmyModel):
    date: str
    workout: WorkoutSummary = Field(default_factory=WorkoutSummary)
    nutrition: NutritionSummary = Field(default_factory=NutritionSummary)
    mindfulness: MindfulnessSummary = Field(default_factory=MindfulnessSummary)
    prayers: PrayerSummary = Field(default_factory=PrayerSummary)


# ---- User ----

class UserProfile(StemmyModel):
    name: str = ""
    email: str = ""
    goal: Literal["lose", "maintain", "gain"] = "maintain"
    routine: Routine = "A"
    weight: float = 70
    height: float = 175
    age: int = 25
    is_onboarded: bool = False
