"""Built-in schedule, workout presets and daily non-negotiables.

Built-in presets are never edited in place. ``AppState.duplicate_workout``
copies them into ``custom-*`` presets on request.
"""

from __future__ import annotations

from .models import Exercise, NonNegotiable, Task, TaskMeta, WorkoutPreset

PREP_TIME = 5  # seconds of countdown before each exercise's first set
DEFAULT_WORK_TIME = 45
DEFAULT_REST_TIME = 30
DEFAULT_SETS = 4

DEFAULT_PROTEIN_GOAL = 140
DEFAULT_HYDRATION_GOAL = 8
DEFAULT_MINDFULNESS_GOAL = 30

# kcal per minute of logged workout time, used for history records
CALORIES_PER_MINUTE = 10


def _ex(name: str, detail: str, work: int, rest: int, sets: int) -> Exercise:
    return Exercise(name=name, detail=detail, work=work, rest=rest, sets=sets)


DAILY_TASKS: list[Task] = [
    # Morning
    Task(id="wake", time="05:00", title="Wake Up & Hydrate", subtitle="500ml water + movement",
         type="habit", category="morning", icon="☀️"),
    Task(id="morning-cardio", time="05:30", title="Fasted Cardio", subtitle="30 min zone 2",
         type="cardio", category="morning", icon="🏃"),
    Task(id="breakfast", time="06:30", title="Meal 1: Breakfast", subtitle="40g protein, moderate carbs",
         type="meal", category="morning", icon="🍳"),
    # Mid-day
    Task(id="lunch", time="12:00", title="Meal 2: Lunch", subtitle="40g protein, veggies",
         type="meal", category="afternoon", icon="🥗"),
    Task(id="snack", time="15:00", title="Meal 3: Snack", subtitle="20g protein",
         type="meal", category="afternoon", icon="🥜"),
    # Evening, one workout per routine
    Task(id="workout-a", time="17:30", title="Push Day", subtitle="Chest, shoulders, triceps",
         type="workout", category="evening", icon="💪", meta=TaskMeta(routine="A", workout_id="push")),
    Task(id="workout-b", time="17:30", title="Pull Day", subtitle="Back, biceps",
         type="workout", category="evening", icon="💪", meta=TaskMeta(routine="B", workout_id="pull")),
    Task(id="dinner", time="19:00", title="Meal 4: Dinner", subtitle="40g protein, carb reload",
         type="meal", category="evening", icon="🍖"),
    Task(id="wind-down", time="21:00", title="Wind Down", subtitle="No screens, prep for sleep",
         type="habit", category="evening", icon="🌙"),
    Task(id="sleep", time="22:00", title="Sleep", subtitle="7-8 hours target",
         type="habit", category="evening", icon="😴"),
]

WORKOUTS: list[WorkoutPreset] = [
    WorkoutPreset(id="push", name="Push Day", icon="💪", routine="A", exercises=[
        _ex("Bench Press", "Chest focus", 45, 90, 4),
        _ex("Overhead Press", "Shoulders", 40, 90, 4),
        _ex("Incline Dumbbell Press", "Upper chest", 40, 60, 3),
        _ex("Lateral Raises", "Side delts", 30, 45, 3),
        _ex("Tricep Pushdowns", "Triceps", 30, 45, 3),
        _ex("Overhead Tricep Ext", "Long head", 30, 45, 3),
    ]),
    WorkoutPreset(id="pull", name="Pull Day", icon="🏋️", routine="B", exercises=[
        _ex("Deadlift", "Full back", 60, 120, 4),
        _ex("Pull-ups", "Lats width", 45, 90, 4),
        _ex("Barbell Rows", "Back thickness", 45, 90, 4),
        _ex("Face Pulls", "Rear delts", 30, 45, 3),
        _ex("Barbell Curls", "Biceps", 30, 45, 3),
        _ex("Hammer Curls", "Brachialis", 30, 45, 3),
    ]),
    WorkoutPreset(id="legs", name="Leg Day", icon="🦵", exercises=[
        _ex("Squats", "Quads focus", 60, 120, 4),
        _ex("Romanian Deadlift", "Hamstrings", 45, 90, 4),
        _ex("Leg Press", "Volume", 45, 90, 3),
        _ex("Leg Curls", "Hamstrings", 30, 60, 3),
        _ex("Leg Extensions", "Quads", 30, 60, 3),
        _ex("Calf Raises", "Calves", 30, 45, 4),
    ]),
    WorkoutPreset(id="hiit", name="HIIT Cardio", icon="⚡", exercises=[
        _ex("Burpees", "Full body", 30, 30, 4),
        _ex("Mountain Climbers", "Core + cardio", 30, 30, 4),
        _ex("Jump Squats", "Explosive legs", 30, 30, 4),
        _ex("High Knees", "Cardio", 30, 30, 4),
        _ex("Box Jumps", "Power", 30, 45, 3),
    ]),
]

NON_NEGOTIABLES: list[NonNegotiable] = [
    NonNegotiable(id="creatine", label="Creatine 5g", icon="💊"),
    NonNegotiable(id="vitamins", label="Vitamins", icon="🌟"),
    NonNegotiable(id="steps", label="10k Steps", icon="👟"),
    NonNegotiable(id="sleep", label="7+ Hours Sleep", icon="😴"),
    NonNegotiable(id="no-alcohol", label="No Alcohol", icon="🚫"),
    NonNegotiable(id="cold-shower", label="Cold Shower", icon="🥶"),
]


def tasks_for_routine(routine: str) -> list[Task]:
    """Built-in schedule for a routine: untagged tasks plus the routine's own."""
    return [
        task.model_copy(update={"completed": False}, deep=True)
        for task in DAILY_TASKS
        if task.meta is None or task.meta.routine is None or task.meta.routine == routine
    ]


def get_builtin_workout(workout_id: str) -> WorkoutPreset | None:
    for preset in WORKOUTS:
        if preset.id == workout_id:
            return preset
    return None
