"""
Stemmy API: local FastAPI server for the workout timer and daily tracking.

This server provides:
- The live session timer (load/start/pause/resume/toggle/reset/seek)
- Today's tracker state and its actions
- The archived day history and workout stats
- Custom workout management

A UI client polls ``GET /api/timer`` and reports foreground transitions to
``POST /api/lifecycle/visibility`` so the day rollover runs promptly.
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Literal, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .app_state import AppState, NotFoundError, PresetLockedError
from .config import Config, get_config
from .models import Exercise, StemmyModel, TaskCategory, TaskMeta, TaskType
from .presets import DEFAULT_REST_TIME, DEFAULT_SETS, DEFAULT_WORK_TIME
from .scheduler import RolloverWatcher, SessionRunner
from .store import KeyValueStore

logger = logging.getLogger("stemmy.api")
logger.setLevel(logging.INFO)

# ============ Server-side Log Buffer ============

# Circular buffer of recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records into the circular buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
logging.getLogger("stemmy").addHandler(buffer_handler)
logging.getLogger("uvicorn").addHandler(buffer_handler)


# ============ Services ============

@dataclass
class Services:
    config: Config
    store: KeyValueStore
    state: AppState
    scheduler: AsyncIOScheduler
    runner: SessionRunner
    watcher: RolloverWatcher


def get_services(request: Request) -> Services:
    return request.app.state.services


# ============ Pydantic Models ============

class LoadWorkoutRequest(StemmyModel):
    workout_id: str


class DeltaRequest(StemmyModel):
    delta: int


class VisibilityRequest(StemmyModel):
    visible: bool


class PrayerRequest(StemmyModel):
    type: Literal["alone", "jamat"] = "alone"


class TaskCreateRequest(StemmyModel):
    title: str
    time: str = Field(..., description="HH:MM")
    type: TaskType = "habit"
    subtitle: Optional[str] = None
    icon: Optional[str] = None
    category: Optional[TaskCategory] = None
    meta: Optional[TaskMeta] = None


class TaskUpdateRequest(StemmyModel):
    title: Optional[str] = None
    time: Optional[str] = None
    type: Optional[TaskType] = None
    subtitle: Optional[str] = None
    icon: Optional[str] = None
    category: Optional[TaskCategory] = None
    completed: Optional[bool] = None


class WorkoutCreateRequest(StemmyModel):
    name: str
    icon: str = ""
    routine: Optional[Literal["A", "B"]] = None
    exercises: List[Exercise] = Field(default_factory=list)


class WorkoutUpdateRequest(StemmyModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    routine: Optional[Literal["A", "B"]] = None
    exercises: Optional[List[Exercise]] = None


class ExerciseCreateRequest(StemmyModel):
    name: str
    detail: str = ""
    sets: int = DEFAULT_SETS
    work: int = DEFAULT_WORK_TIME
    rest: int = DEFAULT_REST_TIME


class ExerciseUpdateRequest(StemmyModel):
    name: Optional[str] = None
    detail: Optional[str] = None
    sets: Optional[int] = None
    work: Optional[int] = None
    rest: Optional[int] = None


class UserUpdateRequest(StemmyModel):
    name: Optional[str] = None
    email: Optional[str] = None
    goal: Optional[Literal["lose", "maintain", "gain"]] = None
    routine: Optional[Literal["A", "B"]] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    age: Optional[int] = None
    is_onboarded: Optional[bool] = None


class LogsResponse(BaseModel):
    logs: List[dict]
    count: int


def _changes(body: BaseModel) -> dict:
    return body.model_dump(exclude_unset=True)


def _run(fn: Callable, *args, **kwargs):
    """Call a state action, mapping domain errors to HTTP errors."""
    try:
        return fn(*args, **kwargs)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PresetLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        # pydantic ValidationError is a ValueError
        raise HTTPException(status_code=422, detail=str(e))


router = APIRouter()


# ============ Meta ============

@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.get("/")
async def root():
    return {
        "name": "Stemmy API",
        "version": __version__,
        "docs": "/docs",
    }


@router.get("/api/logs/recent", response_model=LogsResponse)
async def get_recent_logs(limit: int = 50):
    """Most recent server log lines (max 100)."""
    limit = max(0, min(limit, 100))
    recent_logs = list(log_buffer)[-limit:] if limit else []
    return {"logs": recent_logs, "count": len(recent_logs)}


# ============ Timer ============

@router.get("/api/timer")
async def get_timer(services: Services = Depends(get_services)):
    return services.runner.snapshot()


@router.post("/api/timer/load")
async def load_timer(request: LoadWorkoutRequest, services: Services = Depends(get_services)):
    preset = _run(services.state.get_workout, request.workout_id)
    services.runner.load(preset)
    return services.runner.snapshot()


@router.post("/api/timer/{action}")
async def timer_action(
    action: Literal["start", "pause", "resume", "toggle", "reset"],
    services: Services = Depends(get_services),
):
    getattr(services.runner, action)()
    return services.runner.snapshot()


@router.post("/api/timer/exercise/{index}")
async def seek_exercise(index: int, services: Services = Depends(get_services)):
    accepted = services.runner.set_exercise(index)
    return {"accepted": accepted, "timer": services.runner.snapshot()}


# ============ Lifecycle ============

@router.post("/api/lifecycle/visibility")
async def visibility_changed(request: VisibilityRequest, services: Services = Depends(get_services)):
    rolled = services.state.on_visibility_change(request.visible)
    return {"rolled_over": rolled, "date": services.state.daily.value.date}


# ============ Daily ============

@router.get("/api/daily")
async def get_daily(services: Services = Depends(get_services)):
    return services.state.daily.value.to_json_dict()


@router.get("/api/daily/progress")
async def get_daily_progress(services: Services = Depends(get_services)):
    return services.state.daily_progress()


@router.get("/api/daily/tasks")
async def list_tasks(services: Services = Depends(get_services)):
    return [t.to_json_dict() for t in services.state.filtered_tasks()]


@router.post("/api/daily/tasks")
async def create_task(request: TaskCreateRequest, services: Services = Depends(get_services)):
    task = _run(services.state.add_task, **request.model_dump(exclude_none=True))
    return task.to_json_dict()


@router.patch("/api/daily/tasks/{task_id}")
async def update_task(task_id: str, request: TaskUpdateRequest, services: Services = Depends(get_services)):
    task = _run(services.state.update_task, task_id, **_changes(request))
    return task.to_json_dict()


@router.delete("/api/daily/tasks/{task_id}")
async def delete_task(task_id: str, services: Services = Depends(get_services)):
    _run(services.state.delete_task, task_id)
    return {"deleted": True, "id": task_id}


@router.post("/api/daily/tasks/{task_id}/toggle")
async def toggle_task(task_id: str, services: Services = Depends(get_services)):
    return _run(services.state.toggle_task, task_id).to_json_dict()


@router.post("/api/daily/non-negotiables/{item_id}/toggle")
async def toggle_non_negotiable(item_id: str, services: Services = Depends(get_services)):
    return _run(services.state.toggle_non_negotiable, item_id).to_json_dict()


@router.post("/api/daily/prayers/{prayer_id}")
async def mark_prayer(prayer_id: str, request: PrayerRequest, services: Services = Depends(get_services)):
    return services.state.mark_prayer(prayer_id, request.type).to_json_dict()


# Registered after the fixed /api/daily/* paths so they match first
@router.post("/api/daily/{tracker}")
async def update_tracker(
    tracker: Literal["protein", "hydration", "mindfulness"],
    request: DeltaRequest,
    services: Services = Depends(get_services),
):
    action = getattr(services.state, f"update_{tracker}")
    return action(request.delta).to_json_dict()


# ============ History / Stats ============

@router.get("/api/history")
async def get_history(services: Services = Depends(get_services)):
    return [record.to_json_dict() for record in services.state.history.value]


@router.get("/api/stats")
async def get_stats(services: Services = Depends(get_services)):
    return services.state.stats.value.to_json_dict()


@router.post("/api/stats/reset")
async def reset_stats(services: Services = Depends(get_services)):
    services.state.reset_stats()
    logger.info("Stats and history reset")
    return services.state.stats.value.to_json_dict()


# ============ Workouts ============

@router.get("/api/workouts")
async def list_workouts(services: Services = Depends(get_services)):
    return [w.to_json_dict() for w in services.state.available_workouts()]


@router.post("/api/workouts")
async def create_workout(request: WorkoutCreateRequest, services: Services = Depends(get_services)):
    preset = services.state.add_workout(
        request.name, request.exercises, icon=request.icon, routine=request.routine
    )
    return preset.to_json_dict()


@router.patch("/api/workouts/{workout_id}")
async def update_workout(workout_id: str, request: WorkoutUpdateRequest, services: Services = Depends(get_services)):
    return _run(services.state.update_workout, workout_id, **_changes(request)).to_json_dict()


@router.delete("/api/workouts/{workout_id}")
async def delete_workout(workout_id: str, services: Services = Depends(get_services)):
    _run(services.state.delete_workout, workout_id)
    return {"deleted": True, "id": workout_id}


@router.post("/api/workouts/{workout_id}/duplicate")
async def duplicate_workout(workout_id: str, services: Services = Depends(get_services)):
    return _run(services.state.duplicate_workout, workout_id).to_json_dict()


@router.post("/api/workouts/{workout_id}/exercises")
async def add_exercise(workout_id: str, request: ExerciseCreateRequest, services: Services = Depends(get_services)):
    exercise = _run(Exercise.model_validate, request.model_dump())
    return _run(services.state.add_exercise, workout_id, exercise).to_json_dict()


@router.patch("/api/workouts/{workout_id}/exercises/{index}")
async def update_exercise(
    workout_id: str, index: int, request: ExerciseUpdateRequest, services: Services = Depends(get_services)
):
    return _run(services.state.update_exercise, workout_id, index, **_changes(request)).to_json_dict()


@router.delete("/api/workouts/{workout_id}/exercises/{index}")
async def delete_exercise(workout_id: str, index: int, services: Services = Depends(get_services)):
    return _run(services.state.delete_exercise, workout_id, index).to_json_dict()


# ============ User ============

@router.get("/api/user")
async def get_user(services: Services = Depends(get_services)):
    return services.state.user.value.to_json_dict()


@router.patch("/api/user")
async def update_user(request: UserUpdateRequest, services: Services = Depends(get_services)):
    return _run(services.state.update_user, **_changes(request)).to_json_dict()


# ============ App ============

def create_app(
    config: Config | None = None,
    *,
    today: Callable[[], str] | None = None,
    now: Callable[[], str] | None = None,
) -> FastAPI:
    """Build the app. ``today``/``now`` override the clocks (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or get_config()
        logging.getLogger("stemmy").setLevel(cfg.log_level)

        clocks = {}
        if today is not None:
            clocks["today"] = today
        if now is not None:
            clocks["now"] = now

        store = KeyValueStore(cfg.db_path)
        state = AppState(store, **clocks)
        scheduler = AsyncIOScheduler()
        runner = SessionRunner(scheduler, state)
        watcher = RolloverWatcher(scheduler, state.check_rollover, cfg.stale_check_seconds, lock=state.lock)

        if state.active_workout.value is not None:
            runner.load(state.active_workout.value)

        scheduler.start()
        watcher.start()
        app.state.services = Services(cfg, store, state, scheduler, runner, watcher)
        logger.info("Stemmy API started (db=%s, day=%s)", cfg.db_path, state.daily.value.date)

        yield

        runner.teardown()
        watcher.stop()
        scheduler.shutdown(wait=False)
        store.close()
        logger.info("Stemmy API stopped")

    app = FastAPI(
        title="Stemmy API",
        description="Local server for the workout session timer and daily tracking",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
