"""APScheduler-driven clock for the session timer and the daily rollover.

Two kinds of job live on one scheduler:

- ``session_tick``: a 1 s interval job that exists only while a session is
  running. Pausing, resetting or tearing down the session removes it, so no
  stray pulse can reach a stopped timer.
- ``daily_rollover_check``: a low-frequency job that asks the application
  state whether the stored day has gone stale.

The API runs an ``AsyncIOScheduler``; the terminal runner uses a
``BackgroundScheduler``. Both take the same jobs. On the asyncio scheduler
the jobs are registered as coroutines so they run on the event loop next to
the request handlers. On the background scheduler they run on worker
threads, so every session action and rollover check holds the application
state lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .app_state import AppState
from .models import WorkoutPreset
from .timer import SessionTimer, TickResult, TimerEvent

logger = logging.getLogger("stemmy.scheduler")

SESSION_TICK_JOB_ID = "session_tick"
ROLLOVER_JOB_ID = "daily_rollover_check"
TICK_SECONDS = 1
DEFAULT_STALE_CHECK_SECONDS = 60


class IntervalJob:
    """One named interval job that can be switched on and off."""

    def __init__(self, scheduler: BaseScheduler, job_id: str, func: Callable[[], None], seconds: int):
        self.scheduler = scheduler
        self.job_id = job_id
        self.func = func
        self.seconds = seconds
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _target(self) -> Callable:
        if not isinstance(self.scheduler, AsyncIOScheduler):
            return self.func

        func = self.func

        async def run_on_loop():
            func()

        return run_on_loop

    def start(self) -> None:
        if self._active:
            return
        self.scheduler.add_job(
            self._target(),
            trigger=IntervalTrigger(seconds=self.seconds),
            id=self.job_id,
            name=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._active = True
        logger.debug("Started job %s (every %ss)", self.job_id, self.seconds)

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass
        logger.debug("Stopped job %s", self.job_id)


class SessionRunner:
    """Owns the live session: timer, pulse job and completion reporting.

    Every action re-syncs the pulse with the timer's running flag, so the
    pulse exists exactly while the timer is running. Actions and ticks hold
    ``app.lock`` for their whole duration, so a pause can never interleave
    with a tick's phase evaluation.
    """

    def __init__(self, scheduler: BaseScheduler, app: AppState, job_id: str = SESSION_TICK_JOB_ID):
        self.app = app
        self.lock = app.lock
        self.timer = SessionTimer(on_workout_complete=self._on_workout_complete)
        self.workout: WorkoutPreset | None = None
        self.pulse = IntervalJob(scheduler, job_id, self.tick, TICK_SECONDS)
        self.last_recorded: dict | None = None

    def add_listener(self, event: TimerEvent, callback: Callable[..., None]) -> None:
        self.timer.add_listener(event, callback)

    def snapshot(self) -> dict:
        with self.lock:
            data = self.timer.snapshot()
            data["workoutId"] = self.workout.id if self.workout else None
        return data

    # ---- Actions ----

    def load(self, preset: WorkoutPreset) -> TickResult:
        with self.lock:
            self.pulse.stop()
            self.workout = preset
            self.app.select_workout(preset)
            result = self.timer.init(preset.exercises)
        logger.info("Loaded workout %s (%d exercises)", preset.id, len(preset.exercises))
        return result

    def start(self) -> TickResult:
        with self.lock:
            return self._sync(self.timer.start())

    def pause(self) -> TickResult:
        with self.lock:
            return self._sync(self.timer.pause())

    def resume(self) -> TickResult:
        with self.lock:
            return self._sync(self.timer.resume())

    def toggle(self) -> TickResult:
        with self.lock:
            return self._sync(self.timer.toggle())

    def reset(self) -> TickResult:
        with self.lock:
            return self._sync(self.timer.reset())

    def set_exercise(self, index: int) -> bool:
        with self.lock:
            accepted = self.timer.set_exercise(index)
            self._sync(TickResult())
        return accepted

    def tick(self) -> TickResult:
        """Pulse handler. Applies one second, then drops the pulse if the session stopped."""
        with self.lock:
            return self._sync(self.timer.tick())

    def teardown(self) -> None:
        with self.lock:
            self.pulse.stop()

    # ---- Internal ----

    def _sync(self, result: TickResult) -> TickResult:
        if self.timer.is_running:
            self.pulse.start()
        else:
            self.pulse.stop()
        return result

    def _on_workout_complete(self) -> None:
        if self.workout is None:
            return
        duration = self.timer.elapsed_seconds
        exercises = self.timer.state.total_exercises
        self.app.record_workout(self.workout.id, duration, exercises)
        self.last_recorded = {
            "workoutId": self.workout.id,
            "duration": duration,
            "exercises": exercises,
        }


class RolloverWatcher:
    """Runs the daily staleness check on an interval."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        check: Callable[[], bool],
        seconds: int = DEFAULT_STALE_CHECK_SECONDS,
        job_id: str = ROLLOVER_JOB_ID,
        lock: threading.RLock | None = None,
    ):
        self.check = check
        self.lock = lock or threading.RLock()
        self.job = IntervalJob(scheduler, job_id, self.run, seconds)

    def start(self) -> None:
        self.job.start()

    def stop(self) -> None:
        self.job.stop()

    def run(self) -> bool:
        try:
            with self.lock:
                rolled = self.check()
        except Exception:
            logger.exception("Daily rollover check failed")
            return False
        if rolled:
            logger.info("Day boundary crossed, daily state reset")
        return rolled
