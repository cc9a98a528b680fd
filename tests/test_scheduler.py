"""Session pulse and rollover jobs, driven by hand against a mocked scheduler."""

import asyncio
import inspect
import threading
from unittest.mock import MagicMock

import pytest
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stemmy.app_state import AppState
from stemmy.models import Exercise, WorkoutPreset
from stemmy.presets import PREP_TIME
from stemmy.scheduler import (
    ROLLOVER_JOB_ID,
    SESSION_TICK_JOB_ID,
    IntervalJob,
    RolloverWatcher,
    SessionRunner,
)
from stemmy.store import KeyValueStore
from stemmy.timer import Phase, TimerEvent


# ---- Helpers ----

def preset(sets: int = 1, work: int = 2, rest: int = 1, count: int = 1) -> WorkoutPreset:
    return WorkoutPreset(
        id="custom-test",
        name="Test",
        exercises=[Exercise(name=f"Ex {i}", sets=sets, work=work, rest=rest) for i in range(count)],
    )


def pulse_until_stopped(runner: SessionRunner, limit: int = 500) -> int:
    """Fire the pulse job by hand until it is removed. Returns pulses fired."""
    fired = 0
    while runner.pulse.active and fired < limit:
        runner.tick()
        fired += 1
    return fired


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.add_job = MagicMock()
    scheduler.remove_job = MagicMock()
    return scheduler


@pytest.fixture
def app(tmp_path):
    store = KeyValueStore(tmp_path / "stemmy.db")
    yield AppState(store, today=lambda: "2024-01-01", now=lambda: "2024-01-01T09:00:00")
    store.close()


@pytest.fixture
def runner(scheduler, app):
    return SessionRunner(scheduler, app)


# ---- IntervalJob ----

class TestIntervalJob:
    def test_start_adds_interval_job(self, scheduler):
        func = MagicMock()
        job = IntervalJob(scheduler, "job", func, 30)
        job.start()

        scheduler.add_job.assert_called_once()
        args, kwargs = scheduler.add_job.call_args
        assert args[0] is func
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["trigger"].interval.total_seconds() == 30
        assert kwargs["id"] == "job"
        assert kwargs["replace_existing"] is True
        assert kwargs["max_instances"] == 1
        assert job.active

    def test_start_twice_adds_once(self, scheduler):
        job = IntervalJob(scheduler, "job", MagicMock(), 1)
        job.start()
        job.start()
        assert scheduler.add_job.call_count == 1

    def test_stop_removes_job(self, scheduler):
        job = IntervalJob(scheduler, "job", MagicMock(), 1)
        job.start()
        job.stop()
        scheduler.remove_job.assert_called_once_with("job")
        assert not job.active

    def test_stop_when_inactive_is_noop(self, scheduler):
        IntervalJob(scheduler, "job", MagicMock(), 1).stop()
        scheduler.remove_job.assert_not_called()

    def test_stop_tolerates_missing_job(self, scheduler):
        scheduler.remove_job.side_effect = JobLookupError("job")
        job = IntervalJob(scheduler, "job", MagicMock(), 1)
        job.start()
        job.stop()
        assert not job.active

    def test_asyncio_scheduler_gets_coroutine(self):
        scheduler = AsyncIOScheduler()
        func = MagicMock()
        IntervalJob(scheduler, "job", func, 1).start()

        registered = scheduler.get_job("job").func
        assert inspect.iscoroutinefunction(registered)
        asyncio.run(registered())
        func.assert_called_once_with()


# ---- SessionRunner ----

class TestSessionRunner:
    def test_load_parks_idle_without_pulse(self, runner, scheduler, app):
        runner.load(preset())
        assert runner.timer.phase == Phase.IDLE
        assert not runner.pulse.active
        scheduler.add_job.assert_not_called()
        assert app.active_workout.value.id == "custom-test"

    def test_start_begins_pulse(self, runner, scheduler):
        runner.load(preset())
        runner.start()
        assert runner.pulse.active
        assert scheduler.add_job.call_args.kwargs["id"] == SESSION_TICK_JOB_ID

    def test_pause_and_resume_toggle_pulse(self, runner):
        runner.load(preset())
        runner.start()
        runner.pause()
        assert not runner.pulse.active
        runner.resume()
        assert runner.pulse.active
        runner.toggle()
        assert not runner.pulse.active

    def test_reset_stops_pulse(self, runner):
        runner.load(preset())
        runner.start()
        runner.reset()
        assert not runner.pulse.active
        assert runner.timer.phase == Phase.IDLE

    def test_seek_stops_pulse(self, runner):
        runner.load(preset(count=3))
        runner.start()
        assert runner.set_exercise(2) is True
        assert not runner.pulse.active
        assert runner.snapshot()["currentExerciseIndex"] == 2

    def test_completion_records_workout_and_stops(self, runner, app):
        runner.load(preset(sets=2, work=3, rest=2))
        runner.start()
        fired = pulse_until_stopped(runner)

        # prep + work + rest + work
        assert fired == PREP_TIME + 3 + 2 + 3
        assert runner.timer.phase == Phase.COMPLETE
        stats = app.stats.value
        assert stats.total_workouts == 1
        assert stats.total_time == fired
        assert stats.history[0].exercises_completed == 1
        assert runner.last_recorded == {"workoutId": "custom-test", "duration": fired, "exercises": 1}
        assert app.active_workout.value is None

    def test_pause_does_not_count_towards_duration(self, runner, app):
        runner.load(preset(sets=1, work=4))
        runner.start()
        runner.tick()
        runner.pause()
        runner.tick()  # stray pulse after pause
        runner.resume()
        pulse_until_stopped(runner)
        assert app.stats.value.total_time == PREP_TIME + 4

    def test_reset_mid_session_records_nothing(self, runner, app):
        runner.load(preset())
        runner.start()
        runner.tick()
        runner.reset()
        assert app.stats.value.total_workouts == 0

    def test_listeners_see_phase_changes(self, runner):
        seen = []
        runner.add_listener(TimerEvent.PHASE_CHANGED, lambda new, prev: seen.append(new))
        runner.load(preset(sets=1, work=1))
        runner.start()
        pulse_until_stopped(runner)
        assert seen == [Phase.PREP, Phase.WORK, Phase.COMPLETE]

    def test_snapshot_includes_workout_id(self, runner):
        assert runner.snapshot()["workoutId"] is None
        runner.load(preset())
        assert runner.snapshot()["workoutId"] == "custom-test"

    def test_teardown(self, runner):
        runner.load(preset())
        runner.start()
        runner.teardown()
        assert not runner.pulse.active

    def test_shares_app_lock(self, runner, app):
        assert runner.lock is app.lock

    def test_tick_waits_for_action_in_progress(self, runner):
        runner.load(preset(sets=1, work=5))
        runner.start()

        with runner.lock:
            worker = threading.Thread(target=runner.tick)
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            runner.pause()

        worker.join(timeout=2)
        assert not worker.is_alive()
        # the pulse that was waiting lands on a paused timer
        assert runner.snapshot()["timeRemaining"] == PREP_TIME
        assert not runner.timer.is_running
        assert not runner.pulse.active


# ---- RolloverWatcher ----

class TestRolloverWatcher:
    def test_schedules_check(self, scheduler):
        watcher = RolloverWatcher(scheduler, MagicMock(return_value=False), seconds=60)
        watcher.start()
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == ROLLOVER_JOB_ID
        assert kwargs["trigger"].interval.total_seconds() == 60
        watcher.stop()
        scheduler.remove_job.assert_called_once_with(ROLLOVER_JOB_ID)

    def test_run_returns_check_result(self, scheduler):
        assert RolloverWatcher(scheduler, lambda: True).run() is True
        assert RolloverWatcher(scheduler, lambda: False).run() is False

    def test_run_logs_and_survives_errors(self, scheduler, caplog):
        def boom():
            raise RuntimeError("db locked")

        assert RolloverWatcher(scheduler, boom).run() is False
        assert "Daily rollover check failed" in caplog.text

    def test_run_holds_lock(self, scheduler):
        lock = threading.RLock()
        others_got_lock = []

        def check():
            other = threading.Thread(target=lambda: others_got_lock.append(lock.acquire(timeout=0.05)))
            other.start()
            other.join()
            return False

        RolloverWatcher(scheduler, check, lock=lock).run()
        assert others_got_lock == [False]

    def test_with_app_state(self, scheduler, tmp_path):
        today = {"value": "2024-01-01"}
        store = KeyValueStore(tmp_path / "stemmy.db")
        try:
            app = AppState(store, today=lambda: today["value"])
            watcher = RolloverWatcher(scheduler, app.check_rollover)
            assert watcher.run() is False
            today["value"] = "2024-01-02"
            assert watcher.run() is True
            assert [h.date for h in app.history.value] == ["2024-01-01"]
        finally:
            store.close()
