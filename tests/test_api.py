"""HTTP surface of the local server, using FastAPI's TestClient.

The scheduler is replaced with a MagicMock so no real pulse runs; tests
advance the session by calling the runner's tick directly. TestLivePulse
swaps the real AsyncIOScheduler back in.
"""

import asyncio
import time
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi.testclient import TestClient

from stemmy import api
from stemmy.config import Config
from stemmy.presets import PREP_TIME
from stemmy.timer import TimerEvent


class Clock:
    def __init__(self, today: str):
        self.today = today

    def __call__(self) -> str:
        return self.today

    def now(self) -> str:
        return f"{self.today}T12:00:00"


# ---- Helpers ----

def services(client: TestClient) -> api.Services:
    return client.app.state.services


def tick(client: TestClient, times: int = 1) -> None:
    for _ in range(times):
        services(client).runner.tick()


def make_custom(client: TestClient, sets: int = 1, work: int = 2, rest: int = 1) -> dict:
    resp = client.post("/api/workouts", json={
        "name": "Quick",
        "icon": "⚡",
        "exercises": [{"name": "Jumping jacks", "sets": sets, "work": work, "rest": rest}],
    })
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture(autouse=True)
def mock_scheduler(monkeypatch):
    monkeypatch.setattr(api, "AsyncIOScheduler", lambda: MagicMock())


@pytest.fixture
def config(tmp_path):
    return Config(db_path=tmp_path / "stemmy.db")


@pytest.fixture
def clock():
    return Clock("2024-01-01")


@pytest.fixture
def client(config, clock):
    app = api.create_app(config, today=clock, now=clock.now)
    with TestClient(app) as c:
        yield c


# ---- Meta ----

class TestMeta:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Stemmy API"

    def test_recent_logs(self, client):
        data = client.get("/api/logs/recent?limit=5").json()
        assert data["count"] == len(data["logs"]) <= 5

    def test_lifespan_wires_jobs(self, client):
        svc = services(client)
        svc.scheduler.start.assert_called_once()
        assert svc.watcher.job.active


# ---- Timer ----

class TestTimer:
    def test_initial_snapshot(self, client):
        data = client.get("/api/timer").json()
        assert data["phase"] == "IDLE"
        assert data["workoutId"] is None
        assert data["totalExercises"] == 0

    def test_load_and_start(self, client):
        data = client.post("/api/timer/load", json={"workoutId": "push"}).json()
        assert data["workoutId"] == "push"
        assert data["phase"] == "IDLE"
        assert data["timeRemaining"] == PREP_TIME

        data = client.post("/api/timer/start").json()
        assert data["phase"] == "PREP"
        assert data["isRunning"] is True
        assert services(client).runner.pulse.active

    def test_load_unknown_workout(self, client):
        assert client.post("/api/timer/load", json={"workoutId": "nope"}).status_code == 404

    def test_unknown_action(self, client):
        assert client.post("/api/timer/explode").status_code == 422

    def test_pause_resume_toggle_reset(self, client):
        client.post("/api/timer/load", json={"workoutId": "push"})
        client.post("/api/timer/start")
        tick(client, 2)

        paused = client.post("/api/timer/pause").json()
        assert paused["isRunning"] is False
        assert paused["timeRemaining"] == PREP_TIME - 2
        tick(client, 3)
        assert client.get("/api/timer").json()["timeRemaining"] == PREP_TIME - 2

        assert client.post("/api/timer/resume").json()["isRunning"] is True
        assert client.post("/api/timer/toggle").json()["isRunning"] is False

        reset = client.post("/api/timer/reset").json()
        assert reset["phase"] == "IDLE"
        assert reset["timeRemaining"] == PREP_TIME

    def test_seek(self, client):
        client.post("/api/timer/load", json={"workoutId": "push"})
        data = client.post("/api/timer/exercise/2").json()
        assert data["accepted"] is True
        assert data["timer"]["currentExerciseIndex"] == 2

        data = client.post("/api/timer/exercise/99").json()
        assert data["accepted"] is False
        assert data["timer"]["currentExerciseIndex"] == 2

    def test_completed_session_is_recorded(self, client):
        preset = make_custom(client, sets=1, work=2)
        client.post("/api/timer/load", json={"workoutId": preset["id"]})
        client.post("/api/timer/start")
        tick(client, PREP_TIME + 2)

        assert client.get("/api/timer").json()["phase"] == "COMPLETE"
        assert not services(client).runner.pulse.active
        stats = client.get("/api/stats").json()
        assert stats["totalWorkouts"] == 1
        assert stats["totalTime"] == PREP_TIME + 2
        assert stats["history"][0]["workoutId"] == preset["id"]

    def test_active_workout_restored_on_restart(self, config, clock):
        with TestClient(api.create_app(config, today=clock, now=clock.now)) as first:
            first.post("/api/timer/load", json={"workoutId": "legs"})
        with TestClient(api.create_app(config, today=clock, now=clock.now)) as second:
            data = second.get("/api/timer").json()
        assert data["workoutId"] == "legs"
        assert data["phase"] == "IDLE"


class TestLivePulse:
    def test_ticks_run_on_event_loop(self, monkeypatch, config, clock):
        monkeypatch.setattr(api, "AsyncIOScheduler", AsyncIOScheduler)
        on_loop = []

        def record_tick(*_):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)

        with TestClient(api.create_app(config, today=clock, now=clock.now)) as client:
            preset = make_custom(client, sets=1, work=30)
            client.post("/api/timer/load", json={"workoutId": preset["id"]})
            services(client).runner.add_listener(TimerEvent.TICK, record_tick)
            client.post("/api/timer/start")
            time.sleep(2.5)
            paused = client.post("/api/timer/pause").json()
            ticks = len(on_loop)
            time.sleep(1.2)
            assert len(on_loop) == ticks

        assert len(on_loop) >= 2
        assert all(on_loop)
        assert paused["isRunning"] is False
        assert paused["timeRemaining"] == PREP_TIME - ticks


# ---- Daily ----

class TestDaily:
    def test_get_daily(self, client):
        data = client.get("/api/daily").json()
        assert data["date"] == "2024-01-01"
        assert "nonNegotiables" in data
        assert data["protein"] == {"current": 0, "goal": 140}

    def test_trackers(self, client):
        assert client.post("/api/daily/protein", json={"delta": 40}).json()["protein"]["current"] == 40
        assert client.post("/api/daily/hydration", json={"delta": 2}).json()["hydration"]["glasses"] == 2
        assert client.post("/api/daily/mindfulness", json={"delta": -5}).json()["mindfulness"]["minutes"] == 0
        assert client.post("/api/daily/steps", json={"delta": 1}).status_code == 422

    def test_progress(self, client):
        client.post("/api/daily/protein", json={"delta": 140})
        data = client.get("/api/daily/progress").json()
        assert data["nutrition"] == 100
        assert set(data) == {"activity", "nutrition", "mindfulness", "overall"}

    def test_task_lifecycle(self, client):
        created = client.post("/api/daily/tasks", json={"title": "Stretch", "time": "07:15"}).json()
        assert created["type"] == "habit"
        task_id = created["id"]

        updated = client.patch(f"/api/daily/tasks/{task_id}", json={"title": "Yoga"}).json()
        assert updated["title"] == "Yoga"
        assert updated["time"] == "07:15"

        daily = client.post(f"/api/daily/tasks/{task_id}/toggle").json()
        assert daily["tasks"][0]["completed"] is True

        assert client.delete(f"/api/daily/tasks/{task_id}").json()["deleted"] is True
        assert client.delete(f"/api/daily/tasks/{task_id}").status_code == 404

    def test_task_bad_time(self, client):
        assert client.post("/api/daily/tasks", json={"title": "x", "time": "7am"}).status_code == 422

    def test_non_negotiables(self, client):
        data = client.post("/api/daily/non-negotiables/creatine/toggle").json()
        assert next(n for n in data["nonNegotiables"] if n["id"] == "creatine")["completed"] is True
        assert client.post("/api/daily/non-negotiables/nope/toggle").status_code == 404

    def test_prayers(self, client):
        data = client.post("/api/daily/prayers/fajr", json={"type": "jamat"}).json()
        assert data["prayers"] == [{"id": "fajr", "type": "jamat", "completedAt": "2024-01-01T12:00:00"}]
        assert client.post("/api/daily/prayers/fajr", json={"type": "jamat"}).json()["prayers"] == []

    def test_tasks_listing_falls_back_to_routine(self, client):
        ids = [t["id"] for t in client.get("/api/daily/tasks").json()]
        assert "workout-a" in ids


# ---- Lifecycle / history ----

class TestLifecycle:
    def test_foreground_after_midnight_rolls_over(self, client, clock):
        client.post("/api/daily/protein", json={"delta": 60})
        clock.today = "2024-01-02"

        assert client.post("/api/lifecycle/visibility", json={"visible": False}).json()["rolled_over"] is False
        data = client.post("/api/lifecycle/visibility", json={"visible": True}).json()
        assert data == {"rolled_over": True, "date": "2024-01-02"}

        history = client.get("/api/history").json()
        assert [h["date"] for h in history] == ["2024-01-01"]
        assert history[0]["nutrition"]["protein"] == 60
        assert client.get("/api/daily").json()["protein"]["current"] == 0

    def test_reset_stats(self, client, clock):
        clock.today = "2024-01-02"
        client.post("/api/lifecycle/visibility", json={"visible": True})
        data = client.post("/api/stats/reset").json()
        assert data["totalWorkouts"] == 0
        assert client.get("/api/history").json() == []


# ---- Workouts ----

class TestWorkouts:
    def test_list(self, client):
        ids = [w["id"] for w in client.get("/api/workouts").json()]
        assert "push" in ids and "pull" not in ids

    def test_builtin_is_locked(self, client):
        assert client.patch("/api/workouts/push", json={"name": "x"}).status_code == 409
        assert client.delete("/api/workouts/push").status_code == 409
        assert client.delete("/api/workouts/missing").status_code == 404

    def test_duplicate_and_edit(self, client):
        copy = client.post("/api/workouts/push/duplicate").json()
        assert copy["id"].startswith("custom-")

        added = client.post(f"/api/workouts/{copy['id']}/exercises", json={"name": "Dips"}).json()
        assert added["exercises"][-1] == {
            "name": "Dips", "detail": "", "sets": 4, "work": 45, "rest": 30,
        }

        patched = client.patch(f"/api/workouts/{copy['id']}/exercises/0", json={"sets": 2}).json()
        assert patched["exercises"][0]["sets"] == 2
        assert client.patch(f"/api/workouts/{copy['id']}/exercises/0", json={"sets": 0}).status_code == 422
        assert client.delete(f"/api/workouts/{copy['id']}/exercises/99").status_code == 404

        renamed = client.patch(f"/api/workouts/{copy['id']}", json={"name": "My Push"}).json()
        assert renamed["name"] == "My Push"
        assert client.delete(f"/api/workouts/{copy['id']}").json()["deleted"] is True

    def test_create_custom(self, client):
        preset = make_custom(client)
        listed = [w["id"] for w in client.get("/api/workouts").json()]
        assert preset["id"] in listed


# ---- User ----

class TestUser:
    def test_update_user_seeds_tasks(self, client):
        user = client.patch("/api/user", json={"name": "Sam", "routine": "B", "isOnboarded": True}).json()
        assert user["isOnboarded"] is True
        assert client.get("/api/user").json()["name"] == "Sam"
        task_ids = [t["id"] for t in client.get("/api/daily").json()["tasks"]]
        assert "workout-b" in task_ids

    def test_invalid_goal(self, client):
        assert client.patch("/api/user", json={"goal": "bulk"}).status_code == 422
