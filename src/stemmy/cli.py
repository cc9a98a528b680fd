#!/usr/bin/env python3
"""
Stemmy CLI

Usage:
    stemmy serve                 # run the local API server
    stemmy run push              # run a session in this terminal
    stemmy timer status          # query a running server
    stemmy timer skip 2
    stemmy workouts | history | stats
"""

from __future__ import annotations

import json
import logging
import time

import click
import requests
from apscheduler.schedulers.background import BackgroundScheduler
from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from .app_state import AppState, NotFoundError
from .config import Config, get_config
from .scheduler import RolloverWatcher, SessionRunner
from .store import KeyValueStore
from .timer import Phase, TimerEvent, calculate_workout_duration, format_duration, format_time

logger = logging.getLogger("stemmy.cli")

console = Console()

PHASE_STYLES = {
    Phase.IDLE.value: "dim",
    Phase.PREP.value: "bold yellow",
    Phase.WORK.value: "bold green",
    Phase.REST.value: "bold cyan",
    Phase.COMPLETE.value: "bold magenta",
}

REFRESH_SECONDS = 0.2
REQUEST_TIMEOUT = 5


def _open_state(config: Config) -> tuple[KeyValueStore, AppState]:
    store = KeyValueStore(config.db_path)
    return store, AppState(store)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Stemmy - workout session timer and daily tracker."""
    config = get_config()
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ============ Server ============

@cli.command()
@click.option("--host", default=None, help="Bind address (default: STEMMY_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: STEMMY_PORT)")
@click.pass_context
def serve(ctx, host, port):
    """Run the local API server."""
    import uvicorn

    from .api import create_app

    config: Config = ctx.obj["config"]
    if host:
        config.host = host
    if port:
        config.port = port
    config.validate()

    click.echo(f"Stemmy API on http://{config.host}:{config.port} (db: {config.db_path})")
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())


# ============ Terminal session ============

def render_session(snapshot: dict, workout_name: str) -> Panel:
    phase = snapshot["phase"]
    style = PHASE_STYLES.get(phase, "")
    current = snapshot.get("currentExercise") or {}

    clock = Text(format_time(snapshot["timeRemaining"]), style=style, justify="center")
    header = Text(phase, style=style, justify="center")

    info = Table.grid(expand=True)
    info.add_column()
    info.add_column(justify="right")
    info.add_row(
        Text(current.get("name", "-"), style="bold"),
        f"Set {snapshot['currentSet']}/{snapshot['totalSets']}",
    )
    info.add_row(
        Text(current.get("detail", ""), style="dim"),
        f"Exercise {snapshot['currentExerciseIndex'] + 1}/{snapshot['totalExercises']}",
    )

    done = snapshot["currentExerciseIndex"] + (1 if phase == Phase.COMPLETE.value else 0)
    progress = ProgressBar(total=max(1, snapshot["totalExercises"]), completed=done)

    footer = Text("Ctrl-C to abort", style="dim", justify="center")
    if not snapshot["isRunning"] and phase != Phase.COMPLETE.value:
        footer = Text("paused", style="yellow", justify="center")

    return Panel(
        Group(header, clock, info, progress, footer),
        title=workout_name,
        box=box.ROUNDED,
        border_style=style or "white",
    )


@cli.command()
@click.argument("workout_id")
@click.pass_context
def run(ctx, workout_id):
    """Run WORKOUT_ID in this terminal. Ctrl-C aborts without recording."""
    config: Config = ctx.obj["config"]
    store, state = _open_state(config)
    scheduler = BackgroundScheduler()
    runner = SessionRunner(scheduler, state)
    watcher = RolloverWatcher(scheduler, state.check_rollover, config.stale_check_seconds, lock=state.lock)

    try:
        try:
            preset = state.get_workout(workout_id)
        except NotFoundError as e:
            raise click.ClickException(str(e))
        if not preset.exercises:
            raise click.ClickException(f"Workout '{workout_id}' has no exercises")

        runner.add_listener(
            TimerEvent.PHASE_CHANGED,
            lambda new, prev: logger.debug("Phase %s -> %s", prev.value, new.value),
        )
        runner.load(preset)
        scheduler.start()
        watcher.start()
        runner.start()

        try:
            with Live(render_session(runner.snapshot(), preset.name), console=console, refresh_per_second=10) as live:
                while runner.timer.phase != Phase.COMPLETE:
                    time.sleep(REFRESH_SECONDS)
                    live.update(render_session(runner.snapshot(), preset.name))
        except KeyboardInterrupt:
            runner.reset()
            console.print("[yellow]Session aborted, nothing recorded[/yellow]")
            return

        recorded = runner.last_recorded or {}
        console.print(
            f"[bold magenta]Workout complete![/bold magenta] "
            f"{recorded.get('exercises', 0)} exercises in {format_duration(recorded.get('duration', 0))}, "
            f"streak {state.stats.value.streak}"
        )
    finally:
        runner.teardown()
        watcher.stop()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        store.close()


# ============ Remote timer ============

def _api(config: Config, method: str, path: str, **kwargs) -> dict:
    url = f"{config.api_url}{path}"
    try:
        resp = requests.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
    except requests.ConnectionError:
        raise click.ClickException(f"Cannot reach Stemmy server at {config.api_url} (is `stemmy serve` running?)")
    except requests.Timeout:
        raise click.ClickException(f"Stemmy server at {config.api_url} timed out")
    if not resp.ok:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise click.ClickException(f"{resp.status_code}: {detail}")
    return resp.json()


def _print_timer(snapshot: dict) -> None:
    style = PHASE_STYLES.get(snapshot["phase"]) or "default"
    current = snapshot.get("currentExercise") or {}
    state = "running" if snapshot["isRunning"] else "stopped"
    console.print(f"[{style}]{snapshot['phase']}[/] {format_time(snapshot['timeRemaining'])} ({state})")
    if snapshot.get("workoutId"):
        console.print(
            f"  {snapshot['workoutId']}: {current.get('name', '-')} "
            f"set {snapshot['currentSet']}/{snapshot['totalSets']}, "
            f"exercise {snapshot['currentExerciseIndex'] + 1}/{snapshot['totalExercises']}"
        )


@cli.group()
def timer():
    """Control the timer of a running server."""


@timer.command("status")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
@click.pass_context
def timer_status(ctx, as_json):
    """Show the current timer state."""
    snapshot = _api(ctx.obj["config"], "GET", "/api/timer")
    if as_json:
        click.echo(json.dumps(snapshot, indent=2))
    else:
        _print_timer(snapshot)


@timer.command("load")
@click.argument("workout_id")
@click.pass_context
def timer_load(ctx, workout_id):
    """Load WORKOUT_ID into the server's timer."""
    _print_timer(_api(ctx.obj["config"], "POST", "/api/timer/load", json={"workoutId": workout_id}))


def _timer_action(action: str):
    @click.pass_context
    def command(ctx):
        _print_timer(_api(ctx.obj["config"], "POST", f"/api/timer/{action}"))

    command.__doc__ = f"{action.capitalize()} the timer."
    return command


for _action in ("start", "pause", "resume", "toggle", "reset"):
    timer.command(_action)(_timer_action(_action))


@timer.command("skip")
@click.argument("index", type=int)
@click.pass_context
def timer_skip(ctx, index):
    """Jump to exercise INDEX (0-based)."""
    result = _api(ctx.obj["config"], "POST", f"/api/timer/exercise/{index}")
    if not result["accepted"]:
        raise click.ClickException(f"No exercise at index {index}")
    _print_timer(result["timer"])


# ============ Local store views ============

@cli.command()
@click.pass_context
def workouts(ctx):
    """List available workout presets."""
    store, state = _open_state(ctx.obj["config"])
    try:
        table = Table(box=box.ROUNDED, title="Workouts")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Exercises", justify="right")
        table.add_column("Est. time", justify="right")
        for preset in state.available_workouts():
            table.add_row(
                preset.id,
                f"{preset.icon} {preset.name}".strip(),
                str(len(preset.exercises)),
                format_duration(calculate_workout_duration(preset.exercises)),
            )
        console.print(table)
    finally:
        store.close()


@cli.command()
@click.option("--limit", "-n", default=14, show_default=True, help="Days to show")
@click.pass_context
def history(ctx, limit):
    """Show archived days, newest first."""
    store, state = _open_state(ctx.obj["config"])
    try:
        records = state.history.value[:limit]
        if not records:
            console.print("[dim]No history yet. Days are archived after midnight.[/dim]")
            return
        table = Table(box=box.ROUNDED, title="History")
        table.add_column("Date", style="cyan")
        table.add_column("Workouts", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("kcal", justify="right")
        table.add_column("Protein", justify="right")
        table.add_column("Water", justify="right")
        table.add_column("Mindful", justify="right")
        table.add_column("Prayers", justify="right")
        for record in records:
            table.add_row(
                record.date,
                str(record.workout.count),
                format_duration(record.workout.duration),
                str(record.workout.calories),
                f"{record.nutrition.protein}g",
                str(record.nutrition.water),
                f"{record.mindfulness.minutes}m",
                f"{len(record.prayers.completed)}/{record.prayers.total}",
            )
        console.print(table)
    finally:
        store.close()


@cli.command()
@click.pass_context
def stats(ctx):
    """Show workout totals and streak."""
    store, state = _open_state(ctx.obj["config"])
    try:
        s = state.stats.value
        table = Table(box=box.ROUNDED, title="Workout stats", show_header=False)
        table.add_column(style="cyan")
        table.add_column(justify="right")
        table.add_row("Total workouts", str(s.total_workouts))
        table.add_row("Total time", format_duration(s.total_time))
        table.add_row("Last workout", s.last_workout or "-")
        table.add_row("Streak", f"{s.streak} day(s)")
        console.print(table)
    finally:
        store.close()


if __name__ == "__main__":
    cli()
