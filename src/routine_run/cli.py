#!/usr/bin/env python3
"""routine-run CLI.

Guides you through a routine one timed task at a time.

Usage:
    routine-run preview morning.yaml --pace low     # Which tasks you'd get
    routine-run run morning.yaml --pace steady      # Start a run
    routine-run focus "Inbox zero" --minutes 20     # Single-task focus run
    routine-run resume                              # Continue the saved run
    routine-run status                              # Show the saved run
    routine-run discard                             # Forget the saved run

Keys while running:
    space  pause / resume        n  done, next task     s  skip task
    +/-    one minute more/less  a  toggle auto-advance  1-9 toggle subtask
    q      end the run
"""

from __future__ import annotations

import asyncio
import logging
import sys
import termios
import tty
from pathlib import Path
from typing import Optional

import click
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .audio import AnnouncementQueue, ConsoleNotifier, system_speak
from .config import RunConfig, get_config, pace_option, verbose_option
from .derivation import derive_visible_tasks
from .engine import create_run_from_item, create_run_from_template, parse_estimated_duration, run_progress
from .host import RunHost, now_ms
from .models import Pace, RoutineRun, RunStatus, RunTask, TaskStatus
from .store import RunStateStore
from .templates import TemplateError, load_template
from .timer import MS_PER_MINUTE, compute_run_remaining, format_duration, format_time_remaining

console = Console()
logger = logging.getLogger("routine_run")

EXTEND_STEP_MS = MS_PER_MINUTE

_STATUS_STYLES = {
    TaskStatus.PENDING: "white",
    TaskStatus.ACTIVE: "bold green",
    TaskStatus.COMPLETED: "dim",
    TaskStatus.SKIPPED: "dim yellow",
}

_QUEUE_RANK = {
    TaskStatus.ACTIVE: 0,
    TaskStatus.PENDING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.SKIPPED: 2,
}


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(level=logging.WARNING, format="%(message)s", handlers=[handler], force=True)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def _load_config(verbose: bool) -> RunConfig:
    config = get_config()
    _configure_logging(verbose or config.verbose)
    return config


def _position(task: RunTask) -> str:
    if task.status == TaskStatus.ACTIVE:
        return "▶"
    if task.status == TaskStatus.PENDING:
        return str(task.order + 1)
    return ""


def _tasks_table(run: RoutineRun) -> Table:
    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("#", style="dim", width=3)
    table.add_column("Task")
    table.add_column("Planned", justify="right")
    table.add_column("Status")

    for task in sorted(run.tasks, key=lambda t: (_QUEUE_RANK[t.status], t.order)):
        style = _STATUS_STYLES[task.status]
        name = Text(task.name, style=style)
        if task.auto_advance:
            name.append(" ⟳", style="cyan")
        table.add_row(
            _position(task),
            name,
            format_duration(task.total_planned_ms),
            Text(task.status.value, style=style),
        )
    return table


def render_run(run: RoutineRun, now: int) -> Panel:
    """Live panel: big timer for the active task plus the queue."""
    done, total = run_progress(run)
    header = Text(f"{run.template_name}  ·  {run.pace.value}  ·  {done}/{total} done  ·  {run.status.value}")

    parts = [header]
    task = run.active_task
    reading = compute_run_remaining(run, now)
    if task is not None and reading is not None:
        style = "bold red" if reading.is_overtime else "bold green"
        timer = Text(f"\n{task.name}  {format_time_remaining(reading)}\n", style=style)
        parts.append(timer)
        for index, subtask in enumerate(task.subtasks, start=1):
            mark = "x" if subtask.checked else " "
            parts.append(Text(f"  {index}. [{mark}] {subtask.text}"))
    parts.append(_tasks_table(run))
    return Panel(Group(*parts), title="routine-run", border_style="cyan")


async def _handle_key(host: RunHost, key: str) -> None:
    run = host.run
    active = run.active_task
    if key == " ":
        if not await host.pause():
            await host.resume()
    elif key == "n":
        await host.advance()
    elif key == "s":
        await host.skip()
    elif key in ("+", "=") and active is not None:
        await host.extend(active.id, EXTEND_STEP_MS)
    elif key in ("-", "_") and active is not None:
        await host.extend(active.id, -EXTEND_STEP_MS)
    elif key == "a" and active is not None:
        await host.toggle_auto_advance(active.id)
    elif key.isdigit() and active is not None:
        index = int(key) - 1
        if 0 <= index < len(active.subtasks):
            await host.toggle_subtask(active.id, active.subtasks[index].id)
    elif key.lower() == "q":
        await host.end()


async def _drive(host: RunHost, tick_seconds: int) -> None:
    """Run the live display, key listener and tick scheduler until the run ends."""
    loop = asyncio.get_running_loop()
    keys: asyncio.Queue[str] = asyncio.Queue()
    scheduler = AsyncIOScheduler()
    host.schedule(scheduler, tick_seconds)

    fd = sys.stdin.fileno()
    original_terminal_settings = termios.tcgetattr(fd)
    tty.setcbreak(fd)
    loop.add_reader(fd, lambda: keys.put_nowait(sys.stdin.read(1)))
    scheduler.start()

    try:
        with Live(render_run(host.run, now_ms()), console=console, refresh_per_second=4) as live:
            while not host.run.status.is_terminal:
                try:
                    key = await asyncio.wait_for(keys.get(), timeout=0.25)
                except asyncio.TimeoutError:
                    key = None
                if key:
                    await _handle_key(host, key)
                live.update(render_run(host.run, now_ms()))
    finally:
        scheduler.shutdown(wait=False)
        loop.remove_reader(fd)
        termios.tcsetattr(fd, termios.TCSADRAIN, original_terminal_settings)

    if host.announcer is not None:
        try:
            await asyncio.wait_for(host.announcer.join(), timeout=30)
        except asyncio.TimeoutError:
            logger.warning("Gave up waiting for queued announcements")
        await host.announcer.close()


def _make_speaker(speak: bool):
    async def print_speech(text: str) -> None:
        console.print(f"[magenta]♪[/magenta] {text}")

    if not speak:
        return print_speech

    def speak_or_print(text: str) -> None:
        if not system_speak(text):
            console.print(f"[magenta]♪[/magenta] {text}")

    return speak_or_print


async def _run_host(run: RoutineRun, config: RunConfig, speak: bool, start: bool) -> RoutineRun:
    store = RunStateStore(config.db_path)
    await store.init()
    host = RunHost(
        run,
        store=store,
        announcer=AnnouncementQueue(_make_speaker(speak)),
        notifier=ConsoleNotifier(),
        config=config.announcements,
    )
    await store.save(run)
    if start:
        await host.start()
    await _drive(host, config.tick_seconds)
    return host.run


async def _saved_run(config: RunConfig) -> Optional[RoutineRun]:
    return await RunStateStore(config.db_path).load()


def _refuse_if_live(config: RunConfig, replace: bool) -> None:
    saved = asyncio.run(_saved_run(config))
    if saved is not None and not saved.status.is_terminal and not replace:
        raise click.ClickException(
            f"A run of '{saved.template_name}' is still {saved.status.value}. "
            "Use 'routine-run resume', or pass --replace to start over."
        )


def _print_outcome(run: RoutineRun) -> None:
    done, total = run_progress(run)
    completed = sum(1 for t in run.tasks if t.status == TaskStatus.COMPLETED)
    console.print(f"[bold]{run.template_name}[/bold]: {run.status.value}, {completed} completed, {done}/{total} finished")


@click.group()
def cli():
    """Guided, timed routines with gentle voice cues."""


@cli.command()
@click.argument("template", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pace_option
def preview(template: Path, pace: str):
    """List the tasks TEMPLATE would run at PACE."""
    try:
        routine = load_template(template)
    except TemplateError as e:
        raise click.ClickException(str(e))

    visible = derive_visible_tasks(routine.tasks, Pace(pace))
    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Task")
    table.add_column("Planned", justify="right")
    table.add_column("Auto")
    for task in sorted(visible, key=lambda t: t.order):
        table.add_row(task.name, format_duration(task.duration_ms), "yes" if task.auto_advance else "")
    console.print(f"[bold]{routine.name}[/bold] at [cyan]{pace}[/cyan]: {len(visible)} of {len(routine.tasks)} tasks")
    console.print(table)
    total_ms = sum(t.duration_ms for t in visible)
    console.print(f"[dim]Total planned: {format_duration(total_ms)}[/dim]")


@cli.command()
@click.argument("template", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pace_option
@click.option("--speak/--no-speak", default=False, help="Use the system text-to-speech command")
@click.option("--replace", is_flag=True, help="Replace an unfinished saved run")
@verbose_option
def run(template: Path, pace: str, speak: bool, replace: bool, verbose: bool):
    """Start a run of TEMPLATE."""
    config = _load_config(verbose)
    try:
        routine = load_template(template)
    except TemplateError as e:
        raise click.ClickException(str(e))
    _refuse_if_live(config, replace)

    new_run = create_run_from_template(routine, Pace(pace), now_ms())
    if not new_run.tasks:
        raise click.ClickException(f"No tasks in '{routine.name}' at the {pace} pace")
    final = asyncio.run(_run_host(new_run, config, speak, start=True))
    _print_outcome(final)


@cli.command()
@click.argument("title")
@click.option("--minutes", "-m", type=click.IntRange(min=1), default=None, help="Planned minutes")
@click.option("--estimate", "-e", default=None, help="Estimate such as '~20 min'")
@click.option("--speak/--no-speak", default=False, help="Use the system text-to-speech command")
@click.option("--replace", is_flag=True, help="Replace an unfinished saved run")
@verbose_option
def focus(title: str, minutes: Optional[int], estimate: Optional[str], speak: bool, replace: bool, verbose: bool):
    """Single-task focus run for TITLE."""
    config = _load_config(verbose)
    _refuse_if_live(config, replace)
    duration_ms = minutes * MS_PER_MINUTE if minutes else parse_estimated_duration(estimate)
    new_run = create_run_from_item(title, duration_ms, now_ms())
    final = asyncio.run(_run_host(new_run, config, speak, start=True))
    _print_outcome(final)


@cli.command()
@click.option("--speak/--no-speak", default=False, help="Use the system text-to-speech command")
@verbose_option
def resume(speak: bool, verbose: bool):
    """Continue the saved run."""
    config = _load_config(verbose)
    saved = asyncio.run(_saved_run(config))
    if saved is None:
        raise click.ClickException("No saved run")
    if saved.status.is_terminal:
        raise click.ClickException(f"The saved run is already {saved.status.value}")
    final = asyncio.run(_run_host(saved, config, speak, start=saved.status == RunStatus.NOT_STARTED))
    _print_outcome(final)


@cli.command()
@verbose_option
def status(verbose: bool):
    """Show the saved run."""
    config = _load_config(verbose)
    saved = asyncio.run(_saved_run(config))
    if saved is None:
        console.print("[yellow]No saved run.[/yellow]")
        return
    console.print(render_run(saved, now_ms()))


@cli.command()
@click.confirmation_option(prompt="Discard the saved run?")
@verbose_option
def discard(verbose: bool):
    """Forget the saved run."""
    config = _load_config(verbose)
    asyncio.run(RunStateStore(config.db_path).clear())
    console.print("[green]Saved run discarded.[/green]")


main = cli


if __name__ == "__main__":
    main()
