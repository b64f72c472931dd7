"""Timer arithmetic: pure logic, no I/O.

Every reading is recomputed from the task's absolute timestamps, never from a
decremented counter, so a caller that slept or was suspended still gets the
right answer. Time is injected via ``now_ms`` for deterministic testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import RoutineRun, RunTask

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE


@dataclass(frozen=True)
class TimeRemaining:
    remaining_ms: int  # negative when in overtime
    is_overtime: bool
    overtime_ms: int
    elapsed_ms: int
    total_planned_ms: int


def compute_remaining(task: RunTask, now_ms: int) -> Optional[TimeRemaining]:
    """Compute the timer reading for ``task`` at ``now_ms``.

    Returns None if the task has never been activated. While a run is paused
    the caller passes the run's ``paused_at`` in place of the current time.
    """
    if task.started_at is None or task.planned_end_at is None:
        return None

    remaining_ms = task.planned_end_at - now_ms
    return TimeRemaining(
        remaining_ms=remaining_ms,
        is_overtime=remaining_ms < 0,
        overtime_ms=max(0, -remaining_ms),
        elapsed_ms=now_ms - task.started_at,
        total_planned_ms=task.total_planned_ms,
    )


def reading_time(run: RoutineRun, now_ms: int) -> int:
    """The instant a reading should be taken at: frozen at ``paused_at`` while paused."""
    return run.paused_at if run.paused_at is not None else now_ms


def compute_run_remaining(run: RoutineRun, now_ms: int) -> Optional[TimeRemaining]:
    """Reading for the run's active task, honoring pause."""
    task = run.active_task
    if task is None:
        return None
    return compute_remaining(task, reading_time(run, now_ms))


def format_time(ms: int) -> str:
    """Format milliseconds as 'M:SS' (sign dropped)."""
    total_seconds = abs(ms) // MS_PER_SECOND
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    return f"{minutes}:{seconds:02d}"


def format_time_remaining(reading: TimeRemaining) -> str:
    """'M:SS' while time remains, '+M:SS' in overtime."""
    if reading.is_overtime:
        return f"+{format_time(reading.overtime_ms)}"
    return format_time(reading.remaining_ms)


def format_duration(ms: int) -> str:
    """Format a planned duration as 'Xh Ym', or 'Ym' under an hour."""
    is_negative = ms < 0
    abs_ms = abs(ms)
    hours = abs_ms // MS_PER_HOUR
    minutes = (abs_ms % MS_PER_HOUR) // MS_PER_MINUTE
    sign = "-" if is_negative else ""
    if hours:
        return f"{sign}{hours}h {minutes}m"
    return f"{sign}{minutes}m"
