"""Announcement trigger bookkeeping: pure predicates, no I/O.

Four independent triggers are evaluated against the active task on every tick:

- auto-advance warning: once, in the last minute of an auto-advancing task
- zero crossing: once, when remaining time goes from positive to <= 0
- milestone: once per elapsed-minute boundary (every N minutes)
- overtime reminder: once per overtime-minute boundary (every N minutes)

Predicates only decide. Recording the "already announced" markers and the
actual speech/notification belong to the caller (see ``apply_announcements``
and ``host.RunHost``), so a missing audio device never affects run state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from .config import AnnouncementConfig
from .engine import advance_to_next_task, get_next_pending_task
from .models import RoutineRun, RunStatus, RunTask
from .timer import MS_PER_MINUTE, MS_PER_SECOND, TimeRemaining

AUTO_ADVANCE_WARNING_MS = MS_PER_MINUTE
# Readings this early in a task never count as a zero crossing.
MIN_ELAPSED_FOR_TIME_UP_MS = MS_PER_SECOND


class AnnouncementKind(str, Enum):
    AUTO_ADVANCE_WARNING = "auto_advance_warning"
    AUTO_ADVANCE = "auto_advance"
    TIME_UP = "time_up"
    MILESTONE = "milestone"
    OVERTIME = "overtime"


@dataclass(frozen=True)
class Announcement:
    kind: AnnouncementKind
    task_id: str
    task_name: str
    minutes: Optional[int] = None
    next_task_name: Optional[str] = None


@dataclass
class TickResult:
    announcements: list[Announcement] = field(default_factory=list)
    reading: Optional[TimeRemaining] = None

    @property
    def kinds(self) -> list[AnnouncementKind]:
        return [a.kind for a in self.announcements]


# ---- Predicates ----

def should_warn_auto_advance(task: RunTask, reading: TimeRemaining) -> bool:
    return (
        task.auto_advance
        and not task.auto_advance_warning_announced
        and 0 < reading.remaining_ms <= AUTO_ADVANCE_WARNING_MS
    )


def crossed_zero(task: RunTask, reading: TimeRemaining, previous_remaining_ms: Optional[int]) -> bool:
    """True only on the tick where remaining time goes from positive to <= 0.

    Level checks ("remaining <= 0") would re-fire every tick, so the previous
    signed reading is required; with no previous reading nothing fires.
    """
    if previous_remaining_ms is None:
        return False
    if not (previous_remaining_ms > 0 >= reading.remaining_ms):
        return False
    if reading.elapsed_ms < MIN_ELAPSED_FOR_TIME_UP_MS:
        return False
    return task.auto_advance or not task.time_up_announced


def milestone_due(task: RunTask, reading: TimeRemaining, interval_min: int) -> Optional[int]:
    """Elapsed-minute boundary to announce, or None."""
    if interval_min < 1:
        return None
    elapsed_minutes = max(0, reading.elapsed_ms) // MS_PER_MINUTE
    boundary = (elapsed_minutes // interval_min) * interval_min
    if boundary >= interval_min and elapsed_minutes >= boundary and boundary not in task.milestone_announced_minutes:
        return boundary
    return None


def overtime_due(task: RunTask, reading: TimeRemaining, interval_min: int) -> Optional[int]:
    """Overtime-minute boundary to announce, or None."""
    if not reading.is_overtime or interval_min < 1:
        return None
    overtime_minutes = reading.overtime_ms // MS_PER_MINUTE
    boundary = (overtime_minutes // interval_min) * interval_min
    if boundary >= interval_min and boundary not in task.overtime_announced_minutes:
        return boundary
    return None


def evaluate_tick(
    run: RoutineRun,
    reading: Optional[TimeRemaining],
    previous_remaining_ms: Optional[int],
    config: AnnouncementConfig,
) -> TickResult:
    """Collect every announcement due for the active task at this reading."""
    result = TickResult(reading=reading)
    task = run.active_task
    if run.status != RunStatus.RUNNING or task is None or reading is None:
        return result

    next_task = get_next_pending_task(run)
    next_name = next_task.name if next_task else None

    if should_warn_auto_advance(task, reading):
        result.announcements.append(Announcement(
            AnnouncementKind.AUTO_ADVANCE_WARNING, task.id, task.name, next_task_name=next_name,
        ))

    if crossed_zero(task, reading, previous_remaining_ms):
        if task.auto_advance:
            result.announcements.append(Announcement(
                AnnouncementKind.AUTO_ADVANCE, task.id, task.name, next_task_name=next_name,
            ))
            # The task is about to end; later cues for it are moot.
            return result
        result.announcements.append(Announcement(AnnouncementKind.TIME_UP, task.id, task.name))

    if config.milestones_enabled:
        minutes = milestone_due(task, reading, config.milestone_interval_min)
        if minutes is not None:
            result.announcements.append(Announcement(AnnouncementKind.MILESTONE, task.id, task.name, minutes=minutes))

    if config.overtime_reminders_enabled:
        minutes = overtime_due(task, reading, config.overtime_interval_min)
        if minutes is not None:
            result.announcements.append(Announcement(AnnouncementKind.OVERTIME, task.id, task.name, minutes=minutes))

    return result


# ---- Marker application ----

def _update_task(run: RoutineRun, task_id: str, **changes) -> RoutineRun:
    return replace(run, tasks=tuple(replace(t, **changes) if t.id == task_id else t for t in run.tasks))


def mark_auto_advance_warning(run: RoutineRun, task_id: str) -> RoutineRun:
    task = run.task(task_id)
    if task is None or task.auto_advance_warning_announced:
        return run
    return _update_task(run, task_id, auto_advance_warning_announced=True)


def mark_time_up(run: RoutineRun, task_id: str) -> RoutineRun:
    task = run.task(task_id)
    if task is None or task.time_up_announced:
        return run
    return _update_task(run, task_id, time_up_announced=True)


def mark_milestone(run: RoutineRun, task_id: str, minutes: int) -> RoutineRun:
    task = run.task(task_id)
    if task is None or minutes in task.milestone_announced_minutes:
        return run
    return _update_task(run, task_id, milestone_announced_minutes=task.milestone_announced_minutes | {minutes})


def mark_overtime(run: RoutineRun, task_id: str, minutes: int) -> RoutineRun:
    task = run.task(task_id)
    if task is None or minutes in task.overtime_announced_minutes:
        return run
    return _update_task(run, task_id, overtime_announced_minutes=task.overtime_announced_minutes | {minutes})


def apply_announcements(run: RoutineRun, result: TickResult, now_ms: int) -> RoutineRun:
    """Record every announcement from ``result`` into the run.

    An AUTO_ADVANCE announcement advances the queue.
    """
    for ann in result.announcements:
        if ann.kind == AnnouncementKind.AUTO_ADVANCE_WARNING:
            run = mark_auto_advance_warning(run, ann.task_id)
        elif ann.kind == AnnouncementKind.TIME_UP:
            run = mark_time_up(run, ann.task_id)
        elif ann.kind == AnnouncementKind.MILESTONE:
            run = mark_milestone(run, ann.task_id, ann.minutes)
        elif ann.kind == AnnouncementKind.OVERTIME:
            run = mark_overtime(run, ann.task_id, ann.minutes)
        elif ann.kind == AnnouncementKind.AUTO_ADVANCE and run.active_task_id == ann.task_id:
            run = advance_to_next_task(run, now_ms)
    return run
