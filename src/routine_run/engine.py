"""Routine run engine: pure transition functions, no I/O.

Each function takes the current RoutineRun and returns the next one; the input
is never mutated and no state is kept between calls. Calls whose precondition
does not hold (wrong status, unknown task, terminal run) return the input
unchanged instead of raising, so a stale UI action arriving after the run has
moved on is harmless.

All timestamps are integer epoch milliseconds supplied by the caller.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Optional, Sequence, Union

from .derivation import derive_visible_tasks
from .models import (
    FOCUS_ITEM_TEMPLATE_ID,
    Pace,
    RoutineRun,
    RoutineTemplate,
    RunStatus,
    RunTask,
    Subtask,
    TaskStatus,
)
from .timer import MS_PER_MINUTE

DEFAULT_ITEM_DURATION_MS = 15 * MS_PER_MINUTE
MOVE_POSITIONS = ("up", "down", "next", "end")
# The active task sits ahead of the pending queue, outside its 0..n-1 range.
ACTIVE_ORDER = -1

MovePosition = Union[str, int]

_ESTIMATE_PATTERN = re.compile(r"~?\s*(\d+)")


# ---- Run creation ----

def create_run_from_template(template: RoutineTemplate, pace: Pace | str, now_ms: int) -> RoutineRun:
    """Materialize a not-started run from the template tasks visible at ``pace``."""
    pace = Pace(pace)
    visible = sorted(derive_visible_tasks(template.tasks, pace), key=lambda t: t.order)

    tasks = tuple(
        RunTask(
            id=f"run-task-{task.id}-{now_ms}-{index}",
            template_task_id=task.id,
            name=task.name,
            order=index,
            duration_ms=task.duration_ms,
            auto_advance=task.auto_advance,
            subtasks=tuple(
                Subtask(id=st.id, text=st.text, order=st.order)
                for st in sorted(task.subtasks, key=lambda s: s.order)
            ),
        )
        for index, task in enumerate(visible)
    )

    return RoutineRun(
        id=f"run-{template.id}-{now_ms}",
        template_id=template.id,
        template_name=template.name,
        pace=pace,
        tasks=tasks,
        created_at=now_ms,
    )


def parse_estimated_duration(estimate: Optional[str]) -> int:
    """Convert an estimate like '~20 min' to milliseconds (15 minutes if unknown)."""
    if not estimate:
        return DEFAULT_ITEM_DURATION_MS
    match = _ESTIMATE_PATTERN.search(estimate)
    if not match:
        return DEFAULT_ITEM_DURATION_MS
    return int(match.group(1)) * MS_PER_MINUTE


def create_run_from_item(
    title: str,
    duration_ms: int,
    now_ms: int,
    item_id: Optional[str] = None,
    source: str = FOCUS_ITEM_TEMPLATE_ID,
) -> RoutineRun:
    """Single-task ad-hoc run, always at the steady pace."""
    item_id = item_id or str(now_ms)
    task = RunTask(
        id=f"{source}-run-task-{item_id}-{now_ms}",
        template_task_id=item_id,
        name=title,
        order=0,
        duration_ms=max(0, duration_ms),
    )
    return RoutineRun(
        id=f"{source}-run-{item_id}-{now_ms}",
        template_id=source,
        template_name=title,
        pace=Pace.STEADY,
        tasks=(task,),
        created_at=now_ms,
    )


# ---- Queue helpers ----

def get_active_task(run: RoutineRun) -> Optional[RunTask]:
    return run.active_task


def get_pending_tasks(run: RoutineRun) -> list[RunTask]:
    """Pending tasks in queue order."""
    return sorted((t for t in run.tasks if t.status == TaskStatus.PENDING), key=lambda t: t.order)


def get_next_pending_task(run: RoutineRun) -> Optional[RunTask]:
    pending = get_pending_tasks(run)
    return pending[0] if pending else None


def run_progress(run: RoutineRun) -> tuple[int, int]:
    """(finished, total) where finished counts completed and skipped tasks."""
    done = sum(1 for t in run.tasks if t.status in (TaskStatus.COMPLETED, TaskStatus.SKIPPED))
    return done, len(run.tasks)


def invariant_violations(run: RoutineRun) -> list[str]:
    """Describe every broken run invariant; empty when the run is consistent."""
    problems = []
    active = [t for t in run.tasks if t.status == TaskStatus.ACTIVE]
    if len(active) > 1:
        problems.append(f"{len(active)} active tasks")
    if active and run.active_task_id != active[0].id:
        problems.append("activeTaskId does not reference the active task")
    if not active and run.active_task_id is not None:
        problems.append("activeTaskId set without an active task")
    if active and run.status not in (RunStatus.RUNNING, RunStatus.PAUSED):
        problems.append(f"active task while run is {run.status.value}")

    pending_orders = [t.order for t in get_pending_tasks(run)]
    if pending_orders != list(range(len(pending_orders))):
        problems.append(f"pending orders not contiguous: {pending_orders}")

    for task in active:
        if task.order != ACTIVE_ORDER:
            problems.append(f"active task {task.id} has queue order {task.order}")
        if task.started_at is None or task.planned_end_at is None:
            problems.append(f"active task {task.id} missing timestamps")
        elif task.planned_end_at != task.started_at + task.total_planned_ms:
            problems.append(f"active task {task.id} has a stale plannedEndAt")
    return problems


def _replace_task(tasks: Iterable[RunTask], task_id: str, **changes) -> tuple[RunTask, ...]:
    return tuple(replace(t, **changes) if t.id == task_id else t for t in tasks)


def _apply_queue_order(tasks: Sequence[RunTask], queue_ids: Sequence[str]) -> tuple[RunTask, ...]:
    positions = {task_id: index for index, task_id in enumerate(queue_ids)}
    return tuple(
        replace(t, order=positions[t.id]) if t.id in positions and t.order != positions[t.id] else t
        for t in tasks
    )


def _renumber(tasks: Sequence[RunTask]) -> tuple[RunTask, ...]:
    """Make pending orders contiguous from 0, keeping their relative order."""
    queue = sorted((t for t in tasks if t.status == TaskStatus.PENDING), key=lambda t: t.order)
    return _apply_queue_order(tasks, [t.id for t in queue])


def _is_live(run: RoutineRun) -> bool:
    return not run.status.is_terminal


def _close_pause(run: RoutineRun, now_ms: int) -> RoutineRun:
    """Fold an open pause into total_pause_ms and clear paused_at."""
    if run.paused_at is None:
        return run
    return replace(
        run,
        total_pause_ms=run.total_pause_ms + max(0, now_ms - run.paused_at),
        paused_at=None,
    )


def _activate(run: RoutineRun, task_id: str, now_ms: int) -> RoutineRun:
    task = run.task(task_id)
    tasks = _replace_task(
        run.tasks,
        task_id,
        status=TaskStatus.ACTIVE,
        order=ACTIVE_ORDER,
        started_at=now_ms,
        planned_end_at=now_ms + task.total_planned_ms,
    )
    return replace(run, tasks=_renumber(tasks), active_task_id=task_id)


def _finish_active(run: RoutineRun, status: TaskStatus, now_ms: int) -> RoutineRun:
    """Close the active task with ``status`` and move the queue forward."""
    tasks = _replace_task(run.tasks, run.active_task_id, status=status, completed_at=now_ms)
    run = replace(run, tasks=tasks, active_task_id=None)

    next_task = get_next_pending_task(run)
    if next_task is None:
        run = _close_pause(run, now_ms)
        return replace(
            run,
            tasks=_renumber(run.tasks),
            status=RunStatus.COMPLETED,
            ended_at=now_ms,
        )

    if run.status == RunStatus.PAUSED:
        # The new task starts frozen; its pause begins now.
        run = replace(_close_pause(run, now_ms), paused_at=now_ms)
    return _activate(run, next_task.id, now_ms)


# ---- Transitions ----

def start_run(run: RoutineRun, now_ms: int) -> RoutineRun:
    """Activate the first pending task and set the run running."""
    if run.status != RunStatus.NOT_STARTED:
        return run
    first = get_next_pending_task(run)
    if first is None:
        return run
    run = replace(run, status=RunStatus.RUNNING, started_at=now_ms)
    return _activate(run, first.id, now_ms)


def pause_run(run: RoutineRun, now_ms: int) -> RoutineRun:
    if run.status != RunStatus.RUNNING:
        return run
    return replace(run, status=RunStatus.PAUSED, paused_at=now_ms)


def resume_run(run: RoutineRun, now_ms: int) -> RoutineRun:
    """Resume, shifting the active task's timestamps by the pause length.

    The shift keeps remaining time identical to what it was at pause.
    """
    if run.status != RunStatus.PAUSED or run.paused_at is None:
        return run

    delta = max(0, now_ms - run.paused_at)
    task = run.active_task
    tasks = run.tasks
    if task is not None and task.started_at is not None:
        started_at = task.started_at + delta
        tasks = _replace_task(
            tasks,
            task.id,
            started_at=started_at,
            planned_end_at=started_at + task.total_planned_ms,
        )

    return replace(
        run,
        tasks=tasks,
        status=RunStatus.RUNNING,
        paused_at=None,
        total_pause_ms=run.total_pause_ms + delta,
    )


def end_run(run: RoutineRun, now_ms: int) -> RoutineRun:
    """Abandon the run. The active task, if any, is closed as skipped."""
    if not _is_live(run):
        return run
    tasks = run.tasks
    if run.active_task_id is not None:
        tasks = _replace_task(tasks, run.active_task_id, status=TaskStatus.SKIPPED, completed_at=now_ms)
    run = _close_pause(replace(run, tasks=_renumber(tasks)), now_ms)
    return replace(run, status=RunStatus.ABANDONED, ended_at=now_ms, active_task_id=None)


def advance_to_next_task(run: RoutineRun, now_ms: int) -> RoutineRun:
    """Complete the active task and activate the next pending one.

    With nothing left the run completes.
    """
    if not _is_live(run) or run.active_task is None:
        return run
    return _finish_active(run, TaskStatus.COMPLETED, now_ms)


def skip_task(run: RoutineRun, task_id: str, now_ms: int) -> RoutineRun:
    """Skip a pending task, or the active one (which then advances the queue)."""
    if not _is_live(run):
        return run
    task = run.task(task_id)
    if task is None:
        return run
    if task.status == TaskStatus.ACTIVE and run.active_task_id == task_id:
        return _finish_active(run, TaskStatus.SKIPPED, now_ms)
    if task.status != TaskStatus.PENDING:
        return run
    tasks = _replace_task(run.tasks, task_id, status=TaskStatus.SKIPPED, completed_at=now_ms)
    return replace(run, tasks=_renumber(tasks))


def extend_task(run: RoutineRun, task_id: str, delta_ms: int) -> RoutineRun:
    """Add (or with a negative delta, give back) planned time.

    The total planned duration never drops below zero. For the active task
    ``planned_end_at`` is recomputed at once, paused or not.
    """
    if not _is_live(run) or delta_ms == 0:
        return run
    task = run.task(task_id)
    if task is None:
        return run

    extension_ms = max(task.extension_ms + delta_ms, -task.duration_ms)
    if extension_ms == task.extension_ms:
        return run

    changes: dict = {"extension_ms": extension_ms}
    if task.status == TaskStatus.ACTIVE and task.started_at is not None:
        changes["planned_end_at"] = task.started_at + task.duration_ms + extension_ms
    return replace(run, tasks=_replace_task(run.tasks, task_id, **changes))


def move_task(run: RoutineRun, task_id: str, position: MovePosition) -> RoutineRun:
    """Reorder a pending task within the queue.

    ``position`` is 'up', 'down', 'next' (right after the active task),
    'end', or an index into the pending queue (clamped).
    """
    if not _is_live(run):
        return run
    task = run.task(task_id)
    if task is None or task.status != TaskStatus.PENDING:
        return run

    pending = get_pending_tasks(run)
    current = next(i for i, t in enumerate(pending) if t.id == task_id)
    last = len(pending) - 1

    if position == "up":
        target = max(0, current - 1)
    elif position == "down":
        target = min(last, current + 1)
    elif position == "next":
        target = 0
    elif position == "end":
        target = last
    elif isinstance(position, int) and not isinstance(position, bool):
        target = max(0, min(last, position))
    else:
        return run

    if target == current:
        return run

    queue_ids = [t.id for t in pending]
    queue_ids.insert(target, queue_ids.pop(current))
    return replace(run, tasks=_apply_queue_order(run.tasks, queue_ids))


def add_quick_task(run: RoutineRun, name: str, duration_ms: int, now_ms: int) -> RoutineRun:
    """Append a pending task at the end of the queue."""
    if not _is_live(run):
        return run
    order = len(get_pending_tasks(run))
    task = RunTask(
        id=f"quick-task-{now_ms}-{len(run.tasks)}",
        template_task_id="quick",
        name=name,
        order=order,
        duration_ms=max(0, duration_ms),
    )
    return replace(run, tasks=run.tasks + (task,))


def toggle_subtask(run: RoutineRun, task_id: str, subtask_id: str) -> RoutineRun:
    if not _is_live(run):
        return run
    task = run.task(task_id)
    if task is None or not any(st.id == subtask_id for st in task.subtasks):
        return run
    subtasks = tuple(
        replace(st, checked=not st.checked) if st.id == subtask_id else st
        for st in task.subtasks
    )
    return replace(run, tasks=_replace_task(run.tasks, task_id, subtasks=subtasks))


def toggle_auto_advance(run: RoutineRun, task_id: str) -> RoutineRun:
    if not _is_live(run):
        return run
    task = run.task(task_id)
    if task is None:
        return run
    return replace(run, tasks=_replace_task(run.tasks, task_id, auto_advance=not task.auto_advance))
