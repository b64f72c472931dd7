"""Routine run engine: guided, timed task sequences with pause, reorder and voice cues."""

from .announcements import (
    Announcement,
    AnnouncementKind,
    TickResult,
    apply_announcements,
    evaluate_tick,
)
from .config import AnnouncementConfig
from .derivation import derive_visible_tasks
from .engine import (
    add_quick_task,
    advance_to_next_task,
    create_run_from_item,
    create_run_from_template,
    end_run,
    extend_task,
    move_task,
    pause_run,
    resume_run,
    skip_task,
    start_run,
    toggle_auto_advance,
    toggle_subtask,
)
from .models import (
    Pace,
    RoutineRun,
    RoutineTemplate,
    RunStatus,
    RunTask,
    Subtask,
    TaskStatus,
    TemplateTask,
)
from .timer import TimeRemaining, compute_remaining

__all__ = [
    "Announcement",
    "AnnouncementConfig",
    "AnnouncementKind",
    "Pace",
    "RoutineRun",
    "RoutineTemplate",
    "RunStatus",
    "RunTask",
    "Subtask",
    "TaskStatus",
    "TemplateTask",
    "TickResult",
    "TimeRemaining",
    "add_quick_task",
    "advance_to_next_task",
    "apply_announcements",
    "compute_remaining",
    "create_run_from_item",
    "create_run_from_template",
    "derive_visible_tasks",
    "end_run",
    "evaluate_tick",
    "extend_task",
    "move_task",
    "pause_run",
    "resume_run",
    "skip_task",
    "start_run",
    "toggle_auto_advance",
    "toggle_subtask",
]
