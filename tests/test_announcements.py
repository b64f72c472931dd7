"""Tests for announcement triggers: edge-triggered, once per boundary."""

from dataclasses import replace

import pytest

from routine_run.announcements import (
    AnnouncementKind,
    TickResult,
    Announcement,
    apply_announcements,
    crossed_zero,
    evaluate_tick,
    mark_milestone,
    mark_time_up,
    milestone_due,
    overtime_due,
)
from routine_run.config import AnnouncementConfig
from routine_run.engine import (
    create_run_from_item,
    create_run_from_template,
    extend_task,
    pause_run,
    start_run,
    toggle_auto_advance,
)
from routine_run.models import Pace, RoutineTemplate, RunStatus, RunTask, TaskStatus
from routine_run.timer import compute_remaining, compute_run_remaining

MINUTE = 60_000
DEFAULTS = AnnouncementConfig()


# ---- Helpers ----

def single(duration_ms: int = 5 * MINUTE, now: int = 0):
    return start_run(create_run_from_item("Deep work", duration_ms, now_ms=now), now)


def two_tasks(duration_ms: int = 2 * MINUTE, now: int = 0):
    template = RoutineTemplate.model_validate({
        "id": "evening",
        "name": "Evening",
        "tasks": [
            {"id": "a", "name": "Dishes", "durationMs": duration_ms},
            {"id": "b", "name": "Read", "durationMs": duration_ms, "order": 1},
        ],
    })
    return start_run(create_run_from_template(template, Pace.STEADY, now), now)


def tick_through(run, until, step=1_000, config=DEFAULTS):
    """Drive evaluate/apply the way the host does; return (run, announcements)."""
    heard = []
    now = run.started_at
    task_id = None
    previous = None
    while now < until and run.status == RunStatus.RUNNING:
        now += step
        if run.active_task_id != task_id:
            task_id = run.active_task_id
            previous = run.active_task.total_planned_ms
        reading = compute_run_remaining(run, now)
        result = evaluate_tick(run, reading, previous, config)
        if reading is not None:
            previous = reading.remaining_ms
        heard.extend(result.announcements)
        run = apply_announcements(run, result, now)
    return run, heard


def kinds(announcements):
    return [a.kind for a in announcements]


def task_at(**fields) -> RunTask:
    return RunTask(id="t", name="T", order=0, duration_ms=5 * MINUTE, status=TaskStatus.ACTIVE, **fields)


# ---- Zero crossing ----

class TestZeroCrossing:
    def test_fires_exactly_once(self):
        run, heard = tick_through(single(5 * MINUTE), 10 * MINUTE)
        assert kinds(heard).count(AnnouncementKind.TIME_UP) == 1
        assert run.active_task.time_up_announced

    def test_fires_on_the_crossing_tick(self):
        run = single(5 * MINUTE)
        previous = compute_run_remaining(run, 299_000).remaining_ms
        reading = compute_run_remaining(run, 300_000)
        assert AnnouncementKind.TIME_UP in evaluate_tick(run, reading, previous, DEFAULTS).kinds

    def test_level_check_would_refire(self):
        run = single(MINUTE)
        reading = compute_run_remaining(run, 2 * MINUTE)
        previous = compute_run_remaining(run, 2 * MINUTE - 1_000).remaining_ms
        assert previous < 0
        assert AnnouncementKind.TIME_UP not in evaluate_tick(run, reading, previous, DEFAULTS).kinds

    def test_no_previous_reading(self):
        run = single(MINUTE)
        reading = compute_run_remaining(run, 2 * MINUTE)
        assert evaluate_tick(run, reading, None, DEFAULTS).kinds == []

    def test_elapsed_guard(self):
        task = replace(task_at(), duration_ms=500, started_at=0, planned_end_at=500)
        reading = compute_remaining(task, 600)
        assert reading.remaining_ms < 0
        assert not crossed_zero(task, reading, 500)

    def test_not_refired_after_extension(self):
        run, heard = tick_through(single(MINUTE), 90_000)
        assert kinds(heard).count(AnnouncementKind.TIME_UP) == 1
        run = extend_task(run, run.active_task_id, MINUTE)
        previous = compute_run_remaining(run, 90_000).remaining_ms
        assert previous > 0
        reading = compute_run_remaining(run, 2 * MINUTE + 1_000)
        assert AnnouncementKind.TIME_UP not in evaluate_tick(run, reading, previous, DEFAULTS).kinds

    def test_paused_run_is_silent(self):
        run = pause_run(single(MINUTE), 30_000)
        reading = compute_run_remaining(run, 30_000)
        assert evaluate_tick(run, reading, 31_000, DEFAULTS).announcements == []

    def test_not_started_run_is_silent(self):
        run = create_run_from_item("Deep work", MINUTE, now_ms=0)
        assert evaluate_tick(run, None, None, DEFAULTS).announcements == []


# ---- Auto-advance ----

class TestAutoAdvance:
    def setup_method(self):
        run = two_tasks(2 * MINUTE)
        self.run = toggle_auto_advance(run, run.active_task_id)
        self.first_id = self.run.active_task_id

    def test_warning_then_advance(self):
        run, heard = tick_through(self.run, 2 * MINUTE)
        assert kinds(heard) == [AnnouncementKind.AUTO_ADVANCE_WARNING, AnnouncementKind.AUTO_ADVANCE]
        assert heard[0].next_task_name == "Read"
        assert heard[1].task_id == self.first_id
        assert run.task(self.first_id).status == TaskStatus.COMPLETED
        assert run.active_task.name == "Read"
        assert run.active_task.started_at == 2 * MINUTE

    def test_warning_once_in_last_minute(self):
        run, heard = tick_through(self.run, 110_000)
        warnings = [a for a in heard if a.kind == AnnouncementKind.AUTO_ADVANCE_WARNING]
        assert len(warnings) == 1
        assert run.active_task.auto_advance_warning_announced

    def test_no_warning_without_auto_advance(self):
        _, heard = tick_through(two_tasks(2 * MINUTE), 110_000)
        assert AnnouncementKind.AUTO_ADVANCE_WARNING not in kinds(heard)

    def test_last_task_warns_without_next_name(self):
        run = single(2 * MINUTE)
        run = toggle_auto_advance(run, run.active_task_id)
        run, heard = tick_through(run, 3 * MINUTE)
        assert kinds(heard) == [AnnouncementKind.AUTO_ADVANCE_WARNING, AnnouncementKind.AUTO_ADVANCE]
        assert heard[0].next_task_name is None
        assert run.status == RunStatus.COMPLETED

    def test_auto_advance_suppresses_other_cues(self):
        config = AnnouncementConfig(milestone_interval_min=2)
        run = single(2 * MINUTE)
        run = toggle_auto_advance(run, run.active_task_id)
        reading = compute_run_remaining(run, 2 * MINUTE)
        result = evaluate_tick(run, reading, 1_000, config)
        assert result.kinds == [AnnouncementKind.AUTO_ADVANCE]

    def test_stale_auto_advance_is_ignored(self):
        result = TickResult([Announcement(AnnouncementKind.AUTO_ADVANCE, "gone", "Gone")])
        assert apply_announcements(self.run, result, 5_000) is self.run


# ---- Milestones and overtime ----

class TestMilestones:
    def test_due_at_boundaries(self):
        task = replace(task_at(), started_at=0, planned_end_at=5 * MINUTE)
        assert milestone_due(task, compute_remaining(task, 4 * MINUTE + 59_000), 5) is None
        assert milestone_due(task, compute_remaining(task, 5 * MINUTE), 5) == 5
        assert milestone_due(task, compute_remaining(task, 12 * MINUTE), 5) == 10

    def test_already_announced(self):
        task = replace(task_at(), started_at=0, planned_end_at=5 * MINUTE, milestone_announced_minutes=frozenset({5}))
        assert milestone_due(task, compute_remaining(task, 7 * MINUTE), 5) is None

    def test_zero_interval_disables(self):
        task = replace(task_at(), started_at=0, planned_end_at=5 * MINUTE)
        assert milestone_due(task, compute_remaining(task, 10 * MINUTE), 0) is None

    def test_long_run(self):
        _, heard = tick_through(single(5 * MINUTE), 10 * MINUTE)
        assert [a.minutes for a in heard if a.kind == AnnouncementKind.MILESTONE] == [5, 10]
        assert [a.minutes for a in heard if a.kind == AnnouncementKind.OVERTIME] == [5]

    def test_disabled(self):
        config = AnnouncementConfig(milestones_enabled=False, overtime_reminders_enabled=False)
        _, heard = tick_through(single(5 * MINUTE), 15 * MINUTE, config=config)
        assert kinds(heard) == [AnnouncementKind.TIME_UP]

    @pytest.mark.parametrize("interval,expected", [(1, [1, 2, 3]), (2, [2]), (3, [3])])
    def test_custom_interval(self, interval, expected):
        config = AnnouncementConfig(milestone_interval_min=interval, overtime_reminders_enabled=False)
        _, heard = tick_through(single(10 * MINUTE), 3 * MINUTE, step=5_000, config=config)
        assert [a.minutes for a in heard if a.kind == AnnouncementKind.MILESTONE] == expected


class TestOvertime:
    def test_not_while_time_remains(self):
        task = replace(task_at(), started_at=0, planned_end_at=5 * MINUTE)
        assert overtime_due(task, compute_remaining(task, 4 * MINUTE), 1) is None

    def test_boundaries(self):
        task = replace(task_at(), started_at=0, planned_end_at=5 * MINUTE)
        assert overtime_due(task, compute_remaining(task, 9 * MINUTE + 59_000), 5) is None
        assert overtime_due(task, compute_remaining(task, 10 * MINUTE), 5) == 5
        marked = replace(task, overtime_announced_minutes=frozenset({5}))
        assert overtime_due(marked, compute_remaining(marked, 14 * MINUTE), 5) is None
        assert overtime_due(marked, compute_remaining(marked, 15 * MINUTE), 5) == 10

    def test_reminders_every_interval(self):
        config = AnnouncementConfig(milestones_enabled=False, overtime_interval_min=2)
        _, heard = tick_through(single(MINUTE), 8 * MINUTE, config=config)
        assert [a.minutes for a in heard if a.kind == AnnouncementKind.OVERTIME] == [2, 4, 6]


# ---- Marker application ----

class TestMarkers:
    def test_markers_idempotent(self):
        run = single()
        task_id = run.active_task_id
        marked = mark_time_up(run, task_id)
        assert mark_time_up(marked, task_id) is marked
        marked = mark_milestone(marked, task_id, 5)
        assert mark_milestone(marked, task_id, 5) is marked
        assert marked.active_task.milestone_announced_minutes == {5}

    def test_apply_records_every_kind(self):
        run = single()
        task_id = run.active_task_id
        result = TickResult([
            Announcement(AnnouncementKind.TIME_UP, task_id, "Deep work"),
            Announcement(AnnouncementKind.MILESTONE, task_id, "Deep work", minutes=5),
            Announcement(AnnouncementKind.OVERTIME, task_id, "Deep work", minutes=10),
        ])
        task = apply_announcements(run, result, 0).active_task
        assert task.time_up_announced
        assert task.milestone_announced_minutes == {5}
        assert task.overtime_announced_minutes == {10}

    def test_evaluate_is_pure(self):
        run = single(MINUTE)
        snapshot = run.to_dict()
        evaluate_tick(run, compute_run_remaining(run, MINUTE), 1_000, DEFAULTS)
        assert run.to_dict() == snapshot
