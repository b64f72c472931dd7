"""Run lifecycle host.

Owns the single live RoutineRun for the process. Every user action goes
through one of the host's methods, which applies the pure engine transition,
persists the new state and relays any spoken/notified message. ``tick`` is
called on a fixed interval (see ``schedule``) to evaluate announcement
triggers and auto-advance.

Transitions and ticks are serialized with an asyncio.Lock, so saves land in
the order the changes were made.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Optional

import aiosqlite
from apscheduler.triggers.interval import IntervalTrigger

from . import engine, messages
from .announcements import (
    AnnouncementKind,
    TickResult,
    apply_announcements,
    evaluate_tick,
)
from .audio import AnnouncementQueue, Notifier, safe_notify
from .config import AnnouncementConfig
from .models import RoutineRun, RunStatus, TaskStatus
from .store import RunStateStore
from .timer import TimeRemaining, compute_run_remaining

logger = logging.getLogger("routine_run.host")

TICK_JOB_ID = "routine-run-tick"

ACTIONS = (
    "start",
    "pause",
    "resume",
    "end",
    "advance",
    "skip",
    "extend",
    "move",
    "add_quick_task",
    "toggle_subtask",
    "toggle_auto_advance",
)


def now_ms() -> int:
    return int(time.time() * 1000)


class RunHost:
    """Holds the live run and the previous timer reading used for edge detection."""

    def __init__(
        self,
        run: RoutineRun,
        store: Optional[RunStateStore] = None,
        announcer: Optional[AnnouncementQueue] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[AnnouncementConfig] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ):
        self.run = run
        self.store = store
        self.announcer = announcer
        self.notifier = notifier
        self.config = config or AnnouncementConfig()
        self.clock = clock
        self.rng = rng
        self.previous_remaining_ms: Optional[int] = None
        self._reading_task_id: Optional[str] = None
        # Held from computing a transition until it is persisted and spoken.
        self._lock = asyncio.Lock()

    @classmethod
    async def restore(cls, store: RunStateStore, **kwargs) -> Optional["RunHost"]:
        """Host for the last persisted run, or None if nothing was saved."""
        run = await store.load()
        if run is None:
            return None
        logger.info(f"Restored run {run.id} ({run.status.value})")
        return cls(run, store=store, **kwargs)

    # ---- Readings ----

    def reading(self) -> Optional[TimeRemaining]:
        return compute_run_remaining(self.run, self.clock())

    async def tick(self) -> TickResult:
        """Evaluate announcement triggers for the current reading."""
        async with self._lock:
            return await self._tick()

    async def _tick(self) -> TickResult:
        now = self.clock()
        run = self.run
        task = run.active_task
        reading = compute_run_remaining(run, now)
        if task is None or reading is None:
            self.previous_remaining_ms = None
            self._reading_task_id = None
            return TickResult(reading=reading)

        if task.id != self._reading_task_id:
            # Remaining time at activation; lets a first late tick still see the crossing.
            self._reading_task_id = task.id
            self.previous_remaining_ms = task.total_planned_ms

        if run.status != RunStatus.RUNNING:
            return TickResult(reading=reading)

        result = evaluate_tick(run, reading, self.previous_remaining_ms, self.config)
        self.previous_remaining_ms = reading.remaining_ms
        if not result.announcements:
            return result

        new_run = apply_announcements(run, result, now)
        await self._commit(new_run, "tick")

        for ann in result.announcements:
            if ann.kind == AnnouncementKind.AUTO_ADVANCE_WARNING:
                msg = messages.auto_advance_warning_message(ann.task_name, ann.next_task_name, self.rng)
                await self._say(msg, "One minute left")
            elif ann.kind == AnnouncementKind.TIME_UP:
                await self._say(messages.time_up_message(ann.task_name, self.rng), "Time's up")
            elif ann.kind == AnnouncementKind.MILESTONE:
                await self._say(messages.milestone_message(ann.task_name, ann.minutes, self.rng), "Milestone")
            elif ann.kind == AnnouncementKind.OVERTIME:
                await self._say(messages.overtime_message(ann.task_name, ann.minutes, self.rng), "Overtime")
            elif ann.kind == AnnouncementKind.AUTO_ADVANCE:
                await self._announce_progress(run, self.run, skipped=False)
        return result

    def schedule(self, scheduler, seconds: int = 1) -> None:
        """Register ``tick`` on an APScheduler scheduler."""
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    # ---- Transitions ----

    async def dispatch(self, action: str, *args) -> bool:
        """Apply a transition by name, e.g. ``dispatch("extend", task_id, 60000)``."""
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        return await getattr(self, action)(*args)

    async def start(self) -> bool:
        async with self._lock:
            changed = await self._commit(engine.start_run(self.run, self.clock()), "start")
            if changed and self.run.active_task is not None:
                await self._say(messages.task_start_message(self.run.active_task.name, self.rng), "Starting")
            return changed

    async def pause(self) -> bool:
        async with self._lock:
            return await self._commit(engine.pause_run(self.run, self.clock()), "pause")

    async def resume(self) -> bool:
        async with self._lock:
            return await self._commit(engine.resume_run(self.run, self.clock()), "resume")

    async def end(self) -> bool:
        async with self._lock:
            changed = await self._commit(engine.end_run(self.run, self.clock()), "end")
            if changed and self.announcer is not None:
                self.announcer.clear()
            return changed

    async def advance(self) -> bool:
        async with self._lock:
            before = self.run
            changed = await self._commit(engine.advance_to_next_task(before, self.clock()), "advance")
            if changed:
                await self._announce_progress(before, self.run, skipped=False)
            return changed

    async def skip(self, task_id: Optional[str] = None) -> bool:
        """Skip ``task_id``, defaulting to the active task."""
        async with self._lock:
            before = self.run
            task_id = task_id or before.active_task_id
            if task_id is None:
                logger.debug("skip: no task to skip")
                return False
            changed = await self._commit(engine.skip_task(before, task_id, self.clock()), f"skip {task_id}")
            if changed and before.active_task_id == task_id:
                await self._announce_progress(before, self.run, skipped=True)
            return changed

    async def extend(self, task_id: str, delta_ms: int) -> bool:
        async with self._lock:
            return await self._commit(
                engine.extend_task(self.run, task_id, delta_ms), f"extend {task_id} {delta_ms:+d}ms"
            )

    async def move(self, task_id: str, position: engine.MovePosition) -> bool:
        async with self._lock:
            return await self._commit(engine.move_task(self.run, task_id, position), f"move {task_id} {position}")

    async def add_quick_task(self, name: str, duration_ms: int) -> bool:
        async with self._lock:
            return await self._commit(
                engine.add_quick_task(self.run, name, duration_ms, self.clock()), f"add quick task {name!r}"
            )

    async def toggle_subtask(self, task_id: str, subtask_id: str) -> bool:
        async with self._lock:
            changed = await self._commit(
                engine.toggle_subtask(self.run, task_id, subtask_id), f"toggle subtask {subtask_id}"
            )
            task = self.run.task(task_id)
            if changed and task is not None:
                checked = sum(1 for st in task.subtasks if st.checked)
                just_checked = any(st.id == subtask_id and st.checked for st in task.subtasks)
                if just_checked:
                    await self._say(messages.subtask_progress_message(checked, len(task.subtasks), self.rng), "Progress")
            return changed

    async def toggle_auto_advance(self, task_id: str) -> bool:
        async with self._lock:
            return await self._commit(engine.toggle_auto_advance(self.run, task_id), f"toggle auto-advance {task_id}")

    async def discard(self) -> None:
        """Forget the run, in memory and in the store."""
        async with self._lock:
            logger.info(f"Discarding run {self.run.id}")
            if self.announcer is not None:
                self.announcer.clear()
            if self.store is not None:
                await self.store.clear()

    # ---- Internal ----

    async def _commit(self, new_run: RoutineRun, action: str) -> bool:
        if new_run is self.run:
            logger.debug(f"{action}: ignored while {self.run.status.value}")
            return False
        old_status = self.run.status
        self.run = new_run
        if new_run.status != old_status:
            logger.info(f"{action}: {old_status.value} -> {new_run.status.value}")
        else:
            logger.info(f"{action}")
        await self._persist()
        return True

    async def _persist(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(self.run)
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Failed to save run {self.run.id}: {e}")

    async def _announce_progress(self, before: RoutineRun, after: RoutineRun, skipped: bool) -> None:
        finished = before.active_task
        if after.status == RunStatus.COMPLETED:
            await self._say(messages.routine_complete_message(after.is_single_item, self.rng), "Complete")
            return
        upcoming = after.active_task
        if finished is None or upcoming is None or upcoming.id == finished.id:
            return
        if skipped:
            msg = messages.task_skip_message(finished.name, upcoming.name, self.rng)
        else:
            msg = messages.task_completion_message(finished.name, upcoming.name, self.rng)
        await self._say(msg, upcoming.name)

    async def _say(self, message: messages.Message, title: str) -> None:
        if self.announcer is not None:
            await self.announcer.say(message.tts)
        safe_notify(self.notifier, title, message.display)

    def summary(self) -> dict:
        """Counts used by status displays."""
        done, total = engine.run_progress(self.run)
        return {
            "status": self.run.status.value,
            "done": done,
            "total": total,
            "skipped": sum(1 for t in self.run.tasks if t.status == TaskStatus.SKIPPED),
        }
