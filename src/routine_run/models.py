"""Run and template data model.

A RoutineRun is immutable: every transition in ``engine`` returns a new
instance built with ``dataclasses.replace``. All timestamps are integer epoch
milliseconds.

Templates are external input (YAML files, stored templates) so they are
validated with pydantic; runs are internal state so they are plain frozen
dataclasses with an explicit camelCase dict format for persistence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class Pace(str, Enum):
    LOW = "low"
    STEADY = "steady"
    FLOW = "flow"


class RunStatus(str, Enum):
    NOT_STARTED = "notStarted"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ABANDONED)


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# ---- Run state ----

@dataclass(frozen=True)
class Subtask:
    id: str
    text: str
    order: int = 0
    checked: bool = False


@dataclass(frozen=True)
class RunTask:
    id: str
    name: str
    # Queue position: pending tasks are 0..n-1, the active task is -1.
    order: int
    duration_ms: int
    template_task_id: str = ""
    extension_ms: int = 0
    status: TaskStatus = TaskStatus.PENDING
    started_at: Optional[int] = None
    planned_end_at: Optional[int] = None
    completed_at: Optional[int] = None
    auto_advance: bool = False
    auto_advance_warning_announced: bool = False
    time_up_announced: bool = False
    overtime_announced_minutes: frozenset[int] = frozenset()
    milestone_announced_minutes: frozenset[int] = frozenset()
    subtasks: tuple[Subtask, ...] = ()

    @property
    def total_planned_ms(self) -> int:
        """Planned duration including extensions, never below zero."""
        return max(0, self.duration_ms + self.extension_ms)

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "templateTaskId": self.template_task_id,
            "name": self.name,
            "order": self.order,
            "durationMs": self.duration_ms,
            "extensionMs": self.extension_ms,
            "status": self.status.value,
            "startedAt": self.started_at,
            "plannedEndAt": self.planned_end_at,
            "completedAt": self.completed_at,
            "autoAdvance": self.auto_advance,
            "autoAdvanceWarningAnnounced": self.auto_advance_warning_announced,
            "timeUpAnnounced": self.time_up_announced,
            "overtimeAnnouncedMinutes": sorted(self.overtime_announced_minutes),
            "milestoneAnnouncedMinutes": sorted(self.milestone_announced_minutes),
            "subtasks": [
                {"id": st.id, "text": st.text, "order": st.order, "checked": st.checked}
                for st in self.subtasks
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunTask":
        return cls(
            id=data["id"],
            template_task_id=data.get("templateTaskId", ""),
            name=data["name"],
            order=int(data.get("order", 0)),
            duration_ms=int(data["durationMs"]),
            extension_ms=int(data.get("extensionMs", 0)),
            status=TaskStatus(data.get("status", "pending")),
            started_at=_opt_int(data.get("startedAt")),
            planned_end_at=_opt_int(data.get("plannedEndAt")),
            completed_at=_opt_int(data.get("completedAt")),
            auto_advance=bool(data.get("autoAdvance", False)),
            auto_advance_warning_announced=bool(data.get("autoAdvanceWarningAnnounced", False)),
            time_up_announced=bool(data.get("timeUpAnnounced", False)),
            overtime_announced_minutes=frozenset(int(m) for m in data.get("overtimeAnnouncedMinutes") or []),
            milestone_announced_minutes=frozenset(int(m) for m in data.get("milestoneAnnouncedMinutes") or []),
            subtasks=tuple(
                Subtask(
                    id=st["id"],
                    text=st.get("text", ""),
                    order=int(st.get("order", 0)),
                    checked=bool(st.get("checked", False)),
                )
                for st in data.get("subtasks") or []
            ),
        )


@dataclass(frozen=True)
class RoutineRun:
    id: str
    template_id: str
    template_name: str
    pace: Pace
    tasks: tuple[RunTask, ...] = ()
    status: RunStatus = RunStatus.NOT_STARTED
    created_at: int = 0
    started_at: Optional[int] = None
    paused_at: Optional[int] = None
    ended_at: Optional[int] = None
    total_pause_ms: int = 0
    active_task_id: Optional[str] = None

    def task(self, task_id: str) -> Optional[RunTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @property
    def active_task(self) -> Optional[RunTask]:
        if self.active_task_id is None:
            return None
        return self.task(self.active_task_id)

    @property
    def is_single_item(self) -> bool:
        """True for ad-hoc focus runs created from a single item."""
        return self.template_id in SINGLE_ITEM_TEMPLATE_IDS

    def to_dict(self) -> dict:
        """Serialize for persistence (camelCase keys, plain JSON types)."""
        return {
            "id": self.id,
            "templateId": self.template_id,
            "templateName": self.template_name,
            "pace": self.pace.value,
            "status": self.status.value,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "pausedAt": self.paused_at,
            "endedAt": self.ended_at,
            "totalPauseMs": self.total_pause_ms,
            "activeTaskId": self.active_task_id,
            "tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoutineRun":
        # Older stored runs used "energyMode" with "care" for the low pace.
        pace = data.get("pace") or data.get("energyMode") or "steady"
        if pace == "care":
            pace = "low"
        return cls(
            id=data["id"],
            template_id=data.get("templateId", ""),
            template_name=data.get("templateName", ""),
            pace=Pace(pace),
            tasks=tuple(RunTask.from_dict(t) for t in data.get("tasks") or []),
            status=RunStatus(data.get("status", "notStarted")),
            created_at=int(data.get("createdAt") or 0),
            started_at=_opt_int(data.get("startedAt")),
            paused_at=_opt_int(data.get("pausedAt")),
            ended_at=_opt_int(data.get("endedAt")),
            total_pause_ms=int(data.get("totalPauseMs") or 0),
            active_task_id=data.get("activeTaskId"),
        )


FOCUS_ITEM_TEMPLATE_ID = "focus-item"
OPTIONAL_ITEM_TEMPLATE_ID = "optional-item"
SINGLE_ITEM_TEMPLATE_IDS = (FOCUS_ITEM_TEMPLATE_ID, OPTIONAL_ITEM_TEMPLATE_ID)


def _opt_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


# ---- Templates ----

class TemplateSubtask(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    text: str
    order: int = 0


class TemplateTask(BaseModel):
    """A task as defined in a routine template.

    ``lowSafe`` and ``flowExtra`` are accepted as legacy spellings of
    ``lowIncluded`` and ``flowIncluded``. A ``minutes`` key may be given
    instead of ``durationMs``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    duration_ms: int = Field(ge=0, validation_alias=AliasChoices("durationMs", "duration_ms"))
    order: int = 0
    low_included: bool = Field(
        default=False,
        validation_alias=AliasChoices("lowIncluded", "lowSafe", "low_included", "low"),
    )
    flow_included: bool = Field(
        default=False,
        validation_alias=AliasChoices("flowIncluded", "flowExtra", "flow_included", "flow"),
    )
    auto_advance: bool = Field(default=False, validation_alias=AliasChoices("autoAdvance", "auto_advance"))
    subtasks: list[TemplateSubtask] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _minutes_to_ms(cls, data: Any) -> Any:
        if isinstance(data, dict) and "minutes" in data and "durationMs" not in data and "duration_ms" not in data:
            data = dict(data)
            data["durationMs"] = int(float(data.pop("minutes")) * 60 * 1000)
        return data


class RoutineTemplate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    description: str = ""
    tasks: list[TemplateTask] = Field(default_factory=list)
