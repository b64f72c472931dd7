"""Derives which template tasks are visible for a given pace."""

from __future__ import annotations

from typing import Sequence

from .models import Pace, TemplateTask


def is_visible(task: TemplateTask, pace: Pace) -> bool:
    """Whether a single task is shown at ``pace``.

    - low: only tasks included at low
    - steady: everything except flow-only extras (flow without low)
    - flow: everything
    """
    if pace == Pace.LOW:
        return task.low_included
    if pace == Pace.STEADY:
        return not (task.flow_included and not task.low_included)
    return True


def derive_visible_tasks(tasks: Sequence[TemplateTask], pace: Pace | str) -> list[TemplateTask]:
    """Filter ``tasks`` for ``pace``, keeping their input order."""
    pace = Pace(pace)
    return [task for task in tasks if is_visible(task, pace)]
