"""Loading routine templates from YAML (or JSON) files."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import RoutineTemplate


class TemplateError(Exception):
    """A template file could not be read or is not a valid routine."""


def parse_template(data: object, source: str = "<template>") -> RoutineTemplate:
    if not isinstance(data, dict):
        raise TemplateError(f"{source}: expected a mapping at the top level")
    data = dict(data)
    data.setdefault("id", Path(source).stem)
    tasks = data.get("tasks") or []
    if isinstance(tasks, list):
        # Tasks without ids/orders take their position in the file.
        data["tasks"] = [
            {"id": f"task-{i}", "order": i, **task} if isinstance(task, dict) else task
            for i, task in enumerate(tasks)
        ]
    try:
        return RoutineTemplate.model_validate(data)
    except ValidationError as e:
        raise TemplateError(f"{source}: {e}") from e


def load_template(path: Path) -> RoutineTemplate:
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise TemplateError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise TemplateError(f"{path}: invalid YAML: {e}") from e
    return parse_template(data, str(path))
