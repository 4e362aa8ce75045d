"""Plan input validation: field checks, id format, dangling references, cycles."""

from __future__ import annotations

from typing import Any

from agentplan.errors import ValidationError
from agentplan.evaluator import detect_cycle, missing_dependencies
from agentplan.tasks.model import TASK_ID_RE, Task

_REQUIRED_TEXT_FIELDS = ("id", "designated_agent", "description")
_REQUIRED_LIST_FIELDS = ("files_to_modify", "dependencies")


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def validate_raw_task(raw: Any, index: int) -> list[str]:
    """Return field-level errors for one task object as received from a caller."""
    where = f"tasks[{index}]"
    if not isinstance(raw, dict):
        return [f"{where}: must be an object"]

    errors: list[str] = []
    for name in _REQUIRED_TEXT_FIELDS:
        value = raw.get(name)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{where}: '{name}' is required and must be a non-empty string")
    for name in _REQUIRED_LIST_FIELDS:
        if name not in raw:
            errors.append(f"{where}: '{name}' is required")
        elif not _is_str_list(raw[name]):
            errors.append(f"{where}: '{name}' must be an array of strings")

    tid = raw.get("id")
    if isinstance(tid, str) and tid.strip() and not TASK_ID_RE.match(tid):
        errors.append(f"{where}: id {tid!r} must look like TASK-001")
    return errors


def validate(tasks: list[Task]) -> list[str]:
    """Graph-level errors: duplicate ids, dangling references, cycles."""
    errors: list[str] = []
    seen: set[str] = set()
    for t in tasks:
        if t.id in seen:
            errors.append(f"Duplicate task id: {t.id}")
        seen.add(t.id)

    for tid, deps in missing_dependencies(tasks).items():
        errors.append(f"{tid} depends on unknown task(s): {', '.join(deps)}")

    cycle = detect_cycle(tasks)
    if cycle:
        errors.append(f"Dependency cycle: {' -> '.join(cycle)}")
    return errors


def build_tasks(task_description: Any, synopsis: Any, raw_tasks: Any) -> list[Task]:
    """Validate caller-supplied plan input and return the task records.

    Raises :class:`ValidationError` listing every problem found. Nothing is
    written by this function.
    """
    errors: list[str] = []
    if not isinstance(task_description, str) or not task_description.strip():
        errors.append("task_description is required and cannot be empty")
    if not isinstance(synopsis, str) or not synopsis.strip():
        errors.append("synopsis is required and cannot be empty")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        errors.append("tasks array is required and cannot be empty")
        raise ValidationError("; ".join(errors), errors=errors)

    for i, raw in enumerate(raw_tasks):
        if isinstance(raw, Task):
            continue
        errors.extend(validate_raw_task(raw, i))
    if errors:
        raise ValidationError("; ".join(errors), errors=errors)

    tasks = [raw if isinstance(raw, Task) else Task.from_dict(raw) for raw in raw_tasks]
    for t in tasks:
        if not TASK_ID_RE.match(t.id):
            errors.append(f"Task id {t.id!r} must look like TASK-001")

    errors.extend(validate(tasks))
    if errors:
        raise ValidationError(
            "; ".join(errors),
            errors=errors,
            cycle=detect_cycle(tasks),
            missing=missing_dependencies(tasks),
        )
    return tasks
