"""Reconcile a plan against its progress: declared vs. actual file changes.

Read-only. A task is compared once it has reported files or completed;
pending tasks, and in-progress tasks that have not reported anything yet,
never count as drift.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from agentplan.tasks.model import Plan, Progress, TaskState


@dataclass
class TaskComparison:
    task_id: str
    state: TaskState
    designated_agent: str
    declared_files: list[str] = field(default_factory=list)
    actual_files: list[str] = field(default_factory=list)
    extra_files: list[str] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)
    summary: str | None = None

    @property
    def has_discrepancy(self) -> bool:
        return bool(self.extra_files or self.missing_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "designated_agent": self.designated_agent,
            "planned_files": list(self.declared_files),
            "actual_files": list(self.actual_files),
            "has_discrepancy": self.has_discrepancy,
            "missing_files": list(self.missing_files),
            "unexpected_files": list(self.extra_files),
            "summary": self.summary,
        }


@dataclass
class Comparison:
    git_commit_hash: str
    overall_goal: str
    synopsis: str
    tasks: list[TaskComparison] = field(default_factory=list)

    @property
    def drift_detected(self) -> bool:
        return any(t.has_discrepancy for t in self.tasks)

    def count(self, state: TaskState) -> int:
        return sum(1 for t in self.tasks if t.state == state)

    @property
    def completion_percentage(self) -> int:
        if not self.tasks:
            return 0
        return round(self.count(TaskState.COMPLETED) / len(self.tasks) * 100)

    @property
    def root_task_completed(self) -> bool:
        return bool(self.tasks) and self.count(TaskState.COMPLETED) == len(self.tasks)

    def critical_missing_files(self) -> list[str]:
        return _unique(f for t in self.tasks for f in t.missing_files)

    def unexpected_files(self) -> list[str]:
        return _unique(f for t in self.tasks for f in t.extra_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "git_commit_hash": self.git_commit_hash,
            "overall_goal": self.overall_goal,
            "synopsis": self.synopsis,
            "drift_detected": self.drift_detected,
            "task_comparisons": [t.to_dict() for t in self.tasks],
            "summary": {
                "total_tasks": len(self.tasks),
                "completed_tasks": self.count(TaskState.COMPLETED),
                "in_progress_tasks": self.count(TaskState.IN_PROGRESS),
                "pending_tasks": self.count(TaskState.PENDING),
                "tasks_with_discrepancies": sum(1 for t in self.tasks if t.has_discrepancy),
                "overall_completion_percentage": self.completion_percentage,
                "root_task_completed": self.root_task_completed,
            },
            "discrepancy_analysis": {
                "critical_missing_files": self.critical_missing_files(),
                "all_unexpected_files": self.unexpected_files(),
            },
        }


def _unique(items: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


def compare(plan: Plan, progress: Progress) -> Comparison:
    """Compare every plan task with its progress entry, in plan order.

    A plan task with no progress entry is reported as pending.
    """
    result = Comparison(
        git_commit_hash=plan.git_commit_hash,
        overall_goal=plan.task_description,
        synopsis=plan.synopsis,
    )
    for task in plan.tasks:
        entry = progress.get_task(task.id)
        state = entry.state if entry else TaskState.PENDING
        declared = list(task.files_to_modify)
        cmp = TaskComparison(
            task_id=task.id,
            state=state,
            designated_agent=task.designated_agent,
            declared_files=declared,
            summary=entry.summary if entry else None,
        )
        reported = entry is not None and entry.files_modified is not None
        if state == TaskState.COMPLETED or (state == TaskState.IN_PROGRESS and reported):
            actual = list(entry.files_modified or [])
            cmp.actual_files = actual
            cmp.extra_files = [f for f in actual if f not in declared]
            cmp.missing_files = [f for f in declared if f not in actual]
        result.tasks.append(cmp)
    return result
