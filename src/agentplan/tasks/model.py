"""Plan and Progress data models shared by the stores, evaluator and driver."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

TASK_ID_RE = re.compile(r"^TASK-\d{3,}$")


class TaskState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# The only legal state changes; everything else is an IllegalTransition.
ALLOWED_TRANSITIONS: dict[TaskState, TaskState] = {
    TaskState.PENDING: TaskState.IN_PROGRESS,
    TaskState.IN_PROGRESS: TaskState.COMPLETED,
}


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def timestamp_token(iso: str | None = None) -> str:
    """Filesystem-safe form of an ISO timestamp (``:`` and ``.`` become ``-``)."""
    return re.sub(r"[:.]", "-", iso or utc_now_iso())


def task_id_for_number(number: int) -> str:
    """``3 -> "TASK-003"``."""
    return f"TASK-{number:03d}"


@dataclass(frozen=True)
class Task:
    """Immutable task record as declared in a Plan."""

    id: str
    designated_agent: str
    description: str
    files_to_modify: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "designated_agent": self.designated_agent,
            "description": self.description,
            "files_to_modify": list(self.files_to_modify),
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=data["id"],
            designated_agent=data["designated_agent"],
            description=data["description"],
            files_to_modify=list(data.get("files_to_modify") or []),
            dependencies=list(data.get("dependencies") or []),
        )


_OPTIONAL_PROGRESS_FIELDS = (
    "agent_session_id",
    "files_modified",
    "summary",
    "started_at",
    "completed_at",
    "error_message",
)


@dataclass
class TaskProgress:
    """Mutable execution state of one plan task."""

    id: str
    designated_agent: str
    description: str
    files_to_modify: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    state: TaskState = TaskState.PENDING
    agent_session_id: str | None = None
    files_modified: list[str] | None = None
    summary: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None

    @classmethod
    def from_task(cls, task: Task) -> TaskProgress:
        return cls(
            id=task.id,
            designated_agent=task.designated_agent,
            description=task.description,
            files_to_modify=list(task.files_to_modify),
            dependencies=list(task.dependencies),
        )

    def carry_forward(self, task: Task) -> TaskProgress:
        """Take *task*'s declared fields while keeping this task's execution state."""
        return TaskProgress(
            id=task.id,
            designated_agent=task.designated_agent,
            description=task.description,
            files_to_modify=list(task.files_to_modify),
            dependencies=list(task.dependencies),
            state=self.state,
            agent_session_id=self.agent_session_id,
            files_modified=list(self.files_modified) if self.files_modified is not None else None,
            summary=self.summary,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "designated_agent": self.designated_agent,
            "description": self.description,
            "files_to_modify": list(self.files_to_modify),
            "dependencies": list(self.dependencies),
            "state": self.state.value,
        }
        for name in _OPTIONAL_PROGRESS_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = list(value) if isinstance(value, list) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskProgress:
        files_modified = data.get("files_modified")
        return cls(
            id=data["id"],
            designated_agent=data["designated_agent"],
            description=data["description"],
            files_to_modify=list(data.get("files_to_modify") or []),
            dependencies=list(data.get("dependencies") or []),
            state=TaskState(data.get("state", TaskState.PENDING.value)),
            agent_session_id=data.get("agent_session_id"),
            files_modified=list(files_modified) if files_modified is not None else None,
            summary=data.get("summary"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error_message=data.get("error_message"),
        )


@dataclass(frozen=True)
class Plan:
    """Declared task breakdown for one identity."""

    task_description: str
    synopsis: str
    created_at: str
    git_commit_hash: str
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_description": self.task_description,
            "synopsis": self.synopsis,
            "created_at": self.created_at,
            "git_commit_hash": self.git_commit_hash,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Plan:
        return cls(
            task_description=data["task_description"],
            synopsis=data["synopsis"],
            created_at=data["created_at"],
            git_commit_hash=data.get("git_commit_hash") or "",
            tasks=[Task.from_dict(t) for t in data["tasks"]],
        )


@dataclass
class Progress:
    """Execution state of every task of one plan."""

    plan_file: str
    created_at: str
    last_updated: str
    git_commit_hash: str
    tasks: list[TaskProgress] = field(default_factory=list)

    def get_task(self, task_id: str) -> TaskProgress | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def count(self, state: TaskState) -> int:
        return sum(1 for t in self.tasks if t.state == state)

    def is_finished(self) -> bool:
        """``True`` when every task is completed."""
        return all(t.state == TaskState.COMPLETED for t in self.tasks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_file": self.plan_file,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "git_commit_hash": self.git_commit_hash,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Progress:
        return cls(
            plan_file=data.get("plan_file") or "",
            created_at=data["created_at"],
            last_updated=data["last_updated"],
            git_commit_hash=data.get("git_commit_hash") or "",
            tasks=[TaskProgress.from_dict(t) for t in data["tasks"]],
        )


@dataclass
class TaskPatch:
    """A requested mutation of one task's progress entry."""

    state: TaskState | None = None
    agent_session_id: str | None = None
    files_modified: list[str] | None = None
    summary: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskPatch:
        state = data.get("state")
        files = data.get("files_modified")
        return cls(
            state=TaskState(state) if state else None,
            agent_session_id=data.get("agent_session_id"),
            files_modified=list(files) if files is not None else None,
            summary=data.get("summary"),
            error_message=data.get("error_message"),
        )
