"""Progress store: per-task execution state, mutated under the identity lock.

Every mutation is a full read-modify-write of the progress document while
holding ``locks.hold(identity)``, followed by an atomic replace of the file.
The store enforces the state machine (``pending -> in_progress ->
completed``) but not dependency ordering; that is the evaluator's job.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from agentplan import log
from agentplan.errors import (
    CorruptedState,
    IllegalTransition,
    NotFound,
    TaskNotFound,
    ValidationError,
)
from agentplan.identity import check_identity
from agentplan.locking import LockRegistry
from agentplan.tasks.io import (
    PLAN_PREFIX,
    PROGRESS_PREFIX,
    document_dir,
    find_document,
    load_document,
    new_document_path,
    save_document,
)
from agentplan.tasks.model import (
    ALLOWED_TRANSITIONS,
    Plan,
    Progress,
    TaskPatch,
    TaskProgress,
    TaskState,
    utc_now_iso,
)


def apply_patch(task: TaskProgress, patch: TaskPatch, now: str) -> None:
    """Apply *patch* to *task* in place.

    Raises :class:`IllegalTransition` before touching anything when the
    requested state is not the single legal successor of the current one.
    """
    if patch.state is not None:
        if ALLOWED_TRANSITIONS.get(task.state) != patch.state:
            raise IllegalTransition(task.id, task.state.value, patch.state.value)
        task.state = patch.state
        if patch.state == TaskState.IN_PROGRESS:
            task.started_at = now
        elif patch.state == TaskState.COMPLETED:
            task.completed_at = now

    if patch.agent_session_id is not None:
        task.agent_session_id = patch.agent_session_id
    if patch.files_modified is not None:
        task.files_modified = list(patch.files_modified)
    if patch.summary is not None:
        task.summary = patch.summary
    if patch.error_message is not None:
        task.error_message = patch.error_message


def coerce_patch(patch: TaskPatch | dict[str, Any]) -> TaskPatch:
    if isinstance(patch, TaskPatch):
        return patch
    try:
        return TaskPatch.from_dict(patch)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid progress update: {e}") from e


class ProgressStore:
    """File-backed progress documents, one per identity."""

    def __init__(self, state_dir: Path | str, *, locks: LockRegistry | None = None) -> None:
        self.state_dir = Path(state_dir)
        self.locks = locks or LockRegistry()

    # ── location / raw I/O ───────────────────────────────────────

    def progress_path(self, identity: str) -> Path | None:
        return find_document(document_dir(self.state_dir, check_identity(identity)), PROGRESS_PREFIX)

    async def load(self, identity: str) -> tuple[Path, Progress]:
        """Read the current document without taking the lock."""
        path = self.progress_path(identity)
        if path is None:
            raise NotFound(identity, "progress")
        data = await asyncio.to_thread(load_document, path, identity)
        try:
            progress = Progress.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptedState(identity, path, f"invalid progress structure ({e!r})") from e
        return path, progress

    async def save(self, path: Path, progress: Progress) -> None:
        await asyncio.to_thread(save_document, path, progress.to_dict())

    # ── operations ───────────────────────────────────────────────

    async def read_progress(self, identity: str) -> Progress:
        _, progress = await self.load(identity)
        return progress

    async def initialize_progress(
        self,
        plan: Plan,
        plan_file: Path | str | None = None,
    ) -> Progress:
        """Create the all-pending progress document for *plan* if none exists.

        An existing document is returned unchanged.
        """
        identity = check_identity(plan.git_commit_hash)
        async with self.locks.hold(identity):
            if self.progress_path(identity) is not None:
                _, existing = await self.load(identity)
                return existing
            if plan_file is None:
                plan_file = find_document(document_dir(self.state_dir, identity), PLAN_PREFIX) or ""
            progress = new_progress(plan, plan_file)
            path = new_document_path(document_dir(self.state_dir, identity), PROGRESS_PREFIX)
            await self.save(path, progress)
        log.debug(f"Initialized progress for {identity} ({len(progress.tasks)} task(s))")
        return progress

    async def update_task(
        self,
        identity: str,
        task_id: str,
        patch: TaskPatch | dict[str, Any],
    ) -> Progress:
        """Apply *patch* to *task_id* and persist the whole document."""
        patch = coerce_patch(patch)
        async with self.locks.hold(identity):
            path, progress = await self.load(identity)
            task = progress.get_task(task_id)
            if task is None:
                raise TaskNotFound(identity, task_id)
            previous = task.state
            now = utc_now_iso()
            apply_patch(task, patch, now)
            progress.last_updated = now
            await self.save(path, progress)
        if task.state != previous:
            log.debug(f"Task {task_id}: {previous.value} -> {task.state.value}")
        return progress

    async def mark_in_progress(
        self,
        identity: str,
        task_id: str,
        agent_session_id: str | None = None,
    ) -> Progress:
        return await self.update_task(
            identity,
            task_id,
            TaskPatch(state=TaskState.IN_PROGRESS, agent_session_id=agent_session_id),
        )

    async def mark_completed(
        self,
        identity: str,
        task_id: str,
        *,
        files_modified: list[str] | None = None,
        summary: str | None = None,
        agent_session_id: str | None = None,
    ) -> Progress:
        return await self.update_task(
            identity,
            task_id,
            TaskPatch(
                state=TaskState.COMPLETED,
                files_modified=files_modified,
                summary=summary,
                agent_session_id=agent_session_id,
            ),
        )

    async def get_task(self, identity: str, task_id: str) -> TaskProgress:
        progress = await self.read_progress(identity)
        task = progress.get_task(task_id)
        if task is None:
            raise TaskNotFound(identity, task_id)
        return task

    async def in_progress_tasks(self, identity: str) -> list[TaskProgress]:
        progress = await self.read_progress(identity)
        return [t for t in progress.tasks if t.state == TaskState.IN_PROGRESS]


def new_progress(plan: Plan, plan_file: Path | str) -> Progress:
    now = utc_now_iso()
    return Progress(
        plan_file=str(plan_file),
        created_at=now,
        last_updated=now,
        git_commit_hash=plan.git_commit_hash,
        tasks=[TaskProgress.from_task(t) for t in plan.tasks],
    )


def carry_forward(previous: Progress, plan: Plan, plan_file: Path | str) -> Progress:
    """Progress for a re-plan: reused ids keep their execution state.

    Tasks new to *plan* start pending; tasks dropped from *plan* are dropped.
    """
    tasks: list[TaskProgress] = []
    for t in plan.tasks:
        prev = previous.get_task(t.id)
        tasks.append(prev.carry_forward(t) if prev else TaskProgress.from_task(t))
    return Progress(
        plan_file=str(plan_file),
        created_at=previous.created_at,
        last_updated=utc_now_iso(),
        git_commit_hash=plan.git_commit_hash,
        tasks=tasks,
    )
