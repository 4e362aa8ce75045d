"""Plan store: create, re-plan and read the task breakdown for an identity.

A plan is created once per identity. Submitting a new breakdown for an
identity that already has one rewrites the same plan file and rebuilds the
progress document so reused task ids keep their execution state. Both files
are written while holding the progress store's lock for the identity.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from agentplan import log
from agentplan.errors import CorruptedState, NotFound
from agentplan.identity import GitIdentityProvider, IdentityProvider, check_identity
from agentplan.progress import ProgressStore, carry_forward, new_progress
from agentplan.tasks.io import (
    PLAN_PREFIX,
    PROGRESS_PREFIX,
    document_dir,
    find_document,
    load_document,
    new_document_path,
    save_document,
)
from agentplan.tasks.model import Plan, Task, timestamp_token, utc_now_iso
from agentplan.tasks.validate import build_tasks


class PlanStore:
    def __init__(
        self,
        state_dir: Path | str,
        progress_store: ProgressStore | None = None,
        identity_provider: IdentityProvider | None = None,
    ) -> None:
        self.state_dir = Path(state_dir)
        self.progress = progress_store or ProgressStore(self.state_dir)
        self.identity_provider = identity_provider or GitIdentityProvider()

    def plan_path(self, identity: str) -> Path | None:
        return find_document(document_dir(self.state_dir, check_identity(identity)), PLAN_PREFIX)

    def has_plan(self, identity: str) -> bool:
        return self.plan_path(identity) is not None

    def current_identity(self) -> str:
        return self.identity_provider.resolve()

    async def _load(self, identity: str, path: Path) -> Plan:
        data = await asyncio.to_thread(load_document, path, identity)
        try:
            return Plan.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptedState(identity, path, f"invalid plan structure ({e!r})") from e

    async def read_plan(self, identity: str) -> Plan:
        path = self.plan_path(identity)
        if path is None:
            raise NotFound(identity, "plan")
        return await self._load(identity, path)

    async def create_plan(
        self,
        identity: str | None,
        task_description: Any,
        synopsis: Any,
        tasks: Any,
    ) -> Plan:
        """Validate and persist a plan, creating or re-planning as needed.

        *identity* ``None`` means "resolve it from the identity provider".
        Raises :class:`ValidationError` before anything touches the disk.
        """
        records = build_tasks(task_description, synopsis, tasks)
        identity = check_identity(identity or self.current_identity())

        async with self.progress.locks.hold(identity):
            existing = self.plan_path(identity)
            if existing is None:
                plan = await self._create(identity, task_description, synopsis, records)
            else:
                plan = await self._replan(identity, existing, task_description, synopsis, records)
        return plan

    async def _create(self, identity: str, task_description: str, synopsis: str, records: list[Task]) -> Plan:
        now = utc_now_iso()
        token = timestamp_token(now)
        directory = document_dir(self.state_dir, identity)
        plan = Plan(
            task_description=task_description,
            synopsis=synopsis,
            created_at=now,
            git_commit_hash=identity,
            tasks=records,
        )
        plan_file = new_document_path(directory, PLAN_PREFIX, token)

        progress_file = self.progress.progress_path(identity)
        if progress_file is None:
            progress_file = new_document_path(directory, PROGRESS_PREFIX, token)
            progress = new_progress(plan, plan_file)
        else:
            # Progress left behind without its plan: fold it into the new plan.
            _, previous = await self.progress.load(identity)
            progress = carry_forward(previous, plan, plan_file)

        await asyncio.to_thread(save_document, plan_file, plan.to_dict())
        await self.progress.save(progress_file, progress)

        log.debug(f"Created plan {plan_file.name} with {len(records)} task(s)")
        return plan

    async def _replan(
        self,
        identity: str,
        plan_file: Path,
        task_description: str,
        synopsis: str,
        records: list[Task],
    ) -> Plan:
        # Both documents are read before either is written so corruption
        # leaves the store untouched.
        old_plan = await self._load(identity, plan_file)
        progress_file = self.progress.progress_path(identity)
        previous = None
        if progress_file is not None:
            _, previous = await self.progress.load(identity)

        plan = Plan(
            task_description=task_description,
            synopsis=synopsis,
            created_at=old_plan.created_at,
            git_commit_hash=identity,
            tasks=records,
        )
        if previous is None:
            progress = new_progress(plan, plan_file)
            progress_file = new_document_path(
                document_dir(self.state_dir, identity),
                PROGRESS_PREFIX,
                timestamp_token(),
            )
        else:
            progress = carry_forward(previous, plan, plan_file)

        await asyncio.to_thread(save_document, plan_file, plan.to_dict())
        await self.progress.save(progress_file, progress)

        kept = sum(1 for t in records if old_plan.get_task(t.id) is not None)
        log.debug(f"Re-planned {plan_file.name}: {kept} kept, {len(records) - kept} new")
        return plan
