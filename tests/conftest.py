"""Shared fixtures for agentplan tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Async store operations are driven with asyncio.run inside ordinary test functions.
"""

from __future__ import annotations

import asyncio
import re
import subprocess
from pathlib import Path
from typing import Any

import pytest

from agentplan.engines.base import DispatchResult
from agentplan.identity import StaticIdentityProvider
from agentplan.io_utils import write_text
from agentplan.plans import PlanStore
from agentplan.progress import ProgressStore

IDENTITY = "abc123def456"

_TASK_ID_RE = re.compile(r"^TASK ID: (\S+)$", re.MULTILINE)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo with one commit."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


def _make_task(
    id: str,
    agent: str = "backend-agent",
    description: str = "",
    files: list[str] | None = None,
    deps: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "id": id,
        "designated_agent": agent,
        "description": description or f"Implement {id}",
        "files_to_modify": files if files is not None else [f"src/{id.lower()}.py"],
        "dependencies": deps or [],
    }


@pytest.fixture
def make_task():
    """Factory fixture that creates raw task objects as a planner sends them."""
    return _make_task


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "plan_and_progress"


@pytest.fixture
def progress_store(state_dir: Path) -> ProgressStore:
    return ProgressStore(state_dir)


@pytest.fixture
def plan_store(state_dir: Path, progress_store: ProgressStore) -> PlanStore:
    return PlanStore(state_dir, progress_store, StaticIdentityProvider(IDENTITY))


@pytest.fixture
def planned(plan_store: PlanStore, make_task):
    """Create a plan for IDENTITY from raw tasks and return the plan store."""

    def _plan(tasks: list[dict[str, Any]], identity: str = IDENTITY) -> PlanStore:
        asyncio.run(plan_store.create_plan(identity, "Build the feature", "Three steps", tasks))
        return plan_store

    return _plan


class FakeDispatcher:
    """Scripted stand-in for an agent engine.

    ``outcomes`` maps a task id to a :class:`DispatchResult`, an exception to
    raise, or ``"hang"`` to block until cancelled. Unscripted tasks succeed
    and report no files.
    """

    def __init__(self, outcomes: dict[str, Any] | None = None, delay: float = 0.01) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls: list[tuple[str, str, list[str]]] = []
        self.active = 0
        self.max_active = 0

    async def dispatch(self, agent_name: str, prompt: str, allowed_tools: list[str]) -> DispatchResult:
        match = _TASK_ID_RE.search(prompt)
        task_id = match.group(1) if match else "?"
        self.calls.append((task_id, agent_name, list(allowed_tools)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            outcome = self.outcomes.get(task_id)
            if outcome == "hang":
                await asyncio.Event().wait()
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, DispatchResult):
                return outcome
            return DispatchResult(success=True, output=f"done {task_id}")
        finally:
            self.active -= 1

    @property
    def dispatched(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher
