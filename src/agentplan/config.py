"""Configuration defaults, env vars, and runtime options for agentplan."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_STATE_DIR = "plan_and_progress"

DEFAULT_ENGINE = "claude"

# Tool allow-lists handed to each agent when the driver dispatches a task.
DEFAULT_AGENT_TOOLS: dict[str, tuple[str, ...]] = {
    "planner": ("Read", "Glob", "Grep"),
    "backend-agent": ("Read", "Write", "Edit", "Bash"),
    "frontend-agent": ("Read", "Write", "Edit"),
    "testing-agent": ("Read", "Write", "Edit", "Bash"),
    "builder": ("Read", "Bash"),
    "linter": ("Read", "Grep", "Bash"),
    "orchestrator": ("Read",),
}

FALLBACK_TOOLS: tuple[str, ...] = ("Read", "Write", "Edit")

# Role and specialization lines used when building dispatch prompts.
AGENT_ROLES: dict[str, tuple[str, str]] = {
    "planner": ("strategic-planner", "task analysis, execution plan generation, codebase analysis"),
    "backend-agent": ("backend-developer", "API design, database operations, server-side logic"),
    "frontend-agent": ("frontend-developer", "UI components, styling, browser compatibility"),
    "testing-agent": ("test-engineer", "unit, integration and end-to-end testing"),
    "builder": ("build-engineer", "build systems, bundling, packaging"),
    "linter": ("code-quality-engineer", "linting, static analysis, code standards"),
    "orchestrator": ("workflow-coordinator", "agent coordination and result aggregation"),
}


@dataclass
class Config:
    """Runtime configuration shared by the CLI, the stores and the driver."""

    # Storage
    state_dir: str = ""
    identity: str = ""

    # Dispatch
    engine: str = ""
    max_parallel: int = 3
    dispatch_timeout: int = 1800
    max_tasks: int = 0

    # Agents
    agent_tools: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_AGENT_TOOLS)
    )

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.state_dir:
            self.state_dir = os.environ.get("AGENTPLAN_STATE_DIR") or DEFAULT_STATE_DIR
        if not self.engine:
            self.engine = os.environ.get("AGENTPLAN_ENGINE") or DEFAULT_ENGINE
        if self.max_parallel < 1:
            self.max_parallel = 1

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    def tools_for(self, agent: str) -> list[str]:
        """Return the tool allow-list for *agent*, falling back to FALLBACK_TOOLS."""
        return list(self.agent_tools.get(agent, FALLBACK_TOOLS))

    def timeout_seconds(self) -> float | None:
        """Dispatch timeout in seconds, or ``None`` when disabled (``0``)."""
        return float(self.dispatch_timeout) if self.dispatch_timeout > 0 else None


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    import subprocess

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
