"""Engine registry — get the right adapter by name."""

from __future__ import annotations

from pathlib import Path

from agentplan.engines.base import EngineBase
from agentplan.engines.claude import ClaudeEngine


def get_engine(name: str, *, cwd: Path | None = None, log_file: Path | None = None) -> EngineBase:
    """Return an engine adapter for *name*."""
    match name:
        case "claude":
            return ClaudeEngine(cwd=cwd, log_file=log_file)
        case _:
            raise ValueError(f"Unknown engine: {name}")


ENGINE_NAMES = ("claude",)
