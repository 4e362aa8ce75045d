"""Locate, load and save plan/progress documents under the state directory.

Layout::

    <state_dir>/<identity>/plan-<timestamp>.json
    <state_dir>/<identity>/progress-<timestamp>.json
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from agentplan.errors import CorruptedState
from agentplan.io_utils import read_text, write_text_atomic
from agentplan.tasks.model import timestamp_token

PLAN_PREFIX = "plan-"
PROGRESS_PREFIX = "progress-"


def document_dir(state_dir: Path, identity: str) -> Path:
    return state_dir / identity


def find_document(directory: Path, prefix: str) -> Path | None:
    """Return the most recent ``<prefix>*.json`` in *directory*, if any."""
    if not directory.is_dir():
        return None
    candidates = sorted(
        p for p in directory.glob(f"{prefix}*.json") if p.is_file()
    )
    return candidates[-1] if candidates else None


def new_document_path(directory: Path, prefix: str, token: str | None = None) -> Path:
    return directory / f"{prefix}{token or timestamp_token()}.json"


def load_document(path: Path, identity: str) -> dict[str, Any]:
    """Parse the JSON object stored at *path*.

    Raises :class:`CorruptedState` when the content is not a JSON object.
    """
    try:
        raw = read_text(path)
    except UnicodeDecodeError as e:
        raise CorruptedState(identity, path, f"not UTF-8 text ({e})") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptedState(identity, path, f"invalid JSON ({e.msg} at line {e.lineno})") from e
    if not isinstance(data, dict):
        raise CorruptedState(identity, path, "document is not a JSON object")
    return data


def save_document(path: Path, data: dict[str, Any]) -> None:
    write_text_atomic(path, json.dumps(data, indent=2) + "\n")
