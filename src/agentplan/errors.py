"""Error taxonomy for the orchestration store, plus dispatch failure classification.

Every failure path raises one of these typed errors; none of them is
swallowed by the stores. The tool boundary turns them into structured
error objects with :meth:`OrchestrationError.to_dict`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class OrchestrationError(Exception):
    """Base class for all store, evaluator and driver errors."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": str(self)}


class ValidationError(OrchestrationError):
    """Malformed or cyclic plan input. Raised before anything is written."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        cycle: list[str] | None = None,
        missing: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or [message]
        self.cycle = cycle
        self.missing = missing or {}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = list(self.errors)
        if self.cycle:
            data["cycle"] = list(self.cycle)
        if self.missing:
            data["missing"] = {k: list(v) for k, v in self.missing.items()}
        return data


class NotFound(OrchestrationError):
    """No plan or progress document exists yet for the identity."""

    def __init__(self, identity: str, kind: str) -> None:
        super().__init__(f"No {kind} document found for identity {identity!r}")
        self.identity = identity
        self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(identity=self.identity, kind=self.kind)
        return data


class TaskNotFound(OrchestrationError):
    """Reference to a task id the progress document does not contain."""

    def __init__(self, identity: str, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found in progress for {identity!r}")
        self.identity = identity
        self.task_id = task_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(identity=self.identity, task_id=self.task_id)
        return data


class IllegalTransition(OrchestrationError):
    """Requested state change is not pending->in_progress or in_progress->completed."""

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(f"Task {task_id}: illegal transition {current} -> {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(task_id=self.task_id, current=self.current, requested=self.requested)
        return data


class CorruptedState(OrchestrationError):
    """A persisted document could not be parsed. The store never repairs it."""

    def __init__(self, identity: str, path: Path | str, reason: str) -> None:
        super().__init__(f"Corrupted document for {identity!r} at {path}: {reason}")
        self.identity = identity
        self.path = str(path)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(identity=self.identity, path=self.path, reason=self.reason)
        return data


class DispatchFailure(OrchestrationError):
    """The agent capability returned failure, raised, or timed out."""

    def __init__(self, task_id: str, agent: str, message: str) -> None:
        super().__init__(f"Task {task_id} ({agent}) failed: {message}")
        self.task_id = task_id
        self.agent = agent
        self.message = message

    @property
    def failure_type(self) -> str:
        return classify_failure(self.message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            task_id=self.task_id,
            agent=self.agent,
            failure_type=self.failure_type,
        )
        return data


# ── Failure classification ───────────────────────────────────────────

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "quota",
    "429",
    "too many requests",
)

POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "blocked by policy",
    "read-only sandbox",
    "permission to use",
)

EXTERNAL_FAILURE_PATTERNS: tuple[str, ...] = (
    "command not found",
    "not found in path",
    "enoent",
    "eacces",
    "permission denied",
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "etimedout",
    "certificate",
    "ssl",
    "overloaded",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_policy_block(text: str) -> bool:
    """Return ``True`` when text indicates a tool permission or sandbox block."""
    if not text:
        return False
    return _contains_any(text, POLICY_BLOCK_PATTERNS)


def classify_failure(text: str) -> str:
    """Return ``"external"`` for infrastructural failures, else ``"internal"``.

    External failures (rate limits, network, missing CLI) are the ones a
    caller-side retry layer may reasonably retry.
    """
    if not text or not text.strip():
        return "internal"
    if looks_like_rate_limit(text) or looks_like_policy_block(text):
        return "external"
    if _contains_any(text, EXTERNAL_FAILURE_PATTERNS):
        return "external"
    return "internal"
