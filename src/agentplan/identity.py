"""Identity resolution: which plan/progress pair applies to the current work.

The identity is the git ``HEAD`` hash when one exists. Without version
control (or before the first commit) it degrades to a ``no-commit-<timestamp>``
token so a document is always locatable. Resolution never raises.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Protocol

from agentplan import log
from agentplan.errors import ValidationError
from agentplan.git_ops import head_commit
from agentplan.tasks.model import timestamp_token

FALLBACK_PREFIX = "no-commit-"

_SAFE_IDENTITY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class IdentityProvider(Protocol):
    def resolve(self) -> str: ...


def fallback_identity() -> str:
    return f"{FALLBACK_PREFIX}{timestamp_token()}"


class GitIdentityProvider:
    """Resolve the identity from ``git rev-parse HEAD`` in *cwd*."""

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def resolve(self) -> str:
        try:
            commit = head_commit(cwd=self.cwd)
        except (OSError, subprocess.SubprocessError) as e:
            log.debug(f"git unavailable for identity resolution: {e}")
            commit = ""
        if commit:
            return commit
        token = fallback_identity()
        log.debug(f"No commit found; using fallback identity {token}")
        return token


class StaticIdentityProvider:
    """Always resolve to a fixed identity (host-supplied hash, tests)."""

    def __init__(self, identity: str) -> None:
        self.identity = check_identity(identity)

    def resolve(self) -> str:
        return self.identity


def check_identity(identity: str) -> str:
    """Return *identity* if it is usable as a single directory name.

    Raises :class:`ValidationError` otherwise (empty, ``..``, separators).
    """
    if not isinstance(identity, str) or not _SAFE_IDENTITY_RE.match(identity):
        raise ValidationError(f"Invalid identity {identity!r}")
    return identity


def resolve_identity(cwd: Path | None = None) -> str:
    return GitIdentityProvider(cwd).resolve()
