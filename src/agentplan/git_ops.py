"""Git queries used to derive the identity of the current unit of work."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _git(*args: str, cwd: Path | None = None, check: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=cwd,
        check=check,
    )


def head_commit(cwd: Path | None = None) -> str:
    """Return the full ``HEAD`` hash, or ``""`` when there is no commit."""
    r = _git("rev-parse", "--verify", "--quiet", "HEAD", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else ""


def changed_files(cwd: Path | None = None) -> list[str]:
    """Paths with uncommitted changes (staged, unstaged or untracked)."""
    r = _git("status", "--porcelain", "--untracked-files=all", cwd=cwd)
    if r.returncode != 0:
        return []
    files: list[str] = []
    for line in r.stdout.splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        files.append(path.strip().strip('"'))
    return files
