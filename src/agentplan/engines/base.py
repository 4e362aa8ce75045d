"""Agent dispatch capability and the base class for CLI engine adapters."""

from __future__ import annotations

import asyncio
import json
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from agentplan.errors import looks_like_policy_block, looks_like_rate_limit
from agentplan.io_utils import append_text


@dataclass
class DispatchResult:
    """Uniform result of handing one task to an agent."""

    success: bool = False
    output: str = ""
    files_modified: list[str] = field(default_factory=list)
    error: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    return_code: int = 0


class AgentDispatcher(Protocol):
    """Anything that can run an agent: ``dispatch(agent, prompt, tools)``."""

    async def dispatch(
        self,
        agent_name: str,
        prompt: str,
        allowed_tools: list[str],
    ) -> DispatchResult: ...


class EngineBase(ABC):
    """Abstract CLI engine adapter.  Subclasses implement ``build_cmd``."""

    name: str = "base"

    def __init__(self, cwd: Path | None = None, log_file: Path | None = None) -> None:
        self.cwd = cwd
        self.log_file = log_file

    @abstractmethod
    def build_cmd(self, prompt: str, allowed_tools: list[str]) -> list[str]:
        """Return the CLI command list for the given prompt."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> DispatchResult:
        """Parse raw stdout into a :class:`DispatchResult`."""
        ...

    def check_available(self) -> str | None:
        """Return an error message if the engine CLI is not available, else None."""
        cmd_name = self.build_cmd("test", [])[0]
        if not shutil.which(cmd_name):
            return f"{cmd_name} not found in PATH"
        return None

    async def dispatch(
        self,
        agent_name: str,
        prompt: str,
        allowed_tools: list[str],
    ) -> DispatchResult:
        """Run the engine for *agent_name* and return the parsed result.

        Cancellation (e.g. a caller-side ``asyncio.wait_for`` timeout) kills
        the subprocess before propagating.
        """
        cmd = self.build_cmd(prompt, allowed_tools)
        start = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except FileNotFoundError:
            return DispatchResult(error=f"{cmd[0]} not found", return_code=-1)

        try:
            out_b, err_b = await proc.communicate()
        except asyncio.CancelledError:
            await self._terminate_process(proc)
            raise

        stdout = out_b.decode("utf-8", errors="replace")
        stderr = err_b.decode("utf-8", errors="replace")
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if self.log_file and stderr:
            append_text(self.log_file, stderr)

        result = self.parse_output(stdout)
        result.return_code = proc.returncode if proc.returncode is not None else -1
        if not result.duration_ms:
            result.duration_ms = elapsed_ms

        error = self._check_errors(stdout)
        if error and not result.error:
            result.error = error

        # Some CLIs report argument/permission issues only on stderr.
        if result.return_code != 0 and not result.error:
            stripped = stderr.strip()
            result.error = stripped.splitlines()[0] if stripped else f"exit code {result.return_code}"

        result.success = result.return_code == 0 and not result.error
        return result

    @staticmethod
    async def _terminate_process(proc: asyncio.subprocess.Process) -> None:
        """Kill a subprocess promptly (best effort)."""
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=2)
        except asyncio.TimeoutError:
            pass

    @staticmethod
    def _check_errors(raw: str) -> str:
        """Detect common error patterns in stream-json engine output."""
        if not raw:
            return ""

        # Structured parsing avoids false positives from plain text content.
        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue

            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip().lower()
                if looks_like_rate_limit(code):
                    return msg or "Rate limit exceeded"
                if msg:
                    return msg

            if isinstance(err, str):
                if looks_like_policy_block(err):
                    return "Blocked by policy"
                if looks_like_rate_limit(err):
                    return "Rate limit exceeded"
                if err.strip():
                    return err.strip()

            if str(obj.get("type", "")).lower() == "error":
                msg = obj.get("message") or obj.get("text") or ""
                msg = msg.strip() if isinstance(msg, str) else ""
                if not msg:
                    return "Unknown error"
                if looks_like_policy_block(msg):
                    return "Blocked by policy"
                if looks_like_rate_limit(msg):
                    return "Rate limit exceeded"
                return msg

            if obj.get("type") == "result" and obj.get("is_error"):
                return str(obj.get("result") or "Agent reported an error").strip()

        return ""
