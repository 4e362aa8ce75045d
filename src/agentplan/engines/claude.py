"""Claude Code engine adapter."""

from __future__ import annotations

import json
import shutil
from typing import Any

from agentplan.engines.base import DispatchResult, EngineBase

# Tool uses that write to disk, mapped to the input key holding the path.
FILE_WRITE_TOOLS: dict[str, str] = {
    "Write": "file_path",
    "Edit": "file_path",
    "MultiEdit": "file_path",
    "NotebookEdit": "notebook_path",
}


def _tool_uses(obj: dict[str, Any]) -> list[dict[str, Any]]:
    message = obj.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [c for c in content if isinstance(c, dict) and c.get("type") == "tool_use"]


class ClaudeEngine(EngineBase):
    name = "claude"

    def build_cmd(self, prompt: str, allowed_tools: list[str]) -> list[str]:
        # Resolved path so the child gets an absolute executable.
        claude = shutil.which("claude") or "claude"
        cmd = [
            claude,
            "--verbose",
            "-p",
            prompt,
            "--output-format",
            "stream-json",
        ]
        if allowed_tools:
            cmd += ["--allowedTools", ",".join(allowed_tools)]
        return cmd

    def parse_output(self, raw: str) -> DispatchResult:
        result = DispatchResult()
        files: list[str] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue

            match obj.get("type"):
                case "assistant":
                    for use in _tool_uses(obj):
                        key = FILE_WRITE_TOOLS.get(use.get("name", ""))
                        tool_input = use.get("input") or {}
                        path = tool_input.get(key) if key and isinstance(tool_input, dict) else None
                        if isinstance(path, str) and path and path not in files:
                            files.append(path)
                case "result":
                    result.output = str(obj.get("result") or "")
                    usage = obj.get("usage") or {}
                    try:
                        result.input_tokens = int(usage.get("input_tokens", 0))
                        result.output_tokens = int(usage.get("output_tokens", 0))
                    except (ValueError, TypeError, AttributeError):
                        pass
                    if isinstance(obj.get("duration_ms"), int):
                        result.duration_ms = obj["duration_ms"]

        result.files_modified = files
        if not result.output:
            result.output = "Task completed"
        return result

    def check_available(self) -> str | None:
        if not shutil.which("claude"):
            return "Claude Code CLI not found. Install from https://github.com/anthropics/claude-code"
        return None
