"""Tests for engine adapters and registry."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from agentplan.engines.base import DispatchResult, EngineBase
from agentplan.engines.claude import ClaudeEngine
from agentplan.engines.registry import ENGINE_NAMES, get_engine
from agentplan.io_utils import read_text


class ScriptEngine(EngineBase):
    """Runs a short Python script in place of an agent CLI."""

    name = "script"

    def __init__(self, script: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.script = script

    def build_cmd(self, prompt: str, allowed_tools: list[str]) -> list[str]:
        return [sys.executable, "-c", self.script, prompt]

    def parse_output(self, raw: str) -> DispatchResult:
        return DispatchResult(output=raw.strip())


def _dispatch(engine: EngineBase, prompt: str = "prompt") -> DispatchResult:
    return asyncio.run(engine.dispatch("backend-agent", prompt, ["Read"]))


class TestEngineRegistry:
    def test_get_engine_returns_claude(self) -> None:
        assert isinstance(get_engine("claude"), ClaudeEngine)

    def test_engine_names(self) -> None:
        assert ENGINE_NAMES == ("claude",)

    def test_unknown_engine_raises(self) -> None:
        with pytest.raises(ValueError):
            get_engine("unknown-provider")

    def test_passes_cwd_and_log_file(self, tmp_path: Path) -> None:
        engine = get_engine("claude", cwd=tmp_path, log_file=tmp_path / "e.log")
        assert engine.cwd == tmp_path
        assert engine.log_file == tmp_path / "e.log"


class TestClaudeEngine:
    def test_build_cmd_uses_resolved_path_when_available(self) -> None:
        with patch("agentplan.engines.claude.shutil.which", return_value="/usr/bin/claude"):
            cmd = ClaudeEngine().build_cmd("hello", ["Read", "Edit"])

        assert cmd[0] == "/usr/bin/claude"
        assert cmd[cmd.index("-p") + 1] == "hello"
        assert cmd[cmd.index("--output-format") + 1] == "stream-json"
        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Edit"

    def test_build_cmd_without_tools(self) -> None:
        with patch("agentplan.engines.claude.shutil.which", return_value=None):
            cmd = ClaudeEngine().build_cmd("hello", [])
        assert cmd[0] == "claude"
        assert "--allowedTools" not in cmd

    def test_parse_output_extracts_result_and_usage(self) -> None:
        raw = json.dumps(
            {
                "type": "result",
                "result": "done",
                "usage": {"input_tokens": 12, "output_tokens": 7},
                "duration_ms": 450,
            }
        )
        result = ClaudeEngine().parse_output(raw)

        assert result.output == "done"
        assert result.input_tokens == 12
        assert result.output_tokens == 7
        assert result.duration_ms == 450

    def test_parse_output_falls_back_when_no_result_line(self) -> None:
        result = ClaudeEngine().parse_output('{"type":"assistant","text":"hi"}\nnot json')
        assert result.output == "Task completed"
        assert result.files_modified == []

    def test_parse_output_collects_written_files(self) -> None:
        def tool_use(name: str, **inputs) -> str:
            content = [{"type": "tool_use", "name": name, "input": inputs}]
            return json.dumps({"type": "assistant", "message": {"content": content}})

        raw = "\n".join(
            [
                tool_use("Read", file_path="src/ignored.py"),
                tool_use("Write", file_path="src/a.py"),
                tool_use("Edit", file_path="src/a.py"),
                tool_use("MultiEdit", file_path="src/b.py"),
                tool_use("NotebookEdit", notebook_path="nb/analysis.ipynb"),
                '{"type":"result","result":"ok"}',
            ]
        )
        result = ClaudeEngine().parse_output(raw)
        assert result.files_modified == ["src/a.py", "src/b.py", "nb/analysis.ipynb"]

    def test_check_available_reports_missing_binary(self) -> None:
        with patch("agentplan.engines.claude.shutil.which", return_value=None):
            assert ClaudeEngine().check_available() is not None

    def test_check_available_ok(self) -> None:
        with patch("agentplan.engines.claude.shutil.which", return_value="/usr/bin/claude"):
            assert ClaudeEngine().check_available() is None


class TestCheckErrors:
    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ('{"error": {"type": "rate_limit_error", "message": ""}}', "Rate limit exceeded"),
            ('{"error": {"message": "Invalid API key"}}', "Invalid API key"),
            ('{"error": "Request blocked by policy"}', "Blocked by policy"),
            ('{"error": "429 too many requests"}', "Rate limit exceeded"),
            ('{"type": "error", "message": ""}', "Unknown error"),
            ('{"type": "error", "message": "quota exhausted"}', "Rate limit exceeded"),
            ('{"type": "result", "is_error": true, "result": "Agent gave up"}', "Agent gave up"),
        ],
    )
    def test_detects_structured_errors(self, line: str, expected: str) -> None:
        assert EngineBase._check_errors(line) == expected

    def test_plain_text_is_not_an_error(self) -> None:
        assert EngineBase._check_errors("the error rate limit docs say hello") == ""
        assert EngineBase._check_errors("") == ""

    def test_success_result_is_not_an_error(self) -> None:
        assert EngineBase._check_errors('{"type": "result", "result": "ok"}') == ""


class TestDispatch:
    def test_successful_subprocess(self) -> None:
        engine = ScriptEngine("import sys; print('echo ' + sys.argv[1])")
        result = _dispatch(engine, "hello")
        assert result.success
        assert result.output == "echo hello"
        assert result.return_code == 0
        assert result.duration_ms >= 0

    def test_non_zero_exit_surfaces_first_stderr_line(self, tmp_path: Path) -> None:
        script = "import sys; sys.stderr.write('Permission denied\\nmore details\\n'); sys.exit(2)"
        log_file = tmp_path / "logs" / "engine.log"
        engine = ScriptEngine(script, log_file=log_file)

        result = _dispatch(engine)
        assert not result.success
        assert result.return_code == 2
        assert result.error == "Permission denied"
        assert "more details" in read_text(log_file)

    def test_stderr_log_is_appended(self, tmp_path: Path) -> None:
        log_file = tmp_path / "engine.log"
        engine = ScriptEngine("import sys; sys.stderr.write('warn\\n')", log_file=log_file)
        _dispatch(engine)
        _dispatch(engine)
        assert read_text(log_file) == "warn\nwarn\n"

    def test_silent_failure_reports_exit_code(self) -> None:
        result = _dispatch(ScriptEngine("import sys; sys.exit(3)"))
        assert result.error == "exit code 3"

    def test_error_in_stdout_fails_despite_zero_exit(self) -> None:
        script = "print('{\"type\": \"error\", \"message\": \"Invalid API key\"}')"
        result = _dispatch(ScriptEngine(script))
        assert not result.success
        assert result.return_code == 0
        assert result.error == "Invalid API key"

    def test_missing_binary(self) -> None:
        class Missing(ScriptEngine):
            def build_cmd(self, prompt: str, allowed_tools: list[str]) -> list[str]:
                return ["agentplan-no-such-binary", prompt]

        result = _dispatch(Missing(""))
        assert not result.success
        assert result.error == "agentplan-no-such-binary not found"
        assert result.return_code == -1

    def test_cancellation_kills_subprocess(self) -> None:
        engine = ScriptEngine("import time; time.sleep(30)")

        async def main() -> None:
            await asyncio.wait_for(engine.dispatch("backend-agent", "p", []), timeout=0.5)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(main())

    def test_runs_in_cwd(self, tmp_path: Path) -> None:
        engine = ScriptEngine("import os; print(os.getcwd())", cwd=tmp_path)
        assert Path(_dispatch(engine).output).resolve() == tmp_path.resolve()
