"""Tool-call boundary: named JSON operations over the plan and progress stores.

A host (an agent runtime, an RPC server, the ``agentplan tool`` command)
calls :meth:`ToolHandler.handle` with a tool name and a JSON object of
arguments and gets back a JSON-serializable envelope::

    {"ok": true, "result": {...}}
    {"ok": false, "error": {"type": "ValidationError", "message": ..., ...}}

Only :class:`~agentplan.errors.OrchestrationError` is turned into an error
envelope; anything else is a bug and propagates.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from agentplan import log
from agentplan.errors import OrchestrationError, ValidationError
from agentplan.evaluator import blocked_tasks, eligible_tasks, is_deadlocked
from agentplan.plans import PlanStore
from agentplan.reconcile import compare
from agentplan.tasks.model import TaskState

_IDENTITY_PROP = {
    "git_commit_hash": {
        "type": "string",
        "description": "Identity of the work item; defaults to the current git HEAD",
    }
}

_TASK_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "pattern": "^TASK-[0-9]{3,}$"},
        "designated_agent": {"type": "string"},
        "description": {"type": "string"},
        "files_to_modify": {"type": "array", "items": {"type": "string"}},
        "dependencies": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["id", "designated_agent", "description", "files_to_modify", "dependencies"],
}

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    "create_plan": {
        "description": (
            "Create the execution plan for the current work item, or re-plan it. "
            "Re-planning keeps the progress of task ids that are reused."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "task_description": {"type": "string"},
                "synopsis": {"type": "string"},
                "tasks": {"type": "array", "items": _TASK_SCHEMA},
                **_IDENTITY_PROP,
            },
            "required": ["task_description", "synopsis", "tasks"],
        },
    },
    "update_progress": {
        "description": (
            "Move a task forward (pending -> in_progress -> completed) "
            "or annotate it with session, files, summary or error details."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "task_id": {"type": "string"},
                "state": {"type": "string", "enum": [s.value for s in TaskState]},
                "agent_session_id": {"type": "string"},
                "files_modified": {"type": "array", "items": {"type": "string"}},
                "summary": {"type": "string"},
                "error_message": {"type": "string"},
                **_IDENTITY_PROP,
            },
            "required": ["task_id"],
        },
    },
    "compare_plan_progress": {
        "description": "Compare declared files against reported file changes for every task.",
        "input_schema": {"type": "object", "properties": dict(_IDENTITY_PROP)},
    },
    "get_progress": {
        "description": "Return the progress document of the work item.",
        "input_schema": {"type": "object", "properties": dict(_IDENTITY_PROP)},
    },
    "get_eligible_tasks": {
        "description": "List tasks that may start now, plus why the others are blocked.",
        "input_schema": {"type": "object", "properties": dict(_IDENTITY_PROP)},
    },
}

_PATCH_FIELDS = ("state", "agent_session_id", "files_modified", "summary", "error_message")
_TEXT_PATCH_FIELDS = ("agent_session_id", "summary", "error_message")


def ok(result: Any) -> dict[str, Any]:
    return {"ok": True, "result": result}


def failed(err: OrchestrationError) -> dict[str, Any]:
    return {"ok": False, "error": err.to_dict()}


class ToolHandler:
    def __init__(self, plans: PlanStore) -> None:
        self.plans = plans
        self.progress = plans.progress
        self._tools: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "create_plan": self._create_plan,
            "update_progress": self._update_progress,
            "compare_plan_progress": self._compare,
            "get_progress": self._get_progress,
            "get_eligible_tasks": self._get_eligible,
        }

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    async def handle(self, name: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            tool = self._tools.get(name)
            if tool is None:
                raise ValidationError(f"Unknown tool: {name}")
            if args is None:
                args = {}
            if not isinstance(args, dict):
                raise ValidationError("Tool arguments must be a JSON object")
            return ok(await tool(args))
        except OrchestrationError as e:
            log.debug(f"Tool {name} failed: {e}")
            return failed(e)

    def _identity(self, args: dict[str, Any]) -> str:
        identity = args.get("git_commit_hash")
        if identity is None or identity == "":
            return self.plans.current_identity()
        if not isinstance(identity, str):
            raise ValidationError("git_commit_hash must be a string")
        return identity

    async def _create_plan(self, args: dict[str, Any]) -> dict[str, Any]:
        identity = self._identity(args)
        plan = await self.plans.create_plan(
            identity,
            args.get("task_description"),
            args.get("synopsis"),
            args.get("tasks"),
        )
        return {
            "git_commit_hash": identity,
            "plan_file": str(self.plans.plan_path(identity)),
            "progress_file": str(self.progress.progress_path(identity)),
            "task_count": len(plan.tasks),
            "plan": plan.to_dict(),
        }

    async def _update_progress(self, args: dict[str, Any]) -> dict[str, Any]:
        identity = self._identity(args)
        task_id = args.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise ValidationError("task_id is required")
        patch = {k: args[k] for k in _PATCH_FIELDS if args.get(k) is not None}
        files = patch.get("files_modified")
        if files is not None and not (
            isinstance(files, list) and all(isinstance(f, str) for f in files)
        ):
            raise ValidationError("files_modified must be an array of strings")
        for name in _TEXT_PATCH_FIELDS:
            if name in patch and not isinstance(patch[name], str):
                raise ValidationError(f"{name} must be a string")
        progress = await self.progress.update_task(identity, task_id, patch)
        task = progress.get_task(task_id)
        return {
            "git_commit_hash": identity,
            "task": task.to_dict() if task else None,
            "last_updated": progress.last_updated,
        }

    async def _compare(self, args: dict[str, Any]) -> dict[str, Any]:
        identity = self._identity(args)
        plan = await self.plans.read_plan(identity)
        progress = await self.progress.read_progress(identity)
        return compare(plan, progress).to_dict()

    async def _get_progress(self, args: dict[str, Any]) -> dict[str, Any]:
        progress = await self.progress.read_progress(self._identity(args))
        return progress.to_dict()

    async def _get_eligible(self, args: dict[str, Any]) -> dict[str, Any]:
        progress = await self.progress.read_progress(self._identity(args))
        return {
            "eligible": [t.id for t in eligible_tasks(progress)],
            "blocked": blocked_tasks(progress),
            "deadlocked": is_deadlocked(progress),
            "finished": progress.is_finished(),
        }
