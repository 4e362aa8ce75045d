"""Orchestration driver: dispatch eligible tasks and record their outcomes.

The driver owns no state of its own. Each round it re-reads the progress
document, asks the evaluator which tasks may start, launches up to
``max_parallel`` of them, and waits for the first one to finish. All state
changes go through the progress store; the dispatch itself runs outside the
identity lock.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from rich.markup import escape

from agentplan import log
from agentplan.config import AGENT_ROLES, Config
from agentplan.engines.base import AgentDispatcher
from agentplan.errors import DispatchFailure, IllegalTransition, OrchestrationError
from agentplan.evaluator import blocked_tasks, eligible_tasks, is_deadlocked
from agentplan.progress import ProgressStore
from agentplan.tasks.model import Progress, TaskPatch, TaskProgress, TaskState

SUMMARY_LIMIT = 2000


def build_task_prompt(task: TaskProgress, identity: str) -> str:
    role, specialization = AGENT_ROLES.get(
        task.designated_agent, ("specialist", "the assigned task")
    )
    files = "\n".join(f"- {f}" for f in task.files_to_modify) or "- (none declared)"
    return f"""You are the {task.designated_agent} ({role}; {specialization}).
Work ONLY on this task:

TASK ID: {task.id}
WORK ITEM: {identity}
TASK: {task.description}

FILES TO CREATE/MODIFY:
{files}

Instructions:
1. Implement this task completely by creating/editing the files listed above.
2. Do not touch files outside that list unless the task cannot be done otherwise.
3. Finish with a short summary of what you changed.

Focus only on implementing: {task.description}"""


@dataclass
class RunReport:
    """Outcome of one :meth:`OrchestrationDriver.run`."""

    identity: str
    completed: list[str] = field(default_factory=list)
    failures: list[DispatchFailure] = field(default_factory=list)
    blocked: dict[str, str] = field(default_factory=dict)
    deadlocked: bool = False
    halted_by_failures: bool = False
    stopped_at_limit: bool = False

    @property
    def succeeded(self) -> bool:
        return not (
            self.failures
            or self.blocked
            or self.deadlocked
            or self.halted_by_failures
            or self.stopped_at_limit
        )


class OrchestrationDriver:
    def __init__(
        self,
        progress_store: ProgressStore,
        dispatcher: AgentDispatcher,
        *,
        max_parallel: int = 3,
        dispatch_timeout: float | None = None,
        tools_for_agent: Callable[[str], list[str]] | None = None,
        max_tasks: int = 0,
    ) -> None:
        self.progress = progress_store
        self.dispatcher = dispatcher
        self.max_parallel = max(1, max_parallel)
        self.dispatch_timeout = dispatch_timeout
        self.tools_for_agent = tools_for_agent or Config().tools_for
        self.max_tasks = max_tasks

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        progress_store: ProgressStore,
        dispatcher: AgentDispatcher,
    ) -> OrchestrationDriver:
        return cls(
            progress_store,
            dispatcher,
            max_parallel=cfg.max_parallel,
            dispatch_timeout=cfg.timeout_seconds(),
            tools_for_agent=cfg.tools_for,
            max_tasks=cfg.max_tasks,
        )

    async def run(self, identity: str) -> RunReport:
        """Drive *identity* until nothing more can be started."""
        report = RunReport(identity=identity)
        running: dict[asyncio.Task[DispatchFailure | None], str] = {}
        launched = 0

        progress = await self.progress.read_progress(identity)
        log.info(f"Running tasks for {identity} (max {self.max_parallel} agents)…")
        log.info(f"Tasks: {progress.count(TaskState.PENDING)} pending")

        try:
            while True:
                progress = await self.progress.read_progress(identity)
                slots = self.max_parallel - len(running)
                if self.max_tasks > 0:
                    slots = min(slots, self.max_tasks - launched)

                for task in eligible_tasks(progress)[: max(slots, 0)]:
                    session_id = str(uuid.uuid4())
                    try:
                        await self.progress.mark_in_progress(identity, task.id, session_id)
                    except IllegalTransition:
                        # Claimed by someone else since we read the document.
                        log.debug(f"Skipping {task.id}: no longer pending")
                        continue
                    log.task_line("[cyan]●[/cyan]", task.id, f"{task.designated_agent}: {task.description}")
                    job = asyncio.create_task(self._execute(identity, task))
                    running[job] = task.id
                    launched += 1

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for job in done:
                    task_id = running.pop(job)
                    failure = job.result()
                    if failure is None:
                        report.completed.append(task_id)
                    else:
                        report.failures.append(failure)
        finally:
            for job in running:
                job.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

        final = await self.progress.read_progress(identity)
        self._finish(report, final)
        return report

    async def _execute(
        self,
        identity: str,
        task: TaskProgress,
    ) -> DispatchFailure | None:
        """Dispatch one task and record its outcome. Returns the failure, if any.

        Store errors while recording the outcome are reported as a failure of
        this task; they never propagate into the run loop.
        """
        prompt = build_task_prompt(task, identity)
        tools = self.tools_for_agent(task.designated_agent)
        title = task.description

        try:
            result = await asyncio.wait_for(
                self.dispatcher.dispatch(task.designated_agent, prompt, tools),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            message = f"timed out after {self.dispatch_timeout:g}s"
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
        else:
            if result.success:
                try:
                    await self.progress.mark_completed(
                        identity,
                        task.id,
                        files_modified=list(result.files_modified),
                        summary=result.output.strip()[:SUMMARY_LIMIT],
                    )
                except OrchestrationError as e:
                    message = f"could not record completion: {e}"
                else:
                    log.task_line("[green]✓[/green]", task.id, title)
                    return None
            else:
                message = result.error or "agent reported failure"

        try:
            await self.progress.update_task(identity, task.id, TaskPatch(error_message=message))
        except OrchestrationError as e:
            log.warn(f"Could not record error for {task.id}: {e}")
        failure = DispatchFailure(task.id, task.designated_agent, message)
        log.task_line("[red]✗[/red]", task.id, title)
        log.console.print(f"[dim]    Error: {escape(message)}[/dim]")
        return failure

    def _finish(self, report: RunReport, progress: Progress) -> None:
        pending = progress.count(TaskState.PENDING)
        if pending == 0:
            if not report.failures:
                log.success(f"All {len(progress.tasks)} task(s) completed")
            return

        if eligible_tasks(progress):
            report.stopped_at_limit = True
            log.warn(f"Reached max tasks ({self.max_tasks}); {pending} task(s) still pending")
            return

        report.blocked = blocked_tasks(progress)
        if report.failures:
            report.halted_by_failures = True
            log.error("Workflow halted: dispatch failures prevent further progress.")
        elif is_deadlocked(progress):
            report.deadlocked = True
            log.error("DEADLOCK: No progress possible")
        else:
            log.warn("Remaining tasks wait on work started outside this run")

        log.console.print("")
        log.console.print("[red]Blocked tasks:[/red]")
        for tid, reason in report.blocked.items():
            log.console.print(f"  {tid}: {escape(reason)}")
