"""agentplan CLI — plan, inspect and drive multi-agent work items.

Installed as ``agentplan`` console_script via pipx / pip.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from agentplan import __version__
from agentplan.config import Config
from agentplan.errors import OrchestrationError
from agentplan.identity import GitIdentityProvider, IdentityProvider, StaticIdentityProvider
from agentplan.io_utils import read_text
from agentplan.plans import PlanStore
from agentplan.progress import ProgressStore
from agentplan.tasks.model import TaskPatch, TaskState

T = TypeVar("T")

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning store errors into a logged error and exit code 1."""
    from agentplan import log as alog

    try:
        return asyncio.run(coro)
    except OrchestrationError as e:
        alog.error(str(e))
        sys.exit(1)


def _stores(cfg: Config) -> PlanStore:
    provider: IdentityProvider
    if cfg.identity:
        provider = StaticIdentityProvider(cfg.identity)
    else:
        provider = GitIdentityProvider()
    return PlanStore(cfg.state_path, ProgressStore(cfg.state_path), provider)


def _identity(ctx: click.Context) -> tuple[Config, PlanStore, str]:
    cfg: Config = ctx.obj
    try:
        plans = _stores(cfg)
    except OrchestrationError as e:
        raise click.BadParameter(str(e), param_hint="--identity") from e
    return cfg, plans, plans.current_identity()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--state-dir", default="", help="Directory holding plan/progress documents")
@click.option("--identity", default="", help="Work item identity (default: git HEAD)")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="agentplan")
@click.pass_context
def main(ctx: click.Context, state_dir: str, identity: str, verbose: bool) -> None:
    """agentplan — plan & progress store for multi-agent workflows.

    \b
    WORKFLOW:
      1. Create a plan:   agentplan plan plan.json
      2. Inspect it:      agentplan status / agentplan next
      3. Run agents:      agentplan run
      4. Check drift:     agentplan compare
    """
    from agentplan import log as alog

    alog.set_verbose(verbose)
    ctx.obj = Config(state_dir=state_dir, identity=identity, verbose=verbose)


# ── Subcommand: plan ─────────────────────────────────────────────


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def plan(ctx: click.Context, plan_file: Path) -> None:
    """Create (or re-plan) the work item from a JSON file.

    The file holds ``task_description``, ``synopsis`` and ``tasks``.
    """
    from agentplan import log as alog
    from agentplan.report import show_plan

    try:
        data = json.loads(read_text(plan_file))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        alog.error(f"Cannot read {plan_file}: {e}")
        sys.exit(1)
    if not isinstance(data, dict):
        alog.error(f"{plan_file} must contain a JSON object")
        sys.exit(1)

    _, plans, identity = _identity(ctx)
    replan = plans.has_plan(identity)
    created = _run(
        plans.create_plan(identity, data.get("task_description"), data.get("synopsis"), data.get("tasks"))
    )
    alog.success(f"{'Re-planned' if replan else 'Created plan for'} {identity} ({len(created.tasks)} task(s))")
    show_plan(created, str(plans.plan_path(identity)))


# ── Subcommand: status / next ────────────────────────────────────


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the progress of every task."""
    from agentplan.report import show_progress

    _, plans, identity = _identity(ctx)
    show_progress(_run(plans.progress.read_progress(identity)))


@main.command(name="next")
@click.pass_context
def next_tasks(ctx: click.Context) -> None:
    """List tasks whose dependencies are all completed."""
    from rich.markup import escape

    from agentplan import log as alog
    from agentplan.evaluator import blocked_tasks, eligible_tasks, is_deadlocked

    _, plans, identity = _identity(ctx)
    progress = _run(plans.progress.read_progress(identity))
    ready = eligible_tasks(progress)
    for t in ready:
        click.echo(f"{t.id}\t{t.designated_agent}\t{t.description}")
    if not ready:
        if progress.is_finished():
            alog.success("All tasks completed")
        elif is_deadlocked(progress):
            alog.error("DEADLOCK: No progress possible")
            for tid, reason in blocked_tasks(progress).items():
                alog.console.print(f"  {tid}: {escape(reason)}")
            sys.exit(1)
        else:
            alog.info("Nothing eligible until running tasks complete")


# ── Subcommand: update ───────────────────────────────────────────


@main.command()
@click.argument("task_id")
@click.option("--state", type=click.Choice([s.value for s in TaskState]), default=None)
@click.option("--session", "agent_session_id", default=None, help="Agent session id")
@click.option("--summary", default=None, help="Work summary")
@click.option("--file", "files", multiple=True, help="Modified file (repeatable)")
@click.option("--error", "error_message", default=None, help="Error message")
@click.option("--git-files", is_flag=True, help="Also record uncommitted git changes as modified files")
@click.pass_context
def update(
    ctx: click.Context,
    task_id: str,
    state: str | None,
    agent_session_id: str | None,
    summary: str | None,
    files: tuple[str, ...],
    error_message: str | None,
    git_files: bool,
) -> None:
    """Move TASK_ID forward or annotate it."""
    from agentplan import log as alog

    if git_files:
        from agentplan.config import resolve_repo_root
        from agentplan.git_ops import changed_files

        files += tuple(f for f in changed_files(resolve_repo_root()) if f not in files)

    _, plans, identity = _identity(ctx)
    patch = TaskPatch(
        state=TaskState(state) if state else None,
        agent_session_id=agent_session_id,
        files_modified=list(files) if files else None,
        summary=summary,
        error_message=error_message,
    )
    progress = _run(plans.progress.update_task(identity, task_id, patch))
    task = progress.get_task(task_id)
    alog.success(f"{task_id} is {task.state.value if task else '?'}")


# ── Subcommand: compare ──────────────────────────────────────────


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the comparison as JSON")
@click.pass_context
def compare(ctx: click.Context, as_json: bool) -> None:
    """Compare declared files against reported changes."""
    from agentplan.reconcile import compare as compare_docs
    from agentplan.report import show_comparison

    _, plans, identity = _identity(ctx)

    async def _load() -> Any:
        return await plans.read_plan(identity), await plans.progress.read_progress(identity)

    plan_doc, progress = _run(_load())
    result = compare_docs(plan_doc, progress)
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        show_comparison(result)


# ── Subcommand: run ──────────────────────────────────────────────


@main.command()
@click.option("--engine", default="", help="Agent engine (default: claude)")
@click.option("--max-parallel", type=int, default=3, help="Max concurrent agents")
@click.option("--timeout", "dispatch_timeout", type=int, default=1800, help="Seconds per dispatch (0=none)")
@click.option("--max-tasks", type=int, default=0, help="Stop after launching N tasks (0=unlimited)")
@click.pass_context
def run(ctx: click.Context, engine: str, max_parallel: int, dispatch_timeout: int, max_tasks: int) -> None:
    """Dispatch eligible tasks to agents until nothing more can start."""
    from agentplan import log as alog
    from agentplan.config import resolve_repo_root
    from agentplan.driver import OrchestrationDriver
    from agentplan.engines.registry import get_engine
    from agentplan.report import show_run_summary

    cfg, plans, identity = _identity(ctx)
    if engine:
        cfg.engine = engine
    cfg.max_parallel = max(1, max_parallel)
    cfg.dispatch_timeout = dispatch_timeout
    cfg.max_tasks = max_tasks

    try:
        adapter = get_engine(cfg.engine, cwd=resolve_repo_root())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--engine") from e
    err = adapter.check_available()
    if err:
        alog.error(err)
        sys.exit(1)

    driver = OrchestrationDriver.from_config(cfg, plans.progress, adapter)
    report = _run(driver.run(identity))
    show_run_summary(report)
    if not report.succeeded:
        sys.exit(1)


# ── Subcommand: tool ─────────────────────────────────────────────


@main.command()
@click.argument("name")
@click.argument("args_json", required=False, default="")
@click.pass_context
def tool(ctx: click.Context, name: str, args_json: str) -> None:
    """Invoke a tool by NAME with a JSON object of arguments; print the JSON reply."""
    from agentplan.tools import ToolHandler

    try:
        args = json.loads(args_json) if args_json else {}
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="ARGS_JSON") from e

    _, plans, _ = _identity(ctx)
    reply = asyncio.run(ToolHandler(plans).handle(name, args))
    click.echo(json.dumps(reply, indent=2))
    if not reply["ok"]:
        sys.exit(1)
