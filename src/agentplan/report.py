"""Console rendering of plans, progress, comparisons and run outcomes."""

from __future__ import annotations

from rich.markup import escape
from rich.table import Table

from agentplan import log
from agentplan.driver import RunReport
from agentplan.errors import ValidationError
from agentplan.evaluator import blocked_tasks, eligible_tasks, topological_order
from agentplan.reconcile import Comparison
from agentplan.tasks.model import Plan, Progress, TaskState

RULE = "[bold]============================================[/bold]"

STATE_STYLE = {
    TaskState.PENDING: "[dim]pending[/dim]",
    TaskState.IN_PROGRESS: "[yellow]in_progress[/yellow]",
    TaskState.COMPLETED: "[green]completed[/green]",
}


def show_plan(plan: Plan, plan_file: str = "") -> None:
    """Print the plan with tasks in execution (topological) order."""
    log.console.print("")
    log.console.print(f"[bold]>>> Plan[/bold] {escape(plan.git_commit_hash)}")
    if plan_file:
        log.console.print(f"[dim]{escape(plan_file)}[/dim]")
    log.console.print(f"Goal:     {escape(plan.task_description)}")
    log.console.print(f"Synopsis: {escape(plan.synopsis)}")
    by_id = {t.id: t for t in plan.tasks}
    try:
        order = [by_id[tid] for tid in topological_order(plan.tasks)]
    except ValidationError as e:
        # Hand-edited plan file; list it as stored.
        log.warn(str(e))
        order = plan.tasks
    for t in order:
        deps = f" [dim](after {escape(', '.join(t.dependencies))})[/dim]" if t.dependencies else ""
        log.console.print(
            f"  - {escape(t.id)} [cyan]{escape(t.designated_agent)}[/cyan] {escape(t.description[:60])}{deps}"
        )


def progress_table(progress: Progress) -> Table:
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Task")
    table.add_column("Agent")
    table.add_column("State")
    table.add_column("Description")
    table.add_column("Note", style="dim")
    blocked = blocked_tasks(progress)
    for t in progress.tasks:
        note = t.error_message or blocked.get(t.id, "")
        table.add_row(
            escape(t.id),
            escape(t.designated_agent),
            STATE_STYLE[t.state],
            escape(t.description[:50]),
            escape(note),
        )
    return table


def show_progress(progress: Progress) -> None:
    done = progress.count(TaskState.COMPLETED)
    log.console.print("")
    log.console.print(
        f"[bold]>>> Progress[/bold] {done}/{len(progress.tasks)} completed "
        f"[dim](updated {escape(progress.last_updated)})[/dim]"
    )
    log.console.print(progress_table(progress))
    ready = eligible_tasks(progress)
    if ready:
        log.console.print(f"Ready: {escape(', '.join(t.id for t in ready))}")


def show_comparison(cmp: Comparison) -> None:
    log.console.print("")
    log.console.print(RULE)
    log.console.print("[bold]PLAN VS PROGRESS[/bold]")
    log.console.print(RULE)
    log.console.print(f"Goal: {escape(cmp.overall_goal)}")
    log.console.print(
        f"Completion: {cmp.completion_percentage}% "
        f"({cmp.count(TaskState.COMPLETED)} completed, "
        f"{cmp.count(TaskState.IN_PROGRESS)} in progress, "
        f"{cmp.count(TaskState.PENDING)} pending)"
    )
    log.console.print("")
    for t in cmp.tasks:
        marker = "[red]![/red]" if t.has_discrepancy else "[green]✓[/green]"
        if t.state == TaskState.PENDING:
            marker = "[dim]·[/dim]"
        log.console.print(f"  {marker} {escape(t.task_id)} {STATE_STYLE[t.state]}")
        for f in t.missing_files:
            log.console.print(f"[dim]      missing:    {escape(f)}[/dim]")
        for f in t.extra_files:
            log.console.print(f"[dim]      unexpected: {escape(f)}[/dim]")

    log.console.print("")
    if cmp.drift_detected:
        log.warn(f"Drift detected in {sum(1 for t in cmp.tasks if t.has_discrepancy)} task(s)")
    else:
        log.success("No drift between plan and progress")
    if cmp.root_task_completed:
        log.success("Root task completed")


def show_run_summary(report: RunReport) -> None:
    log.console.print("")
    log.console.print(RULE)
    if report.succeeded:
        log.console.print(f"[green]Run complete![/green] Finished {len(report.completed)} task(s).")
    else:
        log.console.print(
            f"[yellow]Run stopped.[/yellow] Finished {len(report.completed)} task(s), "
            f"{len(report.failures)} failed."
        )
    log.console.print(RULE)
    if report.failures:
        log.console.print("")
        log.console.print("[bold]>>> Failures[/bold]")
        for f in report.failures:
            log.console.print(f"  - {escape(f.task_id)} ({escape(f.agent)}, {f.failure_type}): {escape(f.message)}")
    if report.deadlocked:
        log.console.print("[red]Deadlocked: remaining tasks can never start.[/red]")
