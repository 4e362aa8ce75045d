"""Console logging via Rich, shared by the stores, the driver and the CLI.

Messages are printed literally; only the level prefixes carry markup.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


def task_line(marker: str, task_id: str, text: str) -> None:
    """Print a one-line task event (launch, completion, failure).

    *marker* is Rich markup; *task_id* and *text* are printed literally.
    """
    console.print(f"  {marker} {escape(text[:50])} ({escape(task_id)})")
