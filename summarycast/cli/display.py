"""
Rich-based CLI notice consumer.

This is the ONLY place where terminal output happens.  It translates the
stream controller's notices into formatted Rich output; the controller and
pipeline never print.
"""

from __future__ import annotations

import asyncio

from rich.console import Console
from rich.table import Table

from summarycast.config import EnvSnapshot
from summarycast.controller import (
    ChunkNotice,
    DoneNotice,
    ErrorNotice,
    FirstContentNotice,
    MetaNotice,
    MetricsNotice,
    Notice,
    StatusNotice,
)
from summarycast.registry import Attempt, has_credential

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)


def display_notice(notice: Notice) -> None:
    """Dispatch a controller notice to the appropriate display function."""
    match notice:
        case StatusNotice():
            err_console.print(f"[dim]{notice.text}[/]", highlight=False)
        case MetaNotice():
            _meta(notice)
        case FirstContentNotice():
            err_console.print()
        case ChunkNotice():
            if notice.reset:
                console.print()
                err_console.print("[dim](partial output discarded, restarting)[/]", highlight=False)
            console.print(notice.appended, end="", highlight=False, markup=False)
        case MetricsNotice():
            _metrics(notice)
        case ErrorNotice():
            console.print()  # end streaming line
            err_console.print(f"[red]Error:[/] {notice.message}", highlight=False)
        case DoneNotice():
            console.print()  # end streaming line


async def drain_notices(queue: asyncio.Queue[Notice]) -> bool:
    """
    Render notices until the session ends.

    Returns True for a successful run, False when it ended in an error.
    """
    while True:
        notice = await queue.get()
        display_notice(notice)
        if isinstance(notice, DoneNotice):
            return True
        if isinstance(notice, ErrorNotice):
            return False


# --------------------------------------------------------------------------- #
# Display functions                                                            #
# --------------------------------------------------------------------------- #

def _meta(notice: MetaNotice) -> None:
    meta = notice.meta
    if meta.model_label:
        err_console.print(f"[dim]model:[/] [bold]{meta.model_label}[/]", highlight=False)
    elif meta.input_summary:
        err_console.print(f"[dim]input:[/] {meta.input_summary}", highlight=False)


def _metrics(notice: MetricsNotice) -> None:
    console.print()  # end streaming line
    err_console.print(f"[dim]{notice.summary}[/]", highlight=False)
    if notice.details:
        err_console.print(f"[dim]{notice.details}[/]", highlight=False)


def print_attempt_table(task: str, attempts: list[Attempt], snapshot: EnvSnapshot) -> None:
    table = Table(
        title=f"Fallback order for {task}",
        show_header=True,
        header_style="bold",
        border_style="dim",
        show_lines=False,
    )
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Model ID", min_width=20)
    table.add_column("Transport", style="dim", min_width=10)
    table.add_column("Credential", style="dim")

    for i, attempt in enumerate(attempts, 1):
        ok = has_credential(attempt, snapshot)
        mark = "[green]✓[/]" if ok else "[red]✗[/]"
        table.add_row(str(i), attempt.model_id, attempt.transport, f"{mark} {attempt.required_env}")

    console.print()
    console.print(table)
