"""Console rendering and progress helpers for crosspost CLI."""
from __future__ import annotations

from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .models import Destination, OutcomeStatus, PostOutcome, ResultStatus
from .utils.events import UploadProgress

console = Console()

OUTCOME_STYLES = {
    OutcomeStatus.SUCCESS: "green",
    OutcomeStatus.PARTIAL: "yellow",
    OutcomeStatus.FAILED: "red",
}


def _echo(message: str) -> None:
    console.print(message)


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 4:
        return "*" * len(value)
    return f"{value[:2]}{'*' * (len(value) - 4)}{value[-2:]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]crosspost[/bold green]",
        subtitle="[dim]Twitter + Bluesky[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_outcome(outcome: PostOutcome) -> None:
    """Render the combined result of a publish."""
    style = OUTCOME_STYLES[outcome.status]
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold", justify="right")
    table.add_column()

    for name, result in (("Twitter", outcome.twitter), ("Bluesky", outcome.bluesky)):
        if result.status == ResultStatus.SUCCESS:
            table.add_row(name, f"[green]posted[/green] {result.post_id}")
        elif result.status == ResultStatus.SKIPPED:
            table.add_row(name, f"[dim]skipped[/dim] {result.reason}")
        else:
            table.add_row(name, f"[red]failed[/red] {result.reason}")

    console.print(Panel(table, title=f"[bold {style}]{outcome.message}[/bold {style}]", border_style=style))


class UploadProgressDisplay:
    """Event-based console display for the eager uploads of one composer."""

    def __init__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=36),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TextColumn("[dim]{task.fields[detail]}"),
            console=console,
            transient=False,
        )
        self._tasks: Dict[Destination, TaskID] = {}
        self._started = False

    def start(self) -> None:
        if not self._started:
            self._progress.start()
            self._started = True

    def stop(self) -> None:
        if self._started:
            self._progress.stop()
            self._started = False

    def _task(self, destination: Destination) -> TaskID:
        if destination not in self._tasks:
            self.start()
            self._tasks[destination] = self._progress.add_task(
                destination.value, label=destination.value.capitalize(), detail="", total=100
            )
        return self._tasks[destination]

    def on_upload_start(self, destination: Destination, generation: int) -> None:
        self._progress.update(self._task(destination), completed=0, detail="uploading")

    def on_upload_progress(self, progress: UploadProgress) -> None:
        self._progress.update(self._task(progress.destination), completed=progress.percent)

    def on_upload_complete(self, destination: Destination, handle: Any) -> None:
        self._progress.update(self._task(destination), completed=100, detail="[green]ready[/green]")

    def on_upload_failed(self, destination: Destination, error: str) -> None:
        self._progress.update(
            self._task(destination),
            detail=f"[red]failed[/red] ({error[:60]}), retrying at post time",
        )

    def on_warning(self, message: str) -> None:
        console.print(f"[yellow]Warning:[/yellow] {message}")

    def on_bluesky_status(self, active: bool, reason: Optional[str]) -> None:
        if not active and reason:
            console.print(f"[dim]Bluesky off: {reason}[/dim]")

    def on_post_queued(self, generation: int) -> None:
        console.print("[cyan]Waiting for media uploads to finish...[/cyan]")

    def attach(self, events) -> None:
        events.on("upload_start", self.on_upload_start)
        events.on("upload_progress", self.on_upload_progress)
        events.on("upload_complete", self.on_upload_complete)
        events.on("upload_failed", self.on_upload_failed)
        events.on("warning", self.on_warning)
        events.on("bluesky_status", self.on_bluesky_status)
        events.on("post_queued", self.on_post_queued)
