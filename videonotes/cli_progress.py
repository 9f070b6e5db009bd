"""Console rendering and progress helpers for the videonotes CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

from .models import GenerationResult
from .utils.events import (
    ErrorRecord,
    FileActive,
    FileProcessing,
    GenerateReceived,
    GenerateStart,
    StatusEvent,
    UploadComplete,
    UploadProgress,
    UploadStart,
)

LARGE_FILE_THRESHOLD = 50 * 1024 * 1024

console = Console()
err_console = Console(stderr=True)


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


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
        title="[bold green]videonotes[/bold green]",
        subtitle="[dim]Gemini transcription[/dim]",
        border_style="blue",
    )
    err_console.print(panel)


class UploadProgressBar:
    """Live byte progress for the payload upload (large files only)."""

    def __init__(self, filename: str, total_bytes: int):
        self.filename = filename
        self.total_bytes = total_bytes
        self._progress: Optional[Progress] = None
        self._live: Optional[Live] = None
        self._task_id: Optional[TaskID] = None

    def start(self) -> None:
        if self._live is not None or self.total_bytes <= LARGE_FILE_THRESHOLD:
            return
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[filename]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=err_console,
        )
        self._live = Live(
            self._progress,
            console=err_console,
            refresh_per_second=5,
            vertical_overflow="visible",
        )
        self._live.start()
        self._task_id = self._progress.add_task(
            "upload",
            filename=self.filename[:60],
            total=self.total_bytes,
        )

    def update(self, progress: UploadProgress) -> None:
        if self._progress is None or self._task_id is None:
            return
        total = progress.total_bytes or self.total_bytes
        self._progress.update(self._task_id, completed=progress.bytes_uploaded, total=total)

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None


class StatusTimelineDisplay:
    """Event-based console display for a transcription run."""

    _PALETTE = {
        "UP": "cyan",
        "WAIT": "yellow",
        "DONE": "green",
        "GEN": "magenta",
        "FAIL": "red",
        "INFO": "blue",
    }

    def __init__(self):
        self._bar: Optional[UploadProgressBar] = None

    def _emit_timeline(self, status: str, message: str) -> None:
        stamp = time.strftime("%H:%M:%S")
        color = self._PALETTE.get(status, "white")
        err_console.print(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {escape(message)}")

    def on_status(self, event: StatusEvent) -> None:
        if isinstance(event, UploadStart):
            self._emit_timeline("UP", f"{event.name} ({_human_size(event.size_bytes)})")
            self._bar = UploadProgressBar(event.name, event.size_bytes)
            self._bar.start()
        elif isinstance(event, UploadComplete):
            self._stop_bar()
            self._emit_timeline("DONE", event.message)
        elif isinstance(event, FileProcessing):
            self._emit_timeline("WAIT", event.message)
        elif isinstance(event, FileActive):
            self._emit_timeline("DONE", event.message)
        elif isinstance(event, (GenerateStart, GenerateReceived)):
            self._emit_timeline("GEN", event.message)
        else:
            self._emit_timeline("INFO", event.message)

    def on_upload_progress(self, progress: UploadProgress) -> None:
        if self._bar is not None:
            self._bar.update(progress)

    def on_error(self, record: ErrorRecord) -> None:
        self._stop_bar()
        self._emit_timeline("FAIL", record.message)

    def _stop_bar(self) -> None:
        if self._bar is not None:
            self._bar.stop()
            self._bar = None

    def close(self) -> None:
        self._stop_bar()


def render_result(result: GenerationResult) -> None:
    """Print transcript and notes panels to stdout."""
    if result.used_fallback:
        err_console.print(
            "[yellow]Model output was not structured JSON; showing raw response.[/yellow]"
        )
    console.print(
        Panel(Text(result.transcript or "(empty)"), title="Transcript", border_style="green")
    )
    if result.notes:
        console.print(Panel(Text(result.notes_text), title="Notes", border_style="cyan"))
    err_console.print(
        f"[dim]model={result.model} estimated_cost_usd={result.estimated_cost_usd:.4f}[/dim]"
    )
