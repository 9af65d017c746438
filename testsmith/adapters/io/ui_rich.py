"""
Rich terminal output for generation runs.

``RichProgressObserver`` subscribes to the event stream and renders one line
per terminal transition plus a live status spinner; ``RichUIAdapter`` covers
the one-off messages of the CLI (steps, resume prompt, final summary).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.status import Status
from rich.table import Table
from rich.theme import Theme

from ...domain.models import ProgressEvent, ProgressEventType, RunState

if TYPE_CHECKING:
    from ...application.generation.events import RunProgressTracker

TESTSMITH_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "skip": "magenta",
        "error": "bold red",
        "tool": "blue",
        "file": "cyan",
        "muted": "dim",
    }
)

TOOL_LABELS = {
    "list_exports": "Listing exports",
    "read_file": "Reading file",
    "find_usages": "Finding usages",
    "grep_text": "Searching code",
    "infer_props_from_usage": "Inferring props from usage",
    "get_ast_digest": "Analyzing AST",
    "project_info": "Reading project info",
}


def format_duration(ms: int | None) -> str:
    """Compact duration: ``850ms``, ``12s``, ``3m05s``, ``1h02m07s``."""
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{round(ms)}ms"
    total_seconds = round(ms / 1000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def tool_label(tool: str) -> str:
    return TOOL_LABELS.get(tool, "Running tool")


class RichProgressObserver:
    """Renders progress events to a Rich console."""

    def __init__(
        self,
        tracker: RunProgressTracker,
        console: Console | None = None,
        mode_label: str = "Generating tests",
    ) -> None:
        self.tracker = tracker
        self.console = console or Console(theme=TESTSMITH_THEME)
        self.mode_label = mode_label
        self._status: Status | None = None
        self._last_tool: dict[str, str] = {}

    def start(self) -> None:
        if self.console.quiet or self._status is not None:
            return
        self._status = self.console.status(self._status_text("Preparing"), spinner="dots")
        self._status.start()

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def __enter__(self) -> RichProgressObserver:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _status_text(self, activity: str) -> str:
        t = self.tracker
        parts = [f"{t.completed_chunks + t.in_flight}/{t.total_chunks}"] if t.total_chunks else []
        parts.append(format_duration(t.elapsed_ms))
        return (
            f"{escape(self.mode_label)} | wrote {t.written} | skipped {t.skipped} | "
            f"existed {t.exists}\n{activity} [muted][{' • '.join(parts)}][/muted]"
        )

    def _set_activity(self, activity: str) -> None:
        if self._status is not None:
            self._status.update(self._status_text(activity))

    def on_event(self, event: ProgressEvent) -> None:
        label = f"[file]{escape(event.file)}[/file]"
        if event.chunk_id:
            label += f" [muted]\\[{escape(event.chunk_id)}][/muted]"
        timing = f" [muted]• {format_duration(event.duration_ms)}[/muted]" if event.duration_ms else ""
        tokens = f" [muted]• prompt≈ {event.tokens} tok[/muted]" if event.tokens else ""

        kind = event.type
        if kind is ProgressEventType.START:
            self.console.print(f"{label} – [info]analyzing[/info]{tokens}")
            self._set_activity(f"Analyzing {label}")
        elif kind is ProgressEventType.TOOL:
            message = event.message or ""
            tool, _, detail = message.partition(" ")
            text = tool_label(tool.removeprefix("review:"))
            if detail:
                text = f"{text} {escape(detail)}"
            key = f"{event.file}::{event.chunk_id}"
            if self._last_tool.get(key) != text:
                self._last_tool[key] = text
                self.console.print(f"{label} – [tool]{text}[/tool]")
            self._set_activity(f"[tool]{text}[/tool] • {label}")
        elif kind is ProgressEventType.WRITE:
            cases = event.cases if event.cases is not None else 0
            hints = f" [muted]• hints: {escape(event.hints)}[/muted]" if event.hints else ""
            noun = "test" if cases == 1 else "tests"
            self.console.print(
                f"{label} – [success]wrote[/success] [bold]{cases} {noun}[/bold]{hints}{timing}{tokens}"
            )
            self._set_activity("Working")
        elif kind is ProgressEventType.EXISTS:
            self.console.print(
                f"{label} – [warning]exists[/warning] [muted](use --force to overwrite)[/muted]{timing}"
            )
            self._set_activity("Working")
        elif kind is ProgressEventType.SKIP:
            reason = f" [muted]({escape(event.message)})[/muted]" if event.message else ""
            self.console.print(f"{label} – [skip]skipped[/skip]{reason}{timing}")
            self._set_activity("Working")
        elif kind is ProgressEventType.ERROR:
            reason = f": [error]{escape(event.message)}[/error]" if event.message else ""
            self.console.print(f"{label} – [error]error[/error]{reason}{timing}")
            self._set_activity("[error]Encountered an error[/error]")


class RichUIAdapter:
    """One-off CLI output: step messages, resume notice, final summary."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(theme=TESTSMITH_THEME)

    @property
    def console(self) -> Console:
        return self._console

    def display_step(self, message: str) -> None:
        self._console.print(f"[success]✓[/success] {escape(message)}")

    def display_info(self, message: str) -> None:
        self._console.print(f"[info]{escape(message)}[/info]")

    def display_warning(self, message: str) -> None:
        self._console.print(f"[warning]{escape(message)}[/warning]")

    def display_error(self, message: str, title: str = "Error") -> None:
        self._console.print(f"[error]{escape(title)}:[/error] {escape(message)}")

    def display_resume_notice(self, state: RunState) -> None:
        totals = state.totals
        self._console.print(
            f"[warning]Found unfinished run ({totals.completed_chunks}/{totals.total_chunks} chunks)"
            "[/warning]"
        )
        self._console.print(
            f"    wrote {totals.written} | skipped {totals.skipped} | existed {totals.exists}"
        )

    def display_summary(self, tracker: RunProgressTracker, output_label: str) -> None:
        """Per-file table followed by the run totals."""
        if tracker.per_file:
            table = Table(show_header=True, header_style="bold", box=None)
            table.add_column("File", style="file")
            table.add_column("Result")
            table.add_column("Details", style="muted")
            table.add_column("Time", justify="right", style="muted")
            table.add_column("Prompt", justify="right", style="muted")

            for rel in sorted(tracker.per_file):
                summary = tracker.per_file[rel]
                if summary.status == "wrote":
                    result = "[success]wrote[/success]"
                    details = f"{summary.cases} cases" if summary.cases is not None else "tests"
                    if summary.hints:
                        details += f", {summary.hints}"
                elif summary.status == "exists":
                    result = "[warning]exists[/warning]"
                    details = "use --force to overwrite"
                else:
                    result = "[skip]skipped[/skip]"
                    details = summary.reason or "skipped"
                table.add_row(
                    escape(rel),
                    result,
                    escape(details),
                    format_duration(summary.duration_ms),
                    f"≈{summary.tokens or 0} tok",
                )
            self._console.print(table)

        errors = f" • [error]errors {tracker.errors}[/error]" if tracker.errors else ""
        self._console.print(
            f"[success]Done.[/success] [success]Wrote {tracker.written}[/success] • "
            f"[skip]skipped {tracker.skipped}[/skip] • [warning]existed {tracker.exists}[/warning]"
            f"{errors}. Output → [file]{escape(output_label)}[/file]"
        )
