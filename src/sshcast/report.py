"""Console and log-file rendering of a finished run."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TextIO

from .aggregator import Outcome, ReportSet
from .dispatcher import OutputEvent
from .executor import ExecutionResult

GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[91m"
BOLD = "\033[1m"
RESET = "\033[0m"

OUTCOME_STYLES = {
    Outcome.SUCCESS: (GREEN, "All commands succeeded"),
    Outcome.PARTIAL: (YELLOW, "Some commands failed"),
    Outcome.FAILURE: (RED, "All commands failed"),
}

# ANSI colors for live per-server prefixes
PREFIX_COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]


def format_result(result: ExecutionResult) -> str:
    """Plain-text record for one result."""
    if result.error is not None:
        return f"Error from {result.server}: {result.error} (Duration: {result.duration:.2f}s)"
    output = result.output
    if output and not output.endswith("\n"):
        output += "\n"
    return f"Output from {result.server}:\n{output}(Duration: {result.duration:.2f}s)"


def format_summary(report: ReportSet) -> str:
    _, label = OUTCOME_STYLES[report.outcome]
    failed = len(report.failed)
    return f"{label} ({len(report) - failed}/{len(report)} succeeded)"


def resolve_log_path(path: str | Path | None, cwd: Path | None = None) -> Path | None:
    """Absolute log file path; relative paths are taken from the working directory."""
    if path is None:
        return None
    path = Path(path).expanduser()
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    return path


class Reporter:
    """Writes a ReportSet to a console stream and, optionally, a log file."""

    def __init__(
        self,
        stream: TextIO | None = None,
        log_path: Path | None = None,
        color: bool | None = None,
    ):
        self.stream = stream or sys.stdout
        self.log_path = log_path
        if color is None:
            color = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.color = color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{RESET}" if self.color else text

    def render(self, report: ReportSet) -> None:
        records = [format_result(result) for result in report]

        for result, record in zip(report, records):
            color = GREEN if result.success else RED
            print(self._paint(record, color), file=self.stream)

        summary = format_summary(report)
        color, _ = OUTCOME_STYLES[report.outcome]
        print(self._paint(summary, BOLD + color), file=self.stream)

        if self.log_path:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "w", encoding="utf-8") as f:
                for record in records:
                    f.write(record + "\n")
                f.write(summary + "\n")


class LinePrinter:
    """Prints provisional output lines as ``[server] line`` while tasks run."""

    def __init__(self, servers: list[str], stream: TextIO | None = None, color: bool | None = None):
        self.stream = stream or sys.stdout
        if color is None:
            color = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.colors = {
            server: PREFIX_COLORS[i % len(PREFIX_COLORS)] if color else ""
            for i, server in enumerate(servers)
        }

    def __call__(self, event: OutputEvent) -> None:
        if event.final or event.stream is None:
            return
        server = event.result.server
        color = self.colors.get(server, "")
        reset = RESET if color else ""
        print(f"{color}[{server}]{reset} {event.result.output}", file=self.stream)
