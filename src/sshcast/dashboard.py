"""TUI dashboard showing live output of every task."""

from __future__ import annotations

from enum import Enum

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker, WorkerState

from .aggregator import ReportSet
from .dispatcher import Dispatcher, OutputEvent
from .task import Task, number_tasks


class TaskStatus(Enum):
    """Display status of a task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


STATUS_ICONS = {
    TaskStatus.PENDING: ("", "dim"),
    TaskStatus.RUNNING: ("", "yellow"),
    TaskStatus.SUCCESS: ("", "green"),
    TaskStatus.FAILED: ("", "red"),
}


class TaskPanel(Static):
    """A panel displaying output for a single task."""

    status: reactive[TaskStatus] = reactive(TaskStatus.PENDING)

    def __init__(self, task: Task, **kwargs) -> None:
        super().__init__(**kwargs)
        self.task_spec = task

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.task_spec.task_id}")
        yield RichLog(
            id=f"log-{self.task_spec.task_id}",
            highlight=True,
            markup=False,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        task = self.task_spec
        return f"[{color}]{icon}[/] [{color}][bold]{escape(task.target)}[/bold][/] [dim]$ {escape(task.command)}[/]"

    def watch_status(self, status: TaskStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.task_spec.task_id}", Label)
        header.update(self._get_header())

    def append_output(self, line: str, stream: str | None = None) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.task_spec.task_id}", RichLog)
        if stream == "stderr":
            log.write(f"STDERR: {line}")
        else:
            log.write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} tasks complete | {status} | Press 'q' to quit"


class TaskEvent(Message):
    """Message carrying a dispatcher event to the UI."""

    def __init__(self, event: OutputEvent) -> None:
        super().__init__()
        self.event = event


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    TaskPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    TaskPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    TaskPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, tasks: list[Task], dispatcher: Dispatcher, **kwargs) -> None:
        super().__init__(**kwargs)
        # Same ids the dispatcher will assign, so events find their panels
        self.tasks = number_tasks(tasks)
        self.dispatcher = dispatcher
        self.dispatcher.on_event = self._on_event
        self.panels: dict[int, TaskPanel] = {}
        self.report: ReportSet | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for task in self.tasks:
            panel = TaskPanel(task, id=f"panel-{task.task_id}")
            self.panels[task.task_id] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.tasks)
        self._worker = self.run_worker(self._run_execution(), exclusive=True)

    async def _run_execution(self) -> None:
        self.report = await self.dispatcher.run(self.tasks)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == WorkerState.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_event(self, event: OutputEvent) -> None:
        self.post_message(TaskEvent(event))

    def on_task_event(self, message: TaskEvent) -> None:
        """Route a dispatcher event to its panel."""
        event = message.event
        panel = self.panels.get(event.task_id)
        if panel is None:
            return

        if event.final:
            result = event.result
            panel.status = TaskStatus.SUCCESS if result.success else TaskStatus.FAILED
            if result.error is not None:
                panel.append_output(f"ERROR: {result.error.strip()}")
            panel.append_output(f"Completed in {result.duration:.2f}s")
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1
        elif event.stream is None:
            panel.status = TaskStatus.RUNNING
        else:
            panel.append_output(event.result.output, event.stream)

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
