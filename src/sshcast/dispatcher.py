"""Concurrent dispatch of tasks across servers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Callable

from .aggregator import Aggregator, ReportSet
from .executor import ExecutionResult, Executor, RemoteExecutor
from .task import Task, number_tasks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputEvent:
    """A provisional line of output, or the terminal result of a task.

    Provisional events carry one line in ``result.output`` and a provisional
    ``success=True``. A provisional event with ``stream=None`` marks the task
    starting. Only the event with ``final=True`` is authoritative.
    """

    task_id: int
    result: ExecutionResult
    final: bool = False
    stream: str | None = None


# Type alias for event callback
EventCallback = Callable[[OutputEvent], None]


class Dispatcher:
    """Runs tasks concurrently and collects their results.

    One worker is started per task. When ``max_concurrency`` is set, workers
    wait on a semaphore so that at most that many tasks run at once.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        max_concurrency: int | None = None,
        on_event: EventCallback | None = None,
    ):
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.executor = executor or RemoteExecutor()
        self.max_concurrency = max_concurrency
        self.on_event = on_event

    def _make_emitter(self) -> EventCallback:
        """Event sink for one run. A listener that raises is dropped for the rest of the run."""
        listener = self.on_event

        def emit(event: OutputEvent) -> None:
            nonlocal listener
            if listener is None:
                return
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed, detaching it for this run")
                listener = None

        return emit

    async def run(
        self, tasks: Sequence[Task], aggregator: Aggregator | None = None
    ) -> ReportSet:
        """Run every task and return the sorted report once all have finished.

        Task ids are reassigned from each task's position in ``tasks``.
        """
        tasks = number_tasks(tasks)
        aggregator = aggregator or Aggregator()
        emit = self._make_emitter()
        if self.max_concurrency:
            gate = asyncio.Semaphore(self.max_concurrency)
        else:
            gate = contextlib.nullcontext()

        logger.debug(
            "Dispatching %d tasks (max concurrency: %s)",
            len(tasks),
            self.max_concurrency or "unbounded",
        )
        await asyncio.gather(*(self._run_task(task, aggregator, gate, emit) for task in tasks))
        return aggregator.finalize()

    def run_sync(self, tasks: Sequence[Task]) -> ReportSet:
        return asyncio.run(self.run(tasks))

    async def _run_task(
        self, task: Task, aggregator: Aggregator, gate, emit: EventCallback
    ) -> None:
        async with gate:
            start = time.monotonic()

            def provisional(output: str, stream: str | None) -> OutputEvent:
                return OutputEvent(
                    task_id=task.task_id,
                    result=ExecutionResult(
                        server=task.server,
                        output=output,
                        error=None,
                        success=True,
                        duration=time.monotonic() - start,
                        command=task.command,
                        user=task.user,
                        task_id=task.task_id,
                    ),
                    stream=stream,
                )

            def on_line(stream: str, line: str) -> None:
                emit(provisional(line, stream))

            emit(provisional("", None))
            try:
                result = await self.executor.execute(task, on_line)
            except Exception as e:
                logger.exception("Task %d on %s failed unexpectedly", task.task_id, task.server)
                result = ExecutionResult(
                    server=task.server,
                    output="",
                    error=f"internal error: {e}",
                    success=False,
                    duration=time.monotonic() - start,
                    command=task.command,
                    user=task.user,
                    task_id=task.task_id,
                )

        aggregator.record(result)
        emit(OutputEvent(task_id=task.task_id, result=result, final=True))
