"""Collection of task results into a sorted report."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum

from .errors import AggregatorClosedError
from .executor import ExecutionResult


class Outcome(Enum):
    """Overall outcome of a run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass(frozen=True)
class ReportSet:
    """Final results of a run, ordered by server."""

    results: tuple[ExecutionResult, ...]
    all_succeeded: bool
    any_succeeded: bool

    @property
    def outcome(self) -> Outcome:
        if self.all_succeeded:
            return Outcome.SUCCESS
        if self.any_succeeded:
            return Outcome.PARTIAL
        return Outcome.FAILURE

    @property
    def failed(self) -> list[ExecutionResult]:
        return [r for r in self.results if not r.success]

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)


class Aggregator:
    """Thread-safe, one-shot collector of terminal results.

    Results are appended under a lock as they arrive. ``finalize`` sorts them
    by server (ties keep arrival order) and closes the aggregator.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: list[ExecutionResult] = []
        self._closed = False

    def record(self, result: ExecutionResult) -> None:
        with self._lock:
            if self._closed:
                raise AggregatorClosedError("Aggregator already finalized")
            self._results.append(result)

    def finalize(self) -> ReportSet:
        with self._lock:
            if self._closed:
                raise AggregatorClosedError("Aggregator already finalized")
            self._closed = True
            results = self._results
            self._results = []

        ordered = tuple(sorted(results, key=lambda r: r.server))
        return ReportSet(
            results=ordered,
            all_succeeded=all(r.success for r in ordered),
            any_succeeded=any(r.success for r in ordered),
        )
