# tests/test_dispatcher.py
from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from sshcast.dispatcher import Dispatcher, OutputEvent
from sshcast.executor import ExecutionResult, RemoteExecutor
from sshcast.task import Task, expand_tasks


class _RoutingExecutor:
    """Sends tasks for some servers to a different executor."""

    def __init__(self, default, overrides: dict[str, object]):
        self.default = default
        self.overrides = overrides

    async def execute(self, task: Task, on_line=None) -> ExecutionResult:
        executor = self.overrides.get(task.server, self.default)
        return await executor.execute(task, on_line)


class _ExplodingExecutor:
    async def execute(self, task: Task, on_line=None) -> ExecutionResult:
        raise RuntimeError("kaboom")


def test_result_count_is_servers_times_commands(fake_ssh: Path) -> None:
    tasks = expand_tasks(["s1", "s2", "s3"], ["echo one", "echo two"])
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)))

    report = dispatcher.run_sync(tasks)

    assert len(report) == 6
    assert report.all_succeeded is True
    servers = [r.server for r in report]
    assert servers == sorted(servers)


def test_report_order_is_independent_of_completion_order(fake_ssh: Path) -> None:
    # "a" finishes last but is still listed first
    tasks = [
        Task(server="b", command="echo b", task_id=0),
        Task(server="a", command="sleep 0.5; echo a", task_id=1),
    ]
    events: list[OutputEvent] = []
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)), on_event=events.append)

    report = dispatcher.run_sync(tasks)

    finals = [e.result.server for e in events if e.final]
    assert finals == ["b", "a"]
    assert [r.server for r in report] == ["a", "b"]
    assert [r.output for r in report] == ["a\n", "b\n"]


def test_spawn_failure_is_contained(fake_ssh: Path, tmp_path: Path) -> None:
    good = RemoteExecutor(ssh_binary=str(fake_ssh))
    broken = RemoteExecutor(ssh_binary=str(tmp_path / "missing-ssh"))
    tasks = expand_tasks(["ok1", "bad", "ok2"], ["echo hi"])

    baseline = Dispatcher(good).run_sync(tasks)
    report = Dispatcher(_RoutingExecutor(good, {"bad": broken})).run_sync(tasks)

    by_server = {r.server: r for r in report}
    assert by_server["bad"].success is False
    assert "failed to start" in by_server["bad"].error
    for server in ("ok1", "ok2"):
        before = next(r for r in baseline if r.server == server)
        after = by_server[server]
        assert (after.output, after.error, after.success) == (before.output, before.error, before.success)
    assert report.any_succeeded is True
    assert report.all_succeeded is False


def test_executor_exception_becomes_failed_result(fake_ssh: Path) -> None:
    good = RemoteExecutor(ssh_binary=str(fake_ssh))
    tasks = expand_tasks(["fine", "broken"], ["echo hi"])

    report = Dispatcher(_RoutingExecutor(good, {"broken": _ExplodingExecutor()})).run_sync(tasks)

    broken, fine = report.results
    assert broken.server == "broken"
    assert broken.success is False
    assert "kaboom" in broken.error
    assert fine.success is True


def test_tasks_run_in_parallel(fake_ssh: Path) -> None:
    tasks = expand_tasks([f"host{i:02d}" for i in range(50)], ["sleep 0.5"])
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)))

    start = time.monotonic()
    report = dispatcher.run_sync(tasks)
    elapsed = time.monotonic() - start

    assert len(report) == 50
    assert report.all_succeeded is True
    # Serial execution would take 25 seconds
    assert elapsed < 8


def test_max_concurrency_bounds_running_tasks() -> None:
    running = 0
    peak = 0

    class _CountingExecutor:
        async def execute(self, task: Task, on_line=None) -> ExecutionResult:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1
            return ExecutionResult(task.server, "", None, True, 0.05, task_id=task.task_id)

    tasks = expand_tasks([f"h{i}" for i in range(12)], ["true"])
    report = Dispatcher(_CountingExecutor(), max_concurrency=3).run_sync(tasks)

    assert len(report) == 12
    assert peak == 3


def test_invalid_max_concurrency() -> None:
    with pytest.raises(ValueError):
        Dispatcher(max_concurrency=0)


def test_events_are_provisional_then_final(fake_ssh: Path) -> None:
    tasks = expand_tasks(["a", "b"], ["echo one; echo two"])
    events: list[OutputEvent] = []
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)), on_event=events.append)

    dispatcher.run_sync(tasks)

    for task in tasks:
        mine = [e for e in events if e.task_id == task.task_id]
        assert mine[0].stream is None
        assert [e.result.output for e in mine if e.stream == "stdout"] == ["one", "two"]
        assert [e.final for e in mine].count(True) == 1
        assert mine[-1].final is True
        assert mine[-1].result.output == "one\ntwo\n"


def test_failing_listener_does_not_break_run(fake_ssh: Path) -> None:
    calls = 0

    def listener(event: OutputEvent) -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("listener bug")

    tasks = expand_tasks(["a", "b"], ["echo hi"])
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)), on_event=listener)

    report = dispatcher.run_sync(tasks)

    assert report.all_succeeded is True
    assert calls == 1

    # A fresh run gets the listener back
    dispatcher.run_sync(tasks)

    assert calls == 2
    assert dispatcher.on_event is listener


def test_hand_built_tasks_get_distinct_ids(fake_ssh: Path) -> None:
    tasks = [
        Task(server="a", command="echo one"),
        Task(server="a", command="echo two"),
        Task(server="b", command="echo three", task_id=7),
    ]
    events: list[OutputEvent] = []
    dispatcher = Dispatcher(RemoteExecutor(ssh_binary=str(fake_ssh)), on_event=events.append)

    report = dispatcher.run_sync(tasks)

    finals = {e.task_id: e.result for e in events if e.final}
    assert sorted(finals) == [0, 1, 2]
    assert finals[0].output == "one\n"
    assert finals[1].output == "two\n"
    assert finals[2].output == "three\n"
    assert sorted(r.task_id for r in report) == [0, 1, 2]
    for event in events:
        assert event.result.task_id == event.task_id
