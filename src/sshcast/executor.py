"""Remote execution of a single task, via the ssh binary or asyncssh."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

import asyncssh

from .task import Task

logger = logging.getLogger(__name__)

OPTIONS_MODES = ("verbatim", "split")

# Type alias for line callback
LineCallback = Callable[[str, str], None]  # (stream_name, line) -> None


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one task."""

    server: str
    output: str
    error: str | None
    success: bool
    duration: float
    stderr: str = ""
    command: str = ""
    user: str = ""
    task_id: int = 0
    exit_status: int | None = None


class Executor(Protocol):
    async def execute(
        self, task: Task, on_line: LineCallback | None = None
    ) -> ExecutionResult: ...


class _StreamCollector:
    """Reads one output pipe line by line until EOF."""

    def __init__(
        self,
        name: str,
        stream: Any,
        on_line: LineCallback | None,
        read_errors: tuple[type[BaseException], ...] = (ValueError, OSError),
    ):
        self.name = name
        self.stream = stream
        self.on_line = on_line
        self.read_errors = read_errors
        self.chunks: list[str] = []
        self.error: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    async def read(self) -> None:
        while True:
            try:
                raw = await self.stream.readline()
            except self.read_errors as e:
                self.error = f"failed to read {self.name}: {e}"
                await self._discard()
                return
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            self.chunks.append(line)
            if self.on_line:
                self.on_line(self.name, line.rstrip("\r\n"))

    async def _discard(self) -> None:
        # Keep the pipe moving so the writer can exit.
        try:
            while await self.stream.read(65536):
                pass
        except self.read_errors:
            return


def _build_result(
    task: Task,
    duration: float,
    *,
    stdout: str = "",
    stderr: str = "",
    exit_status: int | None = None,
    error: str | None = None,
) -> ExecutionResult:
    """Derive success and error from the exit status unless an error is forced."""
    if error is None and exit_status != 0:
        if stderr.strip():
            error = stderr
        else:
            error = f"command exited with status {exit_status}"
    return ExecutionResult(
        server=task.server,
        output=stdout,
        error=error,
        success=error is None,
        duration=duration,
        stderr=stderr,
        command=task.command,
        user=task.user,
        task_id=task.task_id,
        exit_status=exit_status,
    )


class RemoteExecutor:
    """Runs a task through the external ssh client."""

    def __init__(
        self,
        ssh_binary: str = "ssh",
        options_mode: str = "verbatim",
        timeout: float | None = None,
    ):
        if options_mode not in OPTIONS_MODES:
            raise ValueError(f"Unknown options mode: {options_mode!r}")
        self.ssh_binary = ssh_binary
        self.options_mode = options_mode
        self.timeout = timeout

    def build_argv(self, task: Task) -> list[str]:
        """Argument vector for ``ssh <options> <target> <command>``."""
        if self.options_mode == "split":
            options = shlex.split(task.ssh_options)
        else:
            options = [task.ssh_options]
        return [self.ssh_binary, *options, task.target, task.command]

    async def execute(
        self, task: Task, on_line: LineCallback | None = None
    ) -> ExecutionResult:
        """Run a task to completion. Failures are reported in the result."""
        start = time.monotonic()
        try:
            argv = self.build_argv(task)
            logger.debug("Task %d: running %s", task.task_id, argv)
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            # Missing binary, bad permissions, unbalanced quotes in options, NUL bytes
            duration = time.monotonic() - start
            logger.warning("Task %d: could not start %s: %s", task.task_id, self.ssh_binary, e)
            return _build_result(task, duration, error=f"failed to start {self.ssh_binary}: {e}")

        stdout = _StreamCollector("stdout", proc.stdout, on_line)
        stderr = _StreamCollector("stderr", proc.stderr, on_line)

        async def communicate() -> int:
            # Both pipes must be drained before waiting, or a full pipe blocks the child.
            await asyncio.gather(stdout.read(), stderr.read())
            return await proc.wait()

        try:
            exit_status = await asyncio.wait_for(communicate(), self.timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            duration = time.monotonic() - start
            logger.warning("Task %d: timed out after %.2fs on %s", task.task_id, duration, task.server)
            return _build_result(
                task, duration, stdout=stdout.text, stderr=stderr.text, error="timeout"
            )
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        duration = time.monotonic() - start
        read_error = stdout.error or stderr.error
        result = _build_result(
            task,
            duration,
            stdout=stdout.text,
            stderr=stderr.text,
            exit_status=exit_status,
            error=read_error,
        )
        if result.success:
            logger.debug("Task %d: %s OK (%.2fs)", task.task_id, task.server, duration)
        else:
            logger.warning(
                "Task %d: %s FAILED rc=%s (%.2fs)",
                task.task_id,
                task.server,
                exit_status,
                duration,
            )
        return result


async def _kill(proc: asyncio.subprocess.Process) -> None:
    # The child leads its own session; kill the group so no descendant keeps the pipes open.
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


class AsyncSSHExecutor:
    """Runs a task over an asyncssh connection instead of the ssh binary.

    Only a handful of OpenSSH flags are understood in ``ssh_options``:
    ``-p PORT``, ``-i KEYFILE``, ``-l USER`` and ``-o`` with ``Port``, ``User``
    or ``StrictHostKeyChecking=no``. Anything else fails the task.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def connect_options(self, task: Task) -> dict[str, Any]:
        """Translate the task's ssh option string into ``asyncssh.connect`` keywords."""
        options: dict[str, Any] = {}
        tokens = iter(shlex.split(task.ssh_options))
        for token in tokens:
            flag, value = token[:2], token[2:]
            if flag not in ("-p", "-i", "-l", "-o"):
                raise ValueError(f"unsupported ssh option for asyncssh backend: {token}")
            if not value:
                value = next(tokens, None)
                if value is None:
                    raise ValueError(f"missing value for ssh option {flag}")
            value = value.strip()

            if flag == "-o":
                key, _, value = value.partition("=")
                key = key.strip().lower()
                value = value.strip()
                if key == "stricthostkeychecking" and value.lower() in ("no", "off"):
                    options["known_hosts"] = None
                    continue
                if key not in ("port", "user"):
                    raise ValueError(f"unsupported ssh option for asyncssh backend: -o {key}")
                flag = "-p" if key == "port" else "-l"

            if flag == "-p":
                try:
                    options["port"] = int(value)
                except ValueError:
                    raise ValueError(f"invalid port: {value!r}") from None
            elif flag == "-i":
                options.setdefault("client_keys", []).append(str(Path(value).expanduser()))
            elif flag == "-l":
                options["username"] = value

        # user@host wins over -l, as with OpenSSH
        if task.user:
            options["username"] = task.user
        return options

    async def execute(
        self, task: Task, on_line: LineCallback | None = None
    ) -> ExecutionResult:
        start = time.monotonic()
        try:
            options = self.connect_options(task)
        except ValueError as e:
            return _build_result(task, time.monotonic() - start, error=str(e))
        if self.timeout is not None:
            options["connect_timeout"] = self.timeout

        read_errors = (ValueError, OSError, asyncssh.Error)
        stdout: _StreamCollector | None = None
        stderr: _StreamCollector | None = None
        try:
            async with asyncssh.connect(task.server, **options) as conn:
                async with conn.create_process(task.command, encoding=None) as proc:
                    stdout = _StreamCollector("stdout", proc.stdout, on_line, read_errors)
                    stderr = _StreamCollector("stderr", proc.stderr, on_line, read_errors)

                    async def communicate() -> int | None:
                        await asyncio.gather(stdout.read(), stderr.read())
                        await proc.wait()
                        return proc.returncode

                    exit_status = await asyncio.wait_for(communicate(), self.timeout)
        except asyncio.TimeoutError:
            duration = time.monotonic() - start
            logger.warning("Task %d: timed out after %.2fs on %s", task.task_id, duration, task.server)
            return _build_result(
                task,
                duration,
                stdout=stdout.text if stdout else "",
                stderr=stderr.text if stderr else "",
                error="timeout",
            )
        except (asyncssh.Error, OSError) as e:
            duration = time.monotonic() - start
            logger.warning("Task %d: SSH error on %s: %s", task.task_id, task.server, e)
            return _build_result(task, duration, error=f"SSH error: {e}")

        duration = time.monotonic() - start
        return _build_result(
            task,
            duration,
            stdout=stdout.text,
            stderr=stderr.text,
            exit_status=exit_status,
            error=stdout.error or stderr.error,
        )
