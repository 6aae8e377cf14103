"""Task model and server x command expansion."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class Task:
    """One command to run on one server, with its resolved user and options."""

    server: str
    command: str
    user: str = ""
    ssh_options: str = ""
    task_id: int = 0

    def __post_init__(self) -> None:
        if not self.server or not self.server.strip():
            raise ValueError("Task server must not be empty")
        if not self.command or not self.command.strip():
            raise ValueError("Task command must not be empty")

    @property
    def target(self) -> str:
        """Destination argument for ssh: ``user@server``, or ``server`` without a user."""
        return f"{self.user}@{self.server}" if self.user else self.server


def expand_tasks(
    servers: Sequence[str],
    commands: Sequence[str],
    users: Mapping[str, str] | None = None,
    ssh_options: Mapping[str, str] | None = None,
) -> list[Task]:
    """Build one Task per (server, command) pair, servers outer, commands inner.

    Servers missing from ``users`` or ``ssh_options`` get an empty string.
    """
    if not commands:
        raise ValueError("At least one command is required")
    for cmd in commands:
        if not cmd or not cmd.strip():
            raise ValueError("Commands must not be empty")

    users = users or {}
    ssh_options = ssh_options or {}

    tasks = []
    for server in servers:
        user = users.get(server, "")
        options = ssh_options.get(server, "")
        for cmd in commands:
            tasks.append(
                Task(
                    server=server,
                    command=cmd,
                    user=user,
                    ssh_options=options,
                    task_id=len(tasks),
                )
            )
    return tasks


def number_tasks(tasks: Sequence[Task]) -> list[Task]:
    """Give each task its position in ``tasks`` as its ``task_id``."""
    return [
        task if task.task_id == i else dataclasses.replace(task, task_id=i)
        for i, task in enumerate(tasks)
    ]
