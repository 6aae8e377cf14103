"""sshcast: Run commands on many SSH servers at once and report the results."""

from .aggregator import Aggregator, Outcome, ReportSet
from .config import Config, load_config
from .dispatcher import Dispatcher, OutputEvent
from .errors import AggregatorClosedError, ConfigError, SshcastError
from .executor import AsyncSSHExecutor, ExecutionResult, RemoteExecutor
from .task import Task, expand_tasks

__all__ = [
    "Aggregator",
    "Outcome",
    "ReportSet",
    "Config",
    "load_config",
    "Dispatcher",
    "OutputEvent",
    "AggregatorClosedError",
    "ConfigError",
    "SshcastError",
    "AsyncSSHExecutor",
    "ExecutionResult",
    "RemoteExecutor",
    "Task",
    "expand_tasks",
]
