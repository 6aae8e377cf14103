"""Configuration loader for sshcast."""

from __future__ import annotations

import json
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from .errors import ConfigError
from .executor import OPTIONS_MODES
from .task import Task, expand_tasks

CONFIG_NAMES = ("sshcast.yaml", "sshcast.yml", "sshcast.toml", "sshcast.json")
BACKENDS = ("openssh", "asyncssh")

DEFAULT_CONFIG = """\
# Servers to run commands on
servers:
  - example.server.com

# Per-server login user (optional)
users:
  example.server.com: example

# Per-server raw ssh options (optional)
ssh_options:
  example.server.com: "-p 22"

# max_concurrency: 16
# timeout: 30
# log_file: output.log
"""


@dataclass
class Config:
    """Servers to target and how to run commands on them."""

    servers: list[str]
    users: dict[str, str] = field(default_factory=dict)
    ssh_options: dict[str, str] = field(default_factory=dict)
    max_concurrency: int | None = None
    timeout: float | None = None
    ssh_binary: str = "ssh"
    options_mode: str = "verbatim"
    backend: str = "openssh"
    log_file: Path | None = field(default_factory=lambda: Path("output.log"))
    source_path: Path | None = None  # Path to the original config file

    def user_for(self, server: str) -> str:
        return self.users.get(server, "")

    def options_for(self, server: str) -> str:
        return self.ssh_options.get(server, "")

    def expand(self, commands: list[str]) -> list[Task]:
        """Build the tasks for running ``commands`` on every server."""
        return expand_tasks(self.servers, commands, self.users, self.ssh_options)


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML, TOML or JSON file."""
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    if not config_path.is_file():
        raise ConfigError(f"Config path is not a file: {config_path}")

    raw = _read_file(config_path)
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: top-level value must be a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _read_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".toml":
            return tomllib.loads(text)
        if path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"{path}: could not parse config: {e}") from e


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw config data into a Config object."""
    servers = raw.get("servers")
    if not servers:
        raise ConfigError("No servers defined in configuration")
    if not isinstance(servers, list):
        raise ConfigError("'servers' must be a list")
    for server in servers:
        if not isinstance(server, str) or not server.strip():
            raise ConfigError(f"Invalid server entry: {server!r}")

    users = _parse_mapping(raw, "users")
    ssh_options = _parse_mapping(raw, "ssh_options")

    max_concurrency = raw.get("max_concurrency")
    if max_concurrency is not None:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ConfigError("'max_concurrency' must be a positive integer")

    timeout = raw.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError("'timeout' must be a positive number of seconds")

    ssh_binary = raw.get("ssh_binary", "ssh")
    if not isinstance(ssh_binary, str) or not ssh_binary.strip():
        raise ConfigError("'ssh_binary' must be a non-empty string")

    options_mode = raw.get("options_mode", "verbatim")
    if options_mode not in OPTIONS_MODES:
        raise ConfigError(f"'options_mode' must be one of {', '.join(OPTIONS_MODES)}")

    backend = raw.get("backend", "openssh")
    if backend not in BACKENDS:
        raise ConfigError(f"'backend' must be one of {', '.join(BACKENDS)}")

    log_file = raw.get("log_file", "output.log")
    if log_file is not None and not isinstance(log_file, str):
        raise ConfigError("'log_file' must be a path or null")

    return Config(
        servers=list(servers),
        users=users,
        ssh_options=ssh_options,
        max_concurrency=max_concurrency,
        timeout=float(timeout) if timeout is not None else None,
        ssh_binary=ssh_binary,
        options_mode=options_mode,
        backend=backend,
        log_file=Path(log_file).expanduser() if log_file else None,
    )


def _parse_mapping(raw: dict[str, Any], key: str) -> dict[str, str]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping of server to string")
    for server, item in value.items():
        if not isinstance(server, str) or not isinstance(item, str):
            raise ConfigError(f"'{key}' entries must map server names to strings")
    return dict(value)


def user_config_dir() -> Path:
    """Per-user config directory: ``$XDG_CONFIG_HOME/sshcast`` or ``~/.config/sshcast``."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "sshcast"


def find_config(explicit: str | Path | None = None, cwd: Path | None = None) -> Path | None:
    """Locate the config file: explicit path, then working directory, then user dir."""
    if explicit is not None:
        return Path(explicit).expanduser()

    cwd = cwd or Path.cwd()
    for name in CONFIG_NAMES:
        candidate = cwd / name
        if candidate.is_file():
            return candidate

    user_dir = user_config_dir()
    if user_dir.is_dir():
        for candidate in sorted(user_dir.iterdir()):
            if candidate.is_file() and candidate.name.startswith("sshcast."):
                return candidate
    return None


def write_default_config(path: Path) -> Path:
    """Write the example configuration to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    return path


def prompt_create_default_config(
    ask: Callable[[str], str] = input,
    interactive: bool | None = None,
) -> Path | None:
    """Offer to create an example config in the user config directory.

    Returns the path of the new file, or None if the user declined or stdin
    is not interactive.
    """
    if interactive is None:
        interactive = sys.stdin.isatty()
    if not interactive:
        return None

    default_path = user_config_dir() / "sshcast.yaml"
    try:
        answer = ask(
            f"Configuration file not found. Create an example one at {default_path}? [y/N] "
        )
    except EOFError:
        return None

    if answer.strip().lower().startswith("y"):
        return write_default_config(default_path)
    return None
