#!/usr/bin/env python3
"""Main entry point for sshcast."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .aggregator import ReportSet
from .config import Config, find_config, load_config, prompt_create_default_config
from .dispatcher import Dispatcher
from .errors import ConfigError
from .executor import AsyncSSHExecutor, Executor, RemoteExecutor
from .report import LinePrinter, Reporter, resolve_log_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshcast",
        description="Run shell commands on multiple servers over SSH",
    )
    parser.add_argument("commands", nargs="+", help="Commands to execute on the servers")
    parser.add_argument("--config", type=Path, help="Path to configuration file")
    parser.add_argument(
        "--max-concurrency",
        type=int,
        help="Maximum number of commands running at once (default: unbounded)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Kill a command after this many seconds",
    )
    log_group = parser.add_mutually_exclusive_group()
    log_group.add_argument("--log-file", type=Path, help="Write the report to this file")
    log_group.add_argument(
        "--no-log",
        action="store_true",
        help="Do not write a log file",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Print output lines as they arrive",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def make_executor(config: Config) -> Executor:
    if config.backend == "asyncssh":
        return AsyncSSHExecutor(timeout=config.timeout)
    return RemoteExecutor(
        ssh_binary=config.ssh_binary,
        options_mode=config.options_mode,
        timeout=config.timeout,
    )


def _load(args: argparse.Namespace) -> Config | None:
    path = find_config(args.config)
    if path is None:
        path = prompt_create_default_config()
        if path is None:
            return None
    config = load_config(path)

    # Command line overrides
    if args.max_concurrency is not None:
        if args.max_concurrency < 1:
            raise ConfigError("--max-concurrency must be at least 1")
        config.max_concurrency = args.max_concurrency
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError("--timeout must be positive")
        config.timeout = args.timeout
    if args.no_log:
        config.log_file = None
    elif args.log_file is not None:
        config.log_file = args.log_file
    return config


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load(args)
        if config is None:
            print("No configuration file found, nothing to do.", file=sys.stderr)
            return 2
        tasks = config.expand(args.commands)
    except (ConfigError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    dispatcher = Dispatcher(
        make_executor(config),
        max_concurrency=config.max_concurrency,
    )

    try:
        if args.dashboard:
            report = _run_dashboard(tasks, dispatcher)
            if report is None:
                return 130
        else:
            if args.stream:
                dispatcher.on_event = LinePrinter(config.servers)
            report = dispatcher.run_sync(tasks)
    except KeyboardInterrupt:
        return 130

    reporter = Reporter(log_path=resolve_log_path(config.log_file))
    reporter.render(report)
    return 0 if report.all_succeeded else 1


def _run_dashboard(tasks, dispatcher: Dispatcher) -> ReportSet | None:
    from .dashboard import Dashboard

    app = Dashboard(tasks, dispatcher)
    app.run()
    return app.report


if __name__ == "__main__":
    sys.exit(main())
