# tests/test_report.py
from __future__ import annotations

import io
from pathlib import Path

from sshcast.aggregator import Aggregator
from sshcast.dispatcher import OutputEvent
from sshcast.executor import ExecutionResult
from sshcast.report import LinePrinter, Reporter, format_result, format_summary, resolve_log_path


def _report(*results: ExecutionResult):
    agg = Aggregator()
    for result in results:
        agg.record(result)
    return agg.finalize()


OK = ExecutionResult("web1", "hello\n", None, True, 1.234)
FAIL = ExecutionResult("web2", "", "boom\n", False, 0.5, stderr="boom\n", exit_status=1)


def test_format_output_record() -> None:
    assert format_result(OK) == "Output from web1:\nhello\n(Duration: 1.23s)"


def test_format_output_without_trailing_newline() -> None:
    result = ExecutionResult("web1", "hello", None, True, 2)
    assert format_result(result) == "Output from web1:\nhello\n(Duration: 2.00s)"


def test_format_error_record() -> None:
    assert format_result(FAIL) == "Error from web2: boom\n (Duration: 0.50s)"


def test_summary_per_outcome() -> None:
    assert format_summary(_report(OK)) == "All commands succeeded (1/1 succeeded)"
    assert format_summary(_report(OK, FAIL)) == "Some commands failed (1/2 succeeded)"
    assert format_summary(_report(FAIL)) == "All commands failed (0/1 succeeded)"


def test_render_writes_console_and_log(tmp_path: Path) -> None:
    out = io.StringIO()
    log = tmp_path / "logs" / "output.log"

    Reporter(stream=out, log_path=log, color=False).render(_report(FAIL, OK))

    text = out.getvalue()
    assert text.index("Output from web1") < text.index("Error from web2")
    assert "\033[" not in text
    logged = log.read_text(encoding="utf-8")
    assert "Output from web1:\nhello\n(Duration: 1.23s)" in logged
    assert "Error from web2: boom" in logged
    assert logged.rstrip().endswith("Some commands failed (1/2 succeeded)")


def test_render_colors_when_requested() -> None:
    out = io.StringIO()

    Reporter(stream=out, color=True).render(_report(OK))

    assert "\033[32m" in out.getvalue()


def test_resolve_log_path(tmp_path: Path) -> None:
    assert resolve_log_path(None) is None
    assert resolve_log_path("out.log", cwd=tmp_path) == tmp_path / "out.log"
    assert resolve_log_path(tmp_path / "abs.log") == tmp_path / "abs.log"


def test_line_printer_prints_only_lines() -> None:
    out = io.StringIO()
    printer = LinePrinter(["web1"], stream=out, color=False)
    line = ExecutionResult("web1", "hello", None, True, 0.1)

    printer(OutputEvent(task_id=0, result=line, stream=None))
    printer(OutputEvent(task_id=0, result=line, stream="stdout"))
    printer(OutputEvent(task_id=0, result=OK, final=True))

    assert out.getvalue() == "[web1] hello\n"
