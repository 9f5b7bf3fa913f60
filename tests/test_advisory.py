"""Tests for hooks/advisory.py"""

import shlex
import sys

from hooks.advisory import collect_warnings, run_command, scan_unfinished
from hooks.stop_orchestrator import handle_stop


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_scan_counts_markers():
    content = 'TODO: a\ntodo: b\nFIXME: c\n[ ] d\n"status": "in_progress"'
    assert scan_unfinished(content) == [
        "[ ]: 1 found",
        "TODO:: 2 found",
        "FIXME:: 1 found",
        "in_progress: 1 found",
    ]


def test_scan_clean_content():
    assert scan_unfinished('{"hook_event_name": "Stop"}') == []


def test_run_command_success():
    assert run_command(_python("pass"), timeout=30).success


def test_run_command_failure():
    result = run_command(_python("import sys; sys.exit(3)"), timeout=30)
    assert not result.success
    assert result.error.startswith("exit 3")


def test_run_command_timeout_is_failure():
    result = run_command(_python("import time; time.sleep(5)"), timeout=1)
    assert not result.success
    assert "timed out" in result.error


def test_run_command_missing_executable():
    result = run_command("definitely-not-a-real-command-xyz --flag", timeout=5)
    assert not result.success


def test_warnings_for_failed_checks(make_config, stop_event):
    config = make_config(
        VERIFY_TODOS="false",
        VERIFY_TESTS="true",
        VERIFY_BUILD="true",
        TEST_COMMAND=_python("import sys; sys.exit(1)"),
        BUILD_COMMAND=_python("pass"),
    )
    warnings = collect_warnings(stop_event(), config)
    assert len(warnings) == 1
    assert warnings[0].startswith("Tests failed:")


def test_todo_scan_disabled(make_config, stop_event):
    config = make_config(VERIFY_TODOS="false")
    assert collect_warnings(stop_event(last_message="TODO: later"), config) == []


def test_chained_command_failure_is_reported():
    command = f"{_python('pass')} && {_python('import sys; sys.exit(1)')}"
    result = run_command(command, timeout=30)
    assert not result.success
    assert result.error.startswith("exit 1")


def test_chained_command_success():
    assert run_command(f"{_python('pass')} && {_python('pass')}", timeout=30).success


def test_undecodable_output_is_a_warning(make_config, stop_event):
    config = make_config(
        VERIFY_TODOS="false",
        VERIFY_TESTS="true",
        TEST_COMMAND=_python("import sys; sys.stdout.buffer.write(b'\\xff\\xfe'); sys.exit(2)"),
    )
    event = stop_event()
    result = handle_stop(event, config)

    assert result.exit_code == 0
    assert result.payload == event.data
    assert collect_warnings(event, config)[0].startswith("Tests failed:")


def test_empty_command_fails():
    assert not run_command("   ", timeout=5).success
