"""Tests for hooks/envelope.py and the hooks/ralph.py entry point"""

import io
import json
import sys
import time

import pytest

from hooks.envelope import (
    EXIT_ALLOW,
    EXIT_BLOCK,
    EXIT_ERROR,
    Decision,
    EnvelopeError,
    EventKind,
    classify,
    parse_envelope,
    run_hook,
)


# ==============================================================================
# Event classification
# ==============================================================================

def test_classify_post_tool_use_by_result_field():
    assert classify({"tool_name": "Edit", "tool_result": "ok"}) == EventKind.POST_TOOL_USE
    assert classify({"tool_name": "Edit", "tool_response": {}}) == EventKind.POST_TOOL_USE


def test_classify_pre_tool_use_without_result():
    assert classify({"tool_name": "Task", "tool_input": {}}) == EventKind.PRE_TOOL_USE


def test_classify_hook_event_name_wins():
    data = {"hook_event_name": "PreToolUse", "tool_name": "Task", "tool_response": {}}
    assert classify(data) == EventKind.PRE_TOOL_USE
    assert classify({"hook_event_name": "SubagentStop"}) == EventKind.SUBAGENT_STOP


def test_classify_stop_by_field_presence():
    assert classify({"stop_hook_active": False}) == EventKind.STOP


def test_classify_unknown():
    assert classify({}) == EventKind.UNKNOWN
    assert classify({"hook_event_name": "SessionStart"}) == EventKind.UNKNOWN


def test_parse_envelope_rejects_non_objects():
    with pytest.raises(EnvelopeError):
        parse_envelope("[]")
    with pytest.raises(EnvelopeError):
        parse_envelope("not json")


# ==============================================================================
# Decisions
# ==============================================================================

def test_block_requires_reason():
    with pytest.raises(ValueError):
        Decision.block("")
    with pytest.raises(ValueError):
        Decision.block("   ")
    with pytest.raises(ValueError):
        Decision(blocked=True)


def test_allow_needs_no_reason():
    assert not Decision.allow().blocked


# ==============================================================================
# Runner
# ==============================================================================

class _HangingStream:
    def read(self):
        time.sleep(2)
        return ""


def test_stdin_timeout_allows_with_empty_object(make_config):
    stdout = io.StringIO()
    code = run_hook(lambda event, config: None, stdin=_HangingStream(), stdout=stdout,
                    config=make_config(), stdin_timeout=0.1)

    assert code == EXIT_ALLOW
    assert json.loads(stdout.getvalue()) == {}


# ==============================================================================
# Entry point (hooks/ralph.py)
# ==============================================================================

def _run_main(monkeypatch, argv, payload=None):
    import hooks.ralph as entry

    monkeypatch.setattr(entry, "configure_logging", lambda config: None)
    monkeypatch.setattr(entry, "_setup_timeout", lambda seconds: None)
    monkeypatch.setattr(sys, "argv", ["ralph.py", *argv])
    raw = json.dumps(payload if payload is not None else {}).encode("utf-8")
    monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(raw), encoding="utf-8"))

    with pytest.raises(SystemExit) as exc:
        entry.main()
    return exc.value.code


def test_main_dispatches_stop_mode(monkeypatch, capsys, state_dir, project_dir):
    monkeypatch.setenv("RALPH_ENABLED", "true")
    payload = {"hook_event_name": "Stop", "cwd": str(project_dir), "stop_hook_active": False}

    code = _run_main(monkeypatch, ["stop"], payload)

    assert code == EXIT_BLOCK
    assert json.loads(capsys.readouterr().out)["decision"] == "block"


def test_main_dispatches_agent_log_mode(monkeypatch, capsys, state_dir, project_dir):
    payload = {"cwd": str(project_dir), "tool_name": "Task", "tool_input": {"subagent_type": "loki"}}

    code = _run_main(monkeypatch, ["agent-log"], payload)

    assert code == EXIT_ALLOW
    assert "_agentTaskId" in json.loads(capsys.readouterr().out)


def test_main_rejects_invalid_mode(monkeypatch, capsys, state_dir):
    code = _run_main(monkeypatch, ["session-start"])
    assert code == EXIT_ERROR
    assert "Invalid mode" in capsys.readouterr().err


def test_main_requires_mode(monkeypatch, capsys, state_dir):
    code = _run_main(monkeypatch, [])
    assert code == EXIT_ERROR
    assert "Usage" in capsys.readouterr().err
