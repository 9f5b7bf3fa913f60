"""Shared pytest fixtures for hook tests."""

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from hooks.config import HookConfig, load_config
from hooks.envelope import HookEvent, parse_envelope

HOOK_ENV_VARS = (
    "RALPH_ENABLED",
    "RALPH_MAX_ITERATIONS",
    "RALPH_COMPLETION_MARKER",
    "RALPH_PROMPT",
    "RALPH_DEBUG",
    "PIPELINE_SKIP",
    "PIPELINE_CROSS_CLASS_VERIFY",
    "PIPELINE_DEBUG",
    "VERIFY_TODOS",
    "VERIFY_TESTS",
    "VERIFY_BUILD",
    "TEST_COMMAND",
    "BUILD_COMMAND",
    "VERIFY_TIMEOUT",
)


@pytest.fixture
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated state directory with every hook variable scrubbed."""
    directory = tmp_path / "claude"
    directory.mkdir()
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(directory))
    for name in HOOK_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return directory


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "project"
    directory.mkdir()
    return directory


@pytest.fixture
def make_config(state_dir: Path) -> Callable[..., HookConfig]:
    """Build a HookConfig from environment-style overrides."""
    def _make(**env: str) -> HookConfig:
        return load_config({"CLAUDE_CONFIG_DIR": str(state_dir), **env})
    return _make


@pytest.fixture
def stop_event(project_dir: Path) -> Callable[..., HookEvent]:
    """Factory for Stop envelopes."""
    def _make(**fields: Any) -> HookEvent:
        data = {
            "hook_event_name": "Stop",
            "session_id": "test-session",
            "cwd": str(project_dir),
            "stop_hook_active": False,
        }
        data.update(fields)
        return parse_envelope(json.dumps(data))
    return _make


@pytest.fixture
def tool_event(project_dir: Path) -> Callable[..., HookEvent]:
    """Factory for Pre/PostToolUse envelopes (post when ``post=True``)."""
    def _make(tool_name: str, tool_input: dict, post: bool = True, **fields: Any) -> HookEvent:
        data = {
            "session_id": "test-session",
            "cwd": str(project_dir),
            "tool_name": tool_name,
            "tool_input": tool_input,
        }
        if post:
            data["tool_response"] = {"success": True}
        data.update(fields)
        return parse_envelope(json.dumps(data))
    return _make
