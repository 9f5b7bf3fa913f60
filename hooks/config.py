"""
Hook configuration.

Settings are layered: built-in defaults, then ``hooks-config.json`` in the
state directory, then environment variables. Configuration is loaded per
invocation so each hook process sees the environment it was started with.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

CONFIG_FILE_NAME = "hooks-config.json"

DEFAULT_MAX_ITERATIONS = 20
DEFAULT_COMPLETION_MARKER = "COMPLETE"
DEFAULT_TEST_COMMAND = "npm test"
DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_COMMAND_TIMEOUT = 60

_BOOL_FIELDS = {
    "ralph_enabled",
    "pipeline_enabled",
    "cross_class_verification",
    "check_todos",
    "run_tests",
    "run_build",
    "debug",
}
_INT_FIELDS = {"max_iterations", "command_timeout"}


@dataclass
class HookConfig:
    """Resolved settings for one hook invocation."""

    state_dir: Path
    # Continuation loop
    ralph_enabled: bool = False
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    completion_marker: str = DEFAULT_COMPLETION_MARKER
    custom_prompt: Optional[str] = None
    # Verification pipeline
    pipeline_enabled: bool = True
    cross_class_verification: bool = True
    # Advisory pass
    check_todos: bool = True
    run_tests: bool = False
    run_build: bool = False
    test_command: str = DEFAULT_TEST_COMMAND
    build_command: str = DEFAULT_BUILD_COMMAND
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    debug: bool = False

    @property
    def ralph_state_file(self) -> Path:
        return self.state_dir / "ralph-state.json"

    @property
    def pipeline_state_file(self) -> Path:
        return self.state_dir / "pipeline-state.json"

    @property
    def pending_file(self) -> Path:
        return self.state_dir / "agent-pending.json"

    @property
    def stats_file(self) -> Path:
        return self.state_dir / "agent-usage-stats.json"

    @property
    def usage_log_file(self) -> Path:
        return self.state_dir / "agent-usage.log"

    @property
    def detailed_log_file(self) -> Path:
        return self.state_dir / "agent-usage-detailed.jsonl"

    @property
    def activity_log_file(self) -> Path:
        return self.state_dir / "hooks-activity.log"


def _state_dir(env: Mapping[str, str]) -> Path:
    configured = env.get("CLAUDE_CONFIG_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".claude"


def _is_true(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("true", "1")


def _is_false(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("false", "0")


def _positive_int(value, fallback: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def _load_file_settings(state_dir: Path) -> dict:
    """Read optional JSON overrides. Unknown keys and unreadable files are ignored."""
    config_file = state_dir / CONFIG_FILE_NAME
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    if not isinstance(data, dict):
        return {}
    settings = {}
    for f in fields(HookConfig):
        if f.name == "state_dir" or f.name not in data:
            continue
        value = _coerce(f.name, data[f.name])
        if value is not None:
            settings[f.name] = value
    return settings


def _coerce(name: str, value):
    """Convert a JSON value to the field's type, or None when it cannot be used."""
    if name in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            if _is_true(value):
                return True
            if _is_false(value):
                return False
        return None
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            return None
        parsed = _positive_int(value, 0)
        return parsed or None
    if isinstance(value, str) and value.strip():
        return value
    return None


def load_config(env: Optional[Mapping[str, str]] = None) -> HookConfig:
    """Build a HookConfig from defaults, the config file and the environment."""
    if env is None:
        env = os.environ

    state_dir = _state_dir(env)
    config = HookConfig(state_dir=state_dir)

    for key, value in _load_file_settings(state_dir).items():
        setattr(config, key, value)

    # Environment wins over the config file
    if "RALPH_ENABLED" in env:
        config.ralph_enabled = _is_true(env["RALPH_ENABLED"])
    if "RALPH_MAX_ITERATIONS" in env:
        config.max_iterations = _positive_int(env["RALPH_MAX_ITERATIONS"], DEFAULT_MAX_ITERATIONS)
    if env.get("RALPH_COMPLETION_MARKER"):
        config.completion_marker = env["RALPH_COMPLETION_MARKER"]
    if env.get("RALPH_PROMPT"):
        config.custom_prompt = env["RALPH_PROMPT"]

    if "PIPELINE_SKIP" in env:
        config.pipeline_enabled = not _is_true(env["PIPELINE_SKIP"])
    if "PIPELINE_CROSS_CLASS_VERIFY" in env:
        config.cross_class_verification = not _is_false(env["PIPELINE_CROSS_CLASS_VERIFY"])

    if "VERIFY_TODOS" in env:
        config.check_todos = not _is_false(env["VERIFY_TODOS"])
    if "VERIFY_TESTS" in env:
        config.run_tests = _is_true(env["VERIFY_TESTS"])
    if "VERIFY_BUILD" in env:
        config.run_build = _is_true(env["VERIFY_BUILD"])
    if env.get("TEST_COMMAND"):
        config.test_command = env["TEST_COMMAND"]
    if env.get("BUILD_COMMAND"):
        config.build_command = env["BUILD_COMMAND"]
    if "VERIFY_TIMEOUT" in env:
        config.command_timeout = _positive_int(env["VERIFY_TIMEOUT"], DEFAULT_COMMAND_TIMEOUT)

    if _is_true(env.get("RALPH_DEBUG")) or _is_true(env.get("PIPELINE_DEBUG")):
        config.debug = True

    return config
