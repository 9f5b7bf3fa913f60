"""
Hook event envelope and output protocol.

Every hook reads one JSON object from stdin and writes exactly one JSON
object to stdout:

- allow: the (possibly annotated) input envelope, exit 0
- block: {"decision": "block", "reason": "..."}, exit 2
- hook error: exit 1, input envelope still echoed when it could be parsed

The event kind is derived once here (``EventKind``) so handlers never
re-inspect field presence themselves.
"""

import json
import logging
import sys
import threading
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TextIO

from hooks.config import HookConfig, load_config

logger = logging.getLogger(__name__)

EXIT_ALLOW = 0
EXIT_ERROR = 1
EXIT_BLOCK = 2

STDIN_TIMEOUT = 10  # seconds

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class EnvelopeError(ValueError):
    """Raised when stdin does not hold a JSON object."""


class EventKind(str, Enum):
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    UNKNOWN = "Unknown"


def classify(data: dict) -> EventKind:
    """Determine the event kind from ``hook_event_name`` or, failing that, field presence."""
    name = data.get("hook_event_name")
    if isinstance(name, str):
        for kind in EventKind:
            if kind.value == name:
                return kind

    if "tool_name" in data:
        # A result field marks the post-action variant
        if "tool_result" in data or "tool_response" in data:
            return EventKind.POST_TOOL_USE
        return EventKind.PRE_TOOL_USE

    if "stop_hook_active" in data:
        return EventKind.STOP

    return EventKind.UNKNOWN


@dataclass
class HookEvent:
    """Parsed envelope plus its event kind."""

    kind: EventKind
    data: dict

    @property
    def tool_name(self) -> str:
        return self.data.get("tool_name") or ""

    @property
    def tool_input(self) -> dict:
        tool_input = self.data.get("tool_input")
        return tool_input if isinstance(tool_input, dict) else {}

    @property
    def cwd(self) -> Optional[str]:
        cwd = self.data.get("cwd")
        return cwd if isinstance(cwd, str) and cwd else None

    @property
    def transcript_path(self) -> Optional[str]:
        path = self.data.get("transcript_path")
        return path if isinstance(path, str) and path else None

    @property
    def stop_hook_active(self) -> bool:
        return bool(self.data.get("stop_hook_active"))

    def content(self) -> str:
        """Serialized envelope, the text the content scanners operate on."""
        return json.dumps(self.data, ensure_ascii=False)


def parse_envelope(raw: str) -> HookEvent:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise EnvelopeError(f"Invalid JSON on stdin: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeError(f"Expected a JSON object on stdin, got {type(data).__name__}")
    return HookEvent(kind=classify(data), data=data)


@dataclass
class Decision:
    """Verdict of a single gate."""

    blocked: bool
    reason: str = ""

    def __post_init__(self):
        if self.blocked and not (self.reason and self.reason.strip()):
            raise ValueError("A block decision requires a reason")

    @classmethod
    def allow(cls, reason: str = "") -> "Decision":
        return cls(blocked=False, reason=reason)

    @classmethod
    def block(cls, reason: str) -> "Decision":
        return cls(blocked=True, reason=reason)


@dataclass
class HookResult:
    """What the process writes to stdout and exits with."""

    exit_code: int
    payload: Any = field(default_factory=dict)

    @classmethod
    def allow(cls, envelope: dict) -> "HookResult":
        return cls(exit_code=EXIT_ALLOW, payload=envelope)

    @classmethod
    def block(cls, decision: Decision) -> "HookResult":
        return cls(
            exit_code=EXIT_BLOCK,
            payload={"decision": "block", "reason": decision.reason},
        )

    @classmethod
    def from_decision(cls, decision: Decision, envelope: dict) -> "HookResult":
        if decision.blocked:
            return cls.block(decision)
        return cls.allow(envelope)


Handler = Callable[[HookEvent, HookConfig], HookResult]


def read_stdin_with_timeout(stream: Optional[TextIO] = None, timeout_seconds: float = STDIN_TIMEOUT) -> Optional[str]:
    """Read the whole stream with a timeout. Returns None if the read did not finish."""
    result: list[str] = []
    done = threading.Event()

    def reader():
        try:
            if stream is None:
                result.append(sys.stdin.buffer.read().decode('utf-8', errors='replace'))
            else:
                result.append(stream.read())
        except (OSError, ValueError):
            result.append("")
        finally:
            done.set()

    t = threading.Thread(target=reader, daemon=True)
    t.start()
    done.wait(timeout=timeout_seconds)
    return result[0] if result else None


def configure_logging(config: HookConfig) -> None:
    """stderr at WARNING (DEBUG when debugging), activity log file at INFO."""
    root = logging.getLogger()
    if getattr(root, "_stop_gate_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.DEBUG if config.debug else logging.WARNING)
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    try:
        config.activity_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.activity_log_file, encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError:
        # Activity log is best-effort
        pass

    root.setLevel(logging.DEBUG if config.debug else logging.INFO)
    root._stop_gate_configured = True  # type: ignore[attr-defined]


def _emit(payload: Any, stdout: TextIO) -> None:
    stdout.write(json.dumps(payload, ensure_ascii=False))
    stdout.write("\n")
    stdout.flush()


def run_hook(
    handler: Handler,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    config: Optional[HookConfig] = None,
    stdin_timeout: float = STDIN_TIMEOUT,
) -> int:
    """Read the envelope, run the handler, write its output and return the exit code.

    A stdin read that never finishes allows with ``{}`` on stdout.
    Unparseable input exits 1 without touching any state. Handler exceptions
    exit 1 but still echo the envelope so a broken hook cannot wedge the session.
    """
    if stdout is None:
        stdout = sys.stdout
    if config is None:
        config = load_config()

    raw = read_stdin_with_timeout(stdin, stdin_timeout)
    if raw is None:
        logger.warning("stdin read timed out, allowing")
        _emit({}, stdout)
        return EXIT_ALLOW

    try:
        event = parse_envelope(raw)
    except EnvelopeError as e:
        logger.error(f"Hook error: {e}")
        return EXIT_ERROR

    logger.debug(f"{event.kind.value} event, tool_name={event.tool_name or '-'}")

    try:
        result = handler(event, config)
    except Exception as e:
        logger.error(f"Hook error: {e}\n{traceback.format_exc()}")
        _emit(event.data, stdout)
        return EXIT_ERROR

    _emit(result.payload, stdout)
    return result.exit_code
