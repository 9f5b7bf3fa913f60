"""
Self-Verification Pipeline Tracker (PostToolUse)

Records what the session produced and who reviewed it:
- Edit/Write on code files -> codeModified + filesModified
- Edit/Write on plan files -> planCreated + plansModified
- Task calls to verification agents -> verificationStatus[<agent>] + anyVerification

Flags only ever go false -> true; the record is reset as a whole by the
verification pipeline (or expires after an hour). The envelope passes through.
"""

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from hooks.config import HookConfig
from hooks.envelope import EventKind, HookEvent, HookResult
from hooks.state_store import JsonStateStore, iso_timestamp
from hooks.transaction import validate_pipeline_record

logger = logging.getLogger(__name__)

PIPELINE_STALE_AFTER = timedelta(hours=1)

EDIT_TOOLS = {"Edit", "Write", "MultiEdit"}
TASK_TOOL = "Task"

CODE_EXTENSIONS = {
    ".js", ".jsx", ".ts", ".tsx", ".py", ".go", ".rs", ".java",
    ".kt", ".c", ".cpp", ".h", ".cs", ".rb", ".php",
}
SKIP_EXTENSIONS = {
    ".json", ".yaml", ".yml", ".toml", ".ini", ".env", ".md", ".txt",
    ".rst", ".html", ".css", ".scss", ".svg",
}
SKIP_FILES = {"package.json", "tsconfig.json", "pyproject.toml", ".env", ".gitignore", "README.md"}

PLAN_PATTERNS = [
    re.compile(r"\.claude/plans/"),
    re.compile(r"plan\.md$", re.IGNORECASE),
    re.compile(r"roadmap\.md$", re.IGNORECASE),
]

# Verification agents by class (subagent_type as the host reports it)
CODE_VERIFIERS = ("code-reviewer", "heimdall", "test-writer", "tyr")
PLAN_VERIFIERS = ("plan-reviewer", "loki", "momus", "oracle", "odin")
GENERAL_VERIFIERS = ("norns",)
ALL_VERIFIERS = CODE_VERIFIERS + PLAN_VERIFIERS + GENERAL_VERIFIERS

ANY_VERIFICATION = "anyVerification"


def normalize_agent_name(name: str) -> str:
    """code-reviewer -> codeReviewer (state key form)."""
    return re.sub(r"-([a-z])", lambda m: m.group(1).upper(), name)


VERIFICATION_KEYS = tuple(normalize_agent_name(a) for a in ALL_VERIFIERS)
CODE_VERIFICATION_KEYS = tuple(normalize_agent_name(a) for a in CODE_VERIFIERS)
PLAN_VERIFICATION_KEYS = tuple(normalize_agent_name(a) for a in PLAN_VERIFIERS)


def is_code_file(file_path: str) -> bool:
    if not file_path:
        return False
    path = PurePath(file_path.replace("\\", "/"))
    if path.name in SKIP_FILES:
        return False
    ext = path.suffix.lower()
    if ext in SKIP_EXTENSIONS:
        return False
    return ext in CODE_EXTENSIONS


def is_plan_file(file_path: str) -> bool:
    if not file_path:
        return False
    normalized = file_path.replace("\\", "/")
    return any(pattern.search(normalized) for pattern in PLAN_PATTERNS)


def same_directory(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def current_directory(event: HookEvent) -> str:
    return event.cwd or os.getcwd()


def _fresh_status() -> Dict[str, bool]:
    status = {key: False for key in VERIFICATION_KEYS}
    status[ANY_VERIFICATION] = False
    return status


@dataclass
class VerificationRecord:
    """In-memory form of pipeline-state.json."""

    code_modified: bool = False
    plan_created: bool = False
    files_modified: List[str] = field(default_factory=list)
    plans_modified: List[str] = field(default_factory=list)
    verification_status: Dict[str, bool] = field(default_factory=_fresh_status)
    last_modified: str = field(default_factory=iso_timestamp)
    working_directory: Optional[str] = None

    @property
    def any_verification(self) -> bool:
        return self.verification_status.get(ANY_VERIFICATION, False)

    @property
    def needs_verification(self) -> bool:
        return self.code_modified or self.plan_created

    def verified_by(self, keys) -> bool:
        return any(self.verification_status.get(key, False) for key in keys)

    def mark_verified(self, key: str) -> None:
        self.verification_status[key] = True
        self.verification_status[ANY_VERIFICATION] = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationRecord":
        # Older records called the map pipelineStatus
        raw_status = data.get("verificationStatus") or data.get("pipelineStatus") or {}
        status = _fresh_status()
        if isinstance(raw_status, dict):
            for key, value in raw_status.items():
                if key != ANY_VERIFICATION and isinstance(key, str):
                    status[key] = bool(value)
        # anyVerification is derived from the identifiers, never trusted as stored
        status[ANY_VERIFICATION] = any(v for k, v in status.items() if k != ANY_VERIFICATION)

        def _paths(key: str) -> List[str]:
            values = data.get(key) or []
            if not isinstance(values, list):
                return []
            return list(dict.fromkeys(v for v in values if isinstance(v, str)))

        last_modified = data.get("lastModified")
        working_directory = data.get("workingDirectory")
        return cls(
            code_modified=bool(data.get("codeModified", False)),
            plan_created=bool(data.get("planCreated", False)),
            files_modified=_paths("filesModified"),
            plans_modified=_paths("plansModified"),
            verification_status=status,
            last_modified=last_modified if isinstance(last_modified, str) else iso_timestamp(),
            working_directory=working_directory if isinstance(working_directory, str) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "codeModified": self.code_modified,
            "planCreated": self.plan_created,
            "filesModified": list(self.files_modified),
            "plansModified": list(self.plans_modified),
            "verificationStatus": dict(self.verification_status),
            "lastModified": self.last_modified,
        }
        if self.working_directory:
            data["workingDirectory"] = self.working_directory
        return data


def pipeline_store(config: HookConfig) -> JsonStateStore:
    return JsonStateStore(
        config.pipeline_state_file,
        stale_after=PIPELINE_STALE_AFTER,
        age_fields=("lastModified",),
        validate_fn=validate_pipeline_record,
    )


def load_for_update(store: JsonStateStore, cwd: str, now: Optional[datetime] = None) -> VerificationRecord:
    """Record to accumulate into: fresh when absent, stale, or from another project."""
    data = store.load(now)
    if data is not None:
        record = VerificationRecord.from_dict(data)
        if record.working_directory is None or same_directory(record.working_directory, cwd):
            return record
        logger.info(f"Discarding pipeline record from {record.working_directory}")
    return VerificationRecord(last_modified=iso_timestamp(now), working_directory=cwd)


def apply_tool_use(record: VerificationRecord, event: HookEvent) -> bool:
    """Fold one PostToolUse event into the record. Returns True if anything changed."""
    changed = False

    if event.tool_name in EDIT_TOOLS:
        file_path = event.tool_input.get("file_path") or ""
        if not isinstance(file_path, str):
            file_path = ""

        if is_code_file(file_path):
            record.code_modified = True
            if file_path not in record.files_modified:
                record.files_modified.append(file_path)
            changed = True
            print(f"[TRACKER] Code file modified: {PurePath(file_path).name} → requires verification", file=sys.stderr)

        if is_plan_file(file_path):
            record.plan_created = True
            if file_path not in record.plans_modified:
                record.plans_modified.append(file_path)
            changed = True
            print(f"[TRACKER] Plan file modified: {PurePath(file_path).name} → requires review", file=sys.stderr)

    elif event.tool_name == TASK_TOOL:
        subagent_type = event.tool_input.get("subagent_type") or ""
        subagent_type = subagent_type.lower() if isinstance(subagent_type, str) else ""

        if subagent_type in ALL_VERIFIERS:
            record.mark_verified(normalize_agent_name(subagent_type))
            changed = True
            if subagent_type in CODE_VERIFIERS:
                kind = "Code verification"
            elif subagent_type in PLAN_VERIFIERS:
                kind = "Plan verification"
            else:
                kind = "Verification"
            print(f"[TRACKER] {kind} agent '{subagent_type}' executed ✓", file=sys.stderr)

    return changed


def track(event: HookEvent, config: HookConfig, now: Optional[datetime] = None) -> bool:
    """Update pipeline-state.json for one event. Returns True if the record was saved."""
    if event.kind != EventKind.POST_TOOL_USE:
        return False
    if event.tool_name not in EDIT_TOOLS and event.tool_name != TASK_TOOL:
        return False

    store = pipeline_store(config)
    cwd = current_directory(event)
    record = load_for_update(store, cwd, now)

    if not apply_tool_use(record, event):
        return False

    record.last_modified = iso_timestamp(now)
    if not record.working_directory:
        record.working_directory = cwd
    return store.save(record.to_dict())


def handle_track(event: HookEvent, config: HookConfig) -> HookResult:
    track(event, config)
    return HookResult.allow(event.data)
