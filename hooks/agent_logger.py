"""
Agent Usage Logger (PreToolUse + PostToolUse on Task)

Pairs the start and end of every subagent call to measure its duration:

- PreToolUse Task:  store {type, startTime, prompt} under a fresh UUID in
                    agent-pending.json and annotate the envelope with
                    ``_agentTaskId``
- PostToolUse Task: pop the entry by ``_agentTaskId``, update
                    agent-usage-stats.json and append to agent-usage.log
                    and agent-usage-detailed.jsonl

Parallel calls of the same agent type stay distinct because the key is per
invocation. A post event without a known key records the call with an
unknown duration.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from hooks.config import HookConfig
from hooks.envelope import EventKind, HookEvent, HookResult
from hooks.state_store import JsonStateStore, iso_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

TASK_ID_FIELD = "_agentTaskId"
PENDING_STALE_AFTER = timedelta(minutes=10)
PROMPT_PREVIEW = 200
LOG_PROMPT_PREVIEW = 100
UNKNOWN_AGENT = "unknown"


def pending_store(config: HookConfig) -> JsonStateStore:
    return JsonStateStore(config.pending_file)


def stats_store(config: HookConfig) -> JsonStateStore:
    return JsonStateStore(config.stats_file)


def prune_pending(pending: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Drop entries older than ten minutes (or with no usable start time)."""
    now = now or utc_now()
    kept = {}
    for task_id, entry in pending.items():
        if not isinstance(entry, dict):
            continue
        started = parse_timestamp(entry.get("startTime"))
        if started is not None and now - started <= PENDING_STALE_AFTER:
            kept[task_id] = entry
    return kept


def load_pending(store: JsonStateStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    return prune_pending(store.read_raw() or {}, now)


def _subagent_type(event: HookEvent) -> str:
    value = event.tool_input.get("subagent_type")
    return value if isinstance(value, str) and value else UNKNOWN_AGENT


def _prompt(event: HookEvent) -> str:
    value = event.tool_input.get("prompt")
    return value if isinstance(value, str) else ""


def record_start(event: HookEvent, config: HookConfig, now: Optional[datetime] = None) -> dict:
    """Store a pending entry and return the envelope annotated with its key."""
    now = now or utc_now()
    agent = _subagent_type(event)
    task_id = str(uuid.uuid4())

    store = pending_store(config)
    pending = load_pending(store, now)
    pending[task_id] = {
        "type": agent,
        "startTime": iso_timestamp(now),
        "prompt": _prompt(event)[:PROMPT_PREVIEW],
    }
    store.save(pending)

    print(f"[AGENT-LOG] Starting {agent} (id: {task_id[:8]}...)", file=sys.stderr)
    annotated = dict(event.data)
    annotated[TASK_ID_FIELD] = task_id
    return annotated


def _empty_stats(now: datetime) -> Dict[str, Any]:
    return {"agents": {}, "totalCalls": 0, "startDate": iso_timestamp(now), "durations": {}}


def update_stats(stats: Dict[str, Any], agent: str, duration_ms: Optional[int], now: datetime) -> Dict[str, Any]:
    agents = stats.setdefault("agents", {})
    agents[agent] = int(agents.get(agent, 0)) + 1
    stats["totalCalls"] = int(stats.get("totalCalls", 0)) + 1
    stats["lastUpdated"] = iso_timestamp(now)

    durations = stats.setdefault("durations", {})
    entry = durations.setdefault(agent, {"total": 0, "count": 0, "avg": 0})
    if duration_ms is not None and duration_ms > 0:
        entry["total"] += duration_ms
        entry["count"] += 1
        entry["avg"] = round(entry["total"] / entry["count"])
    return stats


def format_log_line(timestamp: str, agent: str, duration_ms: Optional[int], prompt: str) -> str:
    duration = f"{duration_ms / 1000:.1f}s" if duration_ms else "-"
    preview = prompt[:LOG_PROMPT_PREVIEW].replace("\n", " ")
    return f"{timestamp} | {agent:<20} | {duration:>8} | {preview}"


def append_usage_log(config: HookConfig, line: str) -> None:
    try:
        config.usage_log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config.usage_log_file, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as e:
        logger.warning(f"Could not append to {config.usage_log_file}: {e}")


def detailed_record(timestamp: str, event: HookEvent, agent: str, duration_ms: Optional[int]) -> Dict[str, Any]:
    model = event.tool_input.get("model")
    task_id = event.data.get(TASK_ID_FIELD)
    return {
        "timestamp": timestamp,
        "agent": agent,
        "duration": duration_ms or 0,
        "prompt": _prompt(event)[:PROMPT_PREVIEW],
        "model": model if isinstance(model, str) and model else "default",
        "taskId": task_id if isinstance(task_id, str) else None,
    }


def append_detailed_log(config: HookConfig, record: Dict[str, Any]) -> None:
    """One JSON object per line in agent-usage-detailed.jsonl."""
    try:
        config.detailed_log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config.detailed_log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning(f"Could not append to {config.detailed_log_file}: {e}")


def record_end(event: HookEvent, config: HookConfig, now: Optional[datetime] = None) -> Optional[int]:
    """Close the pending entry for this call. Returns the duration in ms, or None."""
    now = now or utc_now()
    agent = _subagent_type(event)
    task_id = event.data.get(TASK_ID_FIELD)

    store = pending_store(config)
    pending = load_pending(store, now)
    duration_ms = None
    if isinstance(task_id, str) and task_id in pending:
        entry = pending.pop(task_id)
        started = parse_timestamp(entry.get("startTime"))
        if started is not None:
            duration_ms = max(0, int((now - started).total_seconds() * 1000))
        store.save(pending)
    else:
        logger.debug(f"No pending entry for {agent} ({task_id or 'no id'}), duration unknown")

    stats_file = stats_store(config)
    stats = stats_file.read_raw() or _empty_stats(now)
    update_stats(stats, agent, duration_ms, now)
    stats_file.save(stats)

    timestamp = iso_timestamp(now)
    append_usage_log(config, format_log_line(timestamp, agent, duration_ms, _prompt(event)))
    append_detailed_log(config, detailed_record(timestamp, event, agent, duration_ms))

    duration = f"{duration_ms / 1000:.1f}s" if duration_ms else "-"
    print(f"[AGENT-LOG] {agent} completed in {duration} (total: {stats['agents'][agent]})", file=sys.stderr)
    return duration_ms


def handle_agent_log(event: HookEvent, config: HookConfig) -> HookResult:
    if event.tool_name != "Task":
        return HookResult.allow(event.data)

    if event.kind == EventKind.POST_TOOL_USE:
        record_end(event, config)
        return HookResult.allow(event.data)

    if event.kind == EventKind.PRE_TOOL_USE:
        return HookResult.allow(record_start(event, config))

    return HookResult.allow(event.data)
