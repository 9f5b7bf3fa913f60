#!/usr/bin/env python3
"""
Ralph State Management Helpers

Persistence for the continuation-loop record (ralph-state.json). The record
only exists while a loop is iterating; completion, exhaustion and the
re-entry guard delete it. A record idle for more than an hour is treated as
belonging to a previous session.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from hooks.config import HookConfig
from hooks.state_store import JsonStateStore, iso_timestamp, utc_now
from hooks.transaction import validate_loop_record

LOOP_STALE_AFTER = timedelta(hours=1)


@dataclass
class LoopRecord:
    """Continuation-loop iteration counter."""

    iterations: int
    start_time: str
    last_iteration: Optional[str] = None

    @classmethod
    def fresh(cls, now: Optional[datetime] = None) -> "LoopRecord":
        return cls(iterations=0, start_time=iso_timestamp(now))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], now: Optional[datetime] = None) -> "LoopRecord":
        iterations = data.get("iterations", 0)
        if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations < 0:
            iterations = 0
        start_time = data.get("startTime")
        if not isinstance(start_time, str):
            start_time = iso_timestamp(now)
        last_iteration = data.get("lastIteration")
        return cls(
            iterations=iterations,
            start_time=start_time,
            last_iteration=last_iteration if isinstance(last_iteration, str) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"iterations": self.iterations, "startTime": self.start_time}
        if self.last_iteration:
            data["lastIteration"] = self.last_iteration
        return data


def loop_store(config: HookConfig) -> JsonStateStore:
    return JsonStateStore(
        config.ralph_state_file,
        stale_after=LOOP_STALE_AFTER,
        # Inactivity counts from the latest block
        age_fields=("lastIteration", "startTime"),
        validate_fn=validate_loop_record,
    )


def load_loop_record(store: JsonStateStore, now: Optional[datetime] = None) -> LoopRecord:
    """Load the record; absent, unreadable or stale records come back fresh."""
    data = store.load(now)
    if data is None:
        return LoopRecord.fresh(now)
    return LoopRecord.from_dict(data, now)


def save_loop_record(store: JsonStateStore, record: LoopRecord, now: Optional[datetime] = None) -> bool:
    record.last_iteration = iso_timestamp(now or utc_now())
    return store.save(record.to_dict())


def reset_loop_record(store: JsonStateStore) -> bool:
    return store.reset()
