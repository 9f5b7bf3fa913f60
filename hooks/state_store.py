"""
State store abstraction for persisted hook records.

All hook state goes through ``JsonStateStore``: ``load`` returns the record
(or None when absent, unreadable or stale), callers mutate it, ``save``
writes it back in full and ``reset`` deletes it.

The load/mutate/save cycle is deliberately unlocked. Parallel hook processes
(e.g. sibling subagent completions) can both load the same record and the
later ``save`` wins. Only single reads and single writes are protected, via
``hooks.transaction``.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from hooks.transaction import (
    TransactionError,
    atomic_write_json,
    locked_read_json,
    remove_file,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """Get timestamp in ISO8601 format with UTC timezone."""
    return (moment or utc_now()).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO8601 string or an epoch number into an aware datetime.

    Epoch values above 1e11 are taken as milliseconds (records written by
    the older JavaScript hooks), smaller values as seconds.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class JsonStateStore:
    """Load -> mutate -> save access to one JSON record on disk.

    Args:
        path: Record file.
        stale_after: Records older than this are treated as absent.
        age_fields: Timestamp fields checked in order to compute the age.
        validate_fn: Optional schema check applied before every write.
    """

    def __init__(
        self,
        path: Path,
        stale_after: Optional[timedelta] = None,
        age_fields: tuple = (),
        validate_fn: Optional[Callable[[Any], bool]] = None,
    ):
        self.path = Path(path)
        self.stale_after = stale_after
        self.age_fields = age_fields
        self.validate_fn = validate_fn

    def exists(self) -> bool:
        return self.path.exists()

    def read_raw(self) -> Optional[dict]:
        """Read the record without the staleness check. I/O and parse errors read as None."""
        try:
            data = locked_read_json(self.path)
        except TransactionError as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            if data is not None:
                logger.warning(f"Ignoring malformed state file {self.path}")
            return None
        return data

    def age(self, data: dict, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Age of a record from its first parseable timestamp field, or None."""
        for field_name in self.age_fields:
            stamp = parse_timestamp(data.get(field_name))
            if stamp is not None:
                return (now or utc_now()) - stamp
        return None

    def is_stale(self, data: dict, now: Optional[datetime] = None) -> bool:
        if self.stale_after is None:
            return False
        age = self.age(data, now)
        if age is None:
            # No usable timestamp; cannot prove freshness
            return True
        return age > self.stale_after

    def load(self, now: Optional[datetime] = None) -> Optional[dict]:
        """Return the record, or None when absent, unreadable or stale."""
        data = self.read_raw()
        if data is None:
            return None
        if self.is_stale(data, now):
            logger.debug(f"State file {self.path.name} is stale, treating as absent")
            return None
        return data

    def save(self, data: dict) -> bool:
        """Write the full record. Failures are logged and reported as False."""
        try:
            atomic_write_json(self.path, data, fsync=True, validate_fn=self.validate_fn)
        except TransactionError as e:
            logger.warning(f"Could not save {self.path}: {e}")
            return False
        return True

    def reset(self) -> bool:
        """Delete the record. Failures are logged and reported as False."""
        try:
            return remove_file(self.path)
        except TransactionError as e:
            logger.warning(f"Could not reset {self.path}: {e}")
            return False
