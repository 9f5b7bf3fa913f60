r"""Atomic JSON primitives for stateful hooks.

Every hook invocation is a separate process, so all state lives in small JSON
files under the user's config directory. The state stores are built on three
file operations:

- atomic_write_json: serialize next to the target, then rename over it
- locked_read_json: read under a portalocker shared lock
- remove_file: delete, treating "already gone" as success

A reader never sees a half-written record: writers only ever rename a
complete file into place. A read followed by a write is NOT a transaction
though. Two processes that load the same record and write it back race, and
the later write wins. ``hooks.state_store.JsonStateStore`` accepts that lost
update.

Failures surface as ``TransactionError`` (``LockTimeoutError`` when the shared
lock is not granted in time, ``ValidationError`` when a record fails its
schema check before being written).
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

import portalocker

READ_LOCK_TIMEOUT = 5.0  # seconds
TMP_SUFFIX = ".tmp"


class TransactionError(Exception):
    """A state file could not be read, written or removed."""


class LockTimeoutError(TransactionError):
    """The shared read lock was not granted in time."""


class ValidationError(TransactionError):
    """A record failed its schema check and was not written."""


def _discard(tmp_path: Optional[Path]) -> None:
    if tmp_path is not None:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass


def atomic_write_json(
    path: Path | str,
    data: Any,
    fsync: bool = True,
    validate_fn: Optional[Callable[[Any], bool]] = None,
) -> None:
    """Replace ``path`` with ``data`` serialized as JSON, all or nothing.

    The record is written to a sibling temp file (same filesystem, so the
    final ``os.replace`` is atomic) and renamed over the target. With
    ``fsync`` the bytes reach the disk before the rename.

    Raises:
        ValidationError: ``validate_fn`` rejected the record; nothing is written.
        TransactionError: Serialization, write or rename failed.
    """
    target = Path(path)
    if validate_fn is not None and not validate_fn(data):
        raise ValidationError(f"Refusing to write invalid record to {target}")

    tmp_path = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=target.parent,
            prefix=f".{target.stem}-", suffix=TMP_SUFFIX, delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            json.dump(data, tmp, indent=2, ensure_ascii=False)
            tmp.flush()
            if fsync:
                os.fsync(tmp.fileno())
        os.replace(tmp_path, target)
    except (OSError, TypeError, ValueError) as e:
        _discard(tmp_path)
        raise TransactionError(f"Could not write {target}: {e}") from e


def locked_read_json(
    path: Path | str,
    timeout: float = READ_LOCK_TIMEOUT,
    default: Optional[Any] = None,
) -> Any:
    """Parse ``path`` while holding a shared lock.

    A missing or blank file (a first write that never completed) yields
    ``default``.

    Raises:
        LockTimeoutError: The lock was not granted within ``timeout`` seconds.
        TransactionError: The file is not valid JSON or could not be read.
    """
    source = Path(path)
    try:
        with portalocker.Lock(str(source), mode="r", flags=portalocker.LOCK_SH, timeout=timeout) as f:
            text = f.read()
    except FileNotFoundError:
        return default
    except portalocker.exceptions.LockException as e:
        raise LockTimeoutError(f"No shared lock on {source} within {timeout}s") from e
    except OSError as e:
        raise TransactionError(f"Could not read {source}: {e}") from e

    if not text.strip():
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise TransactionError(f"Corrupt JSON in {source}: {e}") from e


def remove_file(path: Path | str) -> bool:
    """Delete a state file. Returns False when there was nothing to delete."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise TransactionError(f"Could not remove {path}: {e}") from e
    return True


# Record schemas, checked before every write

def validate_loop_record(data: Any) -> bool:
    """ralph-state.json: ``{"iterations": int >= 0, "startTime": str, "lastIteration"?: str}``"""
    if not isinstance(data, dict):
        return False
    iterations = data.get("iterations")
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 0:
        return False
    if "lastIteration" in data and not isinstance(data["lastIteration"], str):
        return False
    return isinstance(data.get("startTime"), str)


def validate_pipeline_record(data: Any) -> bool:
    """pipeline-state.json.

    Flags are booleans, path lists hold strings, every verification entry is a
    boolean and ``anyVerification`` equals the OR of the other entries.
    """
    if not isinstance(data, dict):
        return False
    if not all(isinstance(data.get(flag), bool) for flag in ("codeModified", "planCreated")):
        return False
    for list_key in ("filesModified", "plansModified"):
        paths = data.get(list_key)
        if not isinstance(paths, list) or any(not isinstance(p, str) for p in paths):
            return False

    status = data.get("verificationStatus")
    if not isinstance(status, dict) or any(not isinstance(v, bool) for v in status.values()):
        return False
    identifiers = [v for k, v in status.items() if k != "anyVerification"]
    if status.get("anyVerification", False) != any(identifiers):
        return False

    return isinstance(data.get("lastModified"), str)
