"""Tests for the continuation loop (ralph_loop/loop.py, ralph_loop/state.py)"""

import json
from datetime import timedelta

import pytest

from hooks.state_store import iso_timestamp, utc_now
from ralph_loop.loop import ContinuationLoop, block_reason
from ralph_loop.state import LoopRecord, load_loop_record, loop_store


@pytest.fixture
def loop_config(make_config):
    return make_config(RALPH_ENABLED="true", RALPH_MAX_ITERATIONS="3", RALPH_COMPLETION_MARKER="ALL_DONE")


def test_disabled_loop_allows_without_state(make_config, stop_event):
    config = make_config()
    decision = ContinuationLoop(config).evaluate(stop_event())
    assert not decision.blocked
    assert not config.ralph_state_file.exists()


def test_blocks_until_iteration_cap(loop_config, stop_event):
    loop = ContinuationLoop(loop_config)

    for i in (1, 2, 3):
        decision = loop.evaluate(stop_event())
        assert decision.blocked
        assert decision.reason.startswith(f"[Ralph Loop {i}/3]")
        assert json.loads(loop_config.ralph_state_file.read_text())["iterations"] == i

    decision = loop.evaluate(stop_event())
    assert not decision.blocked
    assert not loop_config.ralph_state_file.exists()


def test_block_reason_format(make_config):
    config = make_config(RALPH_ENABLED="true", RALPH_MAX_ITERATIONS="5", RALPH_PROMPT="Finish the parser")
    assert block_reason(2, config) == (
        '[Ralph Loop 2/5] Completion marker not found. Please continue work. Output "COMPLETE" when complete.'
        "\n\nTask instruction: Finish the parser"
    )


def test_completion_in_envelope_resets(loop_config, stop_event):
    loop = ContinuationLoop(loop_config)
    assert loop.evaluate(stop_event()).blocked

    decision = loop.evaluate(stop_event(last_message="ALL_DONE"))
    assert not decision.blocked
    assert not loop_config.ralph_state_file.exists()


def test_completion_in_transcript(loop_config, stop_event, tmp_path):
    transcript = tmp_path / "transcript.jsonl"
    transcript.write_text(json.dumps({"role": "assistant", "content": "ALL_DONE"}) + "\n")

    decision = ContinuationLoop(loop_config).evaluate(stop_event(transcript_path=str(transcript)))
    assert not decision.blocked
    assert "(transcript)" in decision.reason


def test_missing_transcript_is_ignored(loop_config, stop_event, tmp_path):
    decision = ContinuationLoop(loop_config).evaluate(stop_event(transcript_path=str(tmp_path / "missing.jsonl")))
    assert decision.blocked


def test_stop_hook_active_resets(loop_config, stop_event):
    loop = ContinuationLoop(loop_config)
    loop.evaluate(stop_event())
    assert loop_config.ralph_state_file.exists()

    decision = loop.evaluate(stop_event(stop_hook_active=True))
    assert not decision.blocked
    assert not loop_config.ralph_state_file.exists()


def test_stale_record_starts_fresh(loop_config, stop_event):
    old = utc_now() - timedelta(hours=2)
    loop_config.ralph_state_file.write_text(json.dumps({
        "iterations": 3,
        "startTime": iso_timestamp(old),
        "lastIteration": iso_timestamp(old),
    }))

    decision = ContinuationLoop(loop_config).evaluate(stop_event())
    assert decision.blocked
    assert decision.reason.startswith("[Ralph Loop 1/3]")


def test_inactivity_measured_from_last_iteration(loop_config):
    now = utc_now()
    loop_config.ralph_state_file.write_text(json.dumps({
        "iterations": 2,
        "startTime": iso_timestamp(now - timedelta(hours=3)),
        "lastIteration": iso_timestamp(now - timedelta(minutes=5)),
    }))

    record = load_loop_record(loop_store(loop_config), now)
    assert record.iterations == 2


def test_epoch_millisecond_start_time(loop_config):
    now = utc_now()
    loop_config.ralph_state_file.write_text(json.dumps({
        "iterations": 1,
        "startTime": int(now.timestamp() * 1000),
    }))

    record = load_loop_record(loop_store(loop_config), now)
    assert record.iterations == 1


def test_corrupt_record_starts_fresh(loop_config, stop_event):
    loop_config.ralph_state_file.write_text("{not json")

    decision = ContinuationLoop(loop_config).evaluate(stop_event())
    assert decision.blocked
    assert decision.reason.startswith("[Ralph Loop 1/3]")


def test_loop_record_round_trip():
    record = LoopRecord(iterations=4, start_time="2026-01-01T00:00:00+00:00", last_iteration="2026-01-01T00:10:00+00:00")
    assert LoopRecord.from_dict(record.to_dict()) == record


def test_unwritable_state_allows(loop_config, stop_event):
    # A directory in place of the record makes every save fail
    loop_config.ralph_state_file.mkdir()
    loop = ContinuationLoop(loop_config)

    for _ in range(3):
        decision = loop.evaluate(stop_event())
        assert not decision.blocked
        assert decision.reason == "loop state not persisted"
