"""Tests for the scripts/ralph.py maintenance CLI"""

import json
import sys
from datetime import timedelta

import pytest

from hooks.state_store import iso_timestamp, utc_now


def _seed(config, age=timedelta(0)):
    stamp = iso_timestamp(utc_now() - age)
    config.ralph_state_file.write_text(json.dumps({"iterations": 2, "startTime": stamp, "lastIteration": stamp}))
    config.pipeline_state_file.write_text(json.dumps({
        "codeModified": True,
        "planCreated": False,
        "filesModified": ["a.py"],
        "plansModified": [],
        "verificationStatus": {"anyVerification": False},
        "lastModified": stamp,
    }))


def test_reset_single_record(make_config):
    from scripts.ralph import cmd_reset

    config = make_config()
    _seed(config)

    assert cmd_reset("loop", config) == ["loop"]
    assert not config.ralph_state_file.exists()
    assert config.pipeline_state_file.exists()


def test_reset_all(make_config):
    from scripts.ralph import cmd_reset

    config = make_config()
    _seed(config)

    assert cmd_reset("all", config) == ["loop", "pipeline"]


def test_reset_unknown_target(make_config):
    from scripts.ralph import cmd_reset

    with pytest.raises(ValueError):
        cmd_reset("everything", make_config())


def test_cleanup_removes_only_stale(make_config):
    from scripts.ralph import cmd_cleanup

    config = make_config()
    _seed(config, age=timedelta(hours=2))
    now = utc_now()
    config.pending_file.write_text(json.dumps({
        "old": {"type": "loki", "startTime": iso_timestamp(now - timedelta(minutes=30))},
        "live": {"type": "heimdall", "startTime": iso_timestamp(now)},
    }))

    stats = cmd_cleanup(config)

    assert stats["pending_pruned"] == 1
    assert sorted(stats["records_removed"]) == ["loop", "pipeline"]
    assert list(json.loads(config.pending_file.read_text())) == ["live"]


def test_cleanup_keeps_fresh_records(make_config):
    from scripts.ralph import cmd_cleanup

    config = make_config()
    _seed(config)

    assert cmd_cleanup(config)["records_removed"] == []
    assert config.ralph_state_file.exists()


def test_status_output(make_config, capsys):
    from scripts.ralph import cmd_status

    config = make_config()
    _seed(config, age=timedelta(hours=2))

    cmd_status(config)
    out = capsys.readouterr().out
    assert "[loop] 120 min old (stale)" in out
    assert "[pending] none" in out


def test_main_rejects_unknown_command(monkeypatch, state_dir):
    from scripts.ralph import main

    monkeypatch.setattr(sys, "argv", ["ralph.py", "explode"])
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 1
