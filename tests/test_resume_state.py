"""Tests for resume state persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mailferry.errors import ResumeStateError
from mailferry.resume_state import ResumeState, ResumeStateStore, default_state_path


IDENTITY = "imap:alice@example.com@imap.example.com:993/INBOX"


def test_default_state_path_is_sanitized():
    path = default_state_path(Path("/var/state"), "imap", "alice@imap.example.com:993")

    assert path == Path("/var/state/imap-alice@imap.example.com_993.json")


def test_load_missing_file_returns_none(tmp_path):
    store = ResumeStateStore(tmp_path / "state.json")

    assert store.load(IDENTITY) is None


def test_save_then_load(tmp_path):
    """Test a saved cursor is read back for the same identity."""
    store = ResumeStateStore(tmp_path / "nested" / "state.json")

    store.save(ResumeState(identity=IDENTITY, uidvalidity=7, last_uid=42))
    loaded = store.load(IDENTITY)

    assert loaded is not None
    assert (loaded.uidvalidity, loaded.last_uid) == (7, 42)
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["last_uid"] == 42
    assert list(store.path.parent.glob("*.tmp")) == []


def test_load_other_identity_returns_none(tmp_path):
    store = ResumeStateStore(tmp_path / "state.json")
    store.save(ResumeState(identity="imap:someone-else", uidvalidity=1, last_uid=9))

    assert store.load(IDENTITY) is None


def test_corrupt_state_is_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    assert ResumeStateStore(path).load(IDENTITY) is None


def test_clear_removes_state(tmp_path):
    store = ResumeStateStore(tmp_path / "state.json")
    store.save(ResumeState(identity=IDENTITY, uidvalidity=1, last_uid=1))

    store.clear()

    assert not store.path.exists()
    store.clear()


def test_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = ResumeStateStore(blocker / "state.json")

    with pytest.raises(ResumeStateError):
        store.save(ResumeState(identity=IDENTITY, uidvalidity=1, last_uid=1))
