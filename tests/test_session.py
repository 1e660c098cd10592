from __future__ import annotations

import json

import allure

from microgrid_miner.protocol import Session, SessionStore

pytestmark = [
    allure.epic("Protocol"),
    allure.feature("Session Persistence"),
]


def test_save_then_load(tmp_path) -> None:
    store = SessionStore(tmp_path / "nested" / "session.json")
    store.save(Session(session_id="s-1", token="tok"))

    assert json.loads(store.path.read_text("utf-8")) == {"sessionId": "s-1", "token": "tok"}
    assert store.load() == Session(session_id="s-1", token="tok")


def test_missing_file_loads_as_none(tmp_path) -> None:
    assert SessionStore(tmp_path / "session.json").load() is None


def test_legacy_id_key_is_accepted(tmp_path) -> None:
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"id": "old", "token": "tok"}), encoding="utf-8")

    assert SessionStore(path).load() == Session(session_id="old", token="tok")


def test_unreadable_or_incomplete_files_load_as_none(tmp_path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    partial = tmp_path / "partial.json"
    partial.write_text(json.dumps({"sessionId": "s-1"}), encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")

    assert SessionStore(broken).load() is None
    assert SessionStore(partial).load() is None
    assert SessionStore(listing).load() is None


def test_clear_removes_file(tmp_path) -> None:
    store = SessionStore(tmp_path / "session.json")
    store.save(Session(session_id="s-1", token="tok"))
    store.clear()
    store.clear()
    assert not store.path.exists()
