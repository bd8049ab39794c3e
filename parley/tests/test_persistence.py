########## Persistence Tests ##########
# SQLite save slots and the event log.

from __future__ import annotations

from sqlalchemy import text

from parley.core import db


def test_save_slots_upsert_and_list(clock) -> None:
    db.save_memory_blob("slot_a", "ayla", {"relationshipLevel": 0.1}, clock.now)
    db.save_memory_blob("slot_a", "ayla", {"relationshipLevel": 0.5}, clock.now)
    db.save_memory_blob("slot_a", "polly", {"relationshipLevel": -0.2})
    db.save_memory_blob("slot_b", "ayla", {})

    assert db.load_memory_blobs("slot_a") == {
        "ayla": {"relationshipLevel": 0.5},
        "polly": {"relationshipLevel": -0.2},
    }
    assert db.load_memory_blobs("slot_b") == {"ayla": {}}
    assert db.load_memory_blobs("missing") == {}
    assert db.list_slots() == ["slot_a", "slot_b"]


def test_delete_slot_reports_rows(clock) -> None:
    db.save_memory_blob("old", "ayla", {"a": 1}, clock.now)
    db.save_memory_blob("old", "chef", {"a": 2}, clock.now)
    assert db.delete_slot("old") == 2
    assert db.delete_slot("old") == 0
    assert db.list_slots() == []


def test_corrupt_rows_come_back_raw_and_load_as_defaults(orchestrator, clock) -> None:
    """A hand-edited save with bad JSON resets only that NPC."""

    db.save_memory_blob("slot", "ayla", {"relationshipLevel": 0.8, "totalInteractions": 3}, clock.now)
    db.ensure_schema()
    with db.get_engine().begin() as connection:
        connection.execute(
            text("INSERT INTO save_slots (slot, npc_id, blob, saved_at) VALUES ('slot', 'polly', '{not json', NULL)")
        )
    blobs = db.load_memory_blobs("slot")
    assert blobs["polly"] == "{not json"

    assert sorted(orchestrator.load_game("slot")) == ["ayla", "polly"]
    assert orchestrator.memory.get("ayla").relationship_level == 0.8
    assert orchestrator.memory.get("polly").relationship_level == 0.0


def test_event_log_filters_and_limits(clock) -> None:
    # 1 Three events at increasing times, two of them turns.                    # steps
    db.log_event("ayla", "player", "turn", '{"n": 1}', clock.now)
    db.log_event("albie", "morthos", "intervention", '{"n": 2}', clock.advance(seconds=1))
    db.log_event("ayla", "player", "turn", '{"n": 3}', clock.advance(seconds=1))

    events = db.fetch_events()
    assert [event["data"] for event in events] == ['{"n": 1}', '{"n": 2}', '{"n": 3}']
    assert [event["data"] for event in db.fetch_events(limit=2)] == ['{"n": 2}', '{"n": 3}']
    turns = db.fetch_events(event_type="turn")
    assert [event["npc_id"] for event in turns] == ["ayla", "ayla"]
    assert turns[-1]["ts"] == clock.now.isoformat()


def test_reset_engine_follows_a_new_db_file(tmp_path, monkeypatch, clock) -> None:
    db.log_event("ayla", None, "turn", "{}", clock.now)
    monkeypatch.setattr(db.config, "DB_FILE", str(tmp_path / "other" / "fresh.sqlite"))
    db.reset_engine()
    assert db.fetch_events() == []
    assert (tmp_path / "other" / "fresh.sqlite").exists()
