########## Context Builder Tests ##########
# Snapshot fields from the seed state, legacy keys, and bad input.

from __future__ import annotations

import copy
import json
from datetime import timedelta
from pathlib import Path

from parley.core import config
from parley.core.context import analyze_player_behavior, build_context, is_puzzle_critical, location_hints

SEED_PATH = Path(__file__).resolve().parents[1] / "demo" / "seeds" / "game_state.json"


def _seed() -> dict:
    return json.loads(SEED_PATH.read_text(encoding="utf-8"))


def test_seed_state_builds_full_snapshot(clock) -> None:
    """Every documented field is read from the host's camelCase state."""

    context = build_context(_seed(), clock.now)
    assert context.room_id == "latticeLibrary"
    assert context.zone == "latticeZone"
    assert context.npcs_present == ["ayla", "mr wendell", "morthos", "albie"]
    assert context.inventory == ["coin", "napkin"]
    assert context.timer(config.PRIMARY_COUNTDOWN_TIMER).remaining == timedelta(seconds=150)
    assert context.flags["metWendell"] is True
    assert context.recent_events == ["entered_library", "book_examined"]
    assert context.session.idle_time == timedelta(seconds=4)
    assert context.session.visit_count == 2
    assert context.session.last_action == "examine book"
    assert context.game_stage == "act_two"
    assert context.available_exits == ["north", "down"]
    assert context.room_items == ["napkin", "extrapolator"]
    assert context.active_quests == ["access_library", "use_coin"]
    assert context.player.npc_relationships == {"ayla": 4.0, "mr wendell": -2.0}
    assert context.player.reputation == {"albie": 6.0}
    assert context.built_at == clock.now


def test_environment_tags_follow_zone_then_room() -> None:
    context = build_context(_seed())
    assert context.environment.room_mood == "scholarly"
    assert context.environment.light_level == "soft"
    assert context.environment.temperature == "moderate"
    assert context.environment.ambient_audio == "pages_turning"

    cafe = build_context({"currentRoomId": "londonCafe", "zone": "londonZone"})
    assert cafe.environment.room_mood == "cozy"
    tense = build_context({"currentRoomId": "hallway", "zone": "londonZone", "flags": {"pollyTakeoverActive": True}})
    assert tense.environment.room_mood == "tense"


def test_snapshot_does_not_alias_host_state() -> None:
    """Later edits to the game state or a copied map never reach the snapshot."""

    state = _seed()
    context = build_context(state)
    state["flags"]["tension_rising"] = False
    state["player"]["inventory"].append("key")
    state["timers"]["polly_takeover"]["timeRemaining"] = 1
    assert context.flags["tension_rising"] is True
    assert "key" not in context.inventory
    assert context.countdown_remaining() == timedelta(seconds=150)

    flags = context.flags_copy()
    flags["tension_rising"] = False
    timers = context.timers_copy()
    timers.clear()
    assert context.has_flag("tension_rising")
    assert context.timers


def test_legacy_takeover_flags_become_a_timer() -> None:
    context = build_context({"flags": {"pollyTakeoverActive": True, "pollyTakeoverTimeRemaining": 25000}})
    assert context.countdown_below(timedelta(seconds=30))
    assert "stop_polly" in context.active_quests


def test_timer_shapes_and_inactive_timers() -> None:
    context = build_context(
        {
            "timers": {
                "bomb": 45,
                "boat": {"remaining": 90},
                "nap": {"active": False, "timeRemaining": 1000},
                "junk": "soon",
            }
        }
    )
    assert context.timer("bomb").remaining == timedelta(seconds=45)
    assert context.timer("boat").remaining == timedelta(seconds=90)
    assert context.timer("nap") is None
    assert "junk" not in context.timers
    assert context.countdown_remaining() == timedelta(seconds=45)


def test_idle_time_from_last_action_timestamp(clock) -> None:
    last_action = clock.now - timedelta(seconds=40)
    context = build_context({"metadata": {"lastActionTime": last_action.timestamp() * 1000}}, clock.now)
    assert context.session.idle_time == timedelta(seconds=40)


def test_bad_input_degrades_to_defaults() -> None:
    for state in (None, "nonsense", 42, ["room"]):
        context = build_context(state)
        assert context.room_id == config.UNKNOWN
        assert context.npcs_present == []
        assert context.countdown_remaining() is None
    odd = build_context({"npcsInRoom": 5, "timers": "x", "history": "y", "player": ["z"]})
    assert odd.npcs_present == []
    assert odd.timers == {}
    assert odd.recent_events == []


def test_npc_list_accepts_objects_and_dedupes() -> None:
    context = build_context({"npcsInRoom": ["ayla", {"id": "polly"}, {"name": "ayla"}, {"nope": 1}]})
    assert context.npcs_present == ["ayla", "polly"]


def test_recent_events_are_bounded_and_textual() -> None:
    history = [f"event {index}" for index in range(8)] + [{"text": "last"}]
    context = build_context({"history": history})
    assert len(context.recent_events) == config.RECENT_EVENT_LIMIT
    assert context.recent_events[-1] == "last"


def test_player_behavior_analysis() -> None:
    analysis = analyze_player_behavior(build_context(_seed()))
    assert analysis["is_exploring"] is True
    assert analysis["is_stuck"] is False
    assert analysis["needs_guidance"] is False
    assert abs(analysis["confidence_level"] - 0.8) < 1e-9

    stuck = copy.deepcopy(_seed())
    stuck["metadata"]["idleTime"] = 45000
    analysis = analyze_player_behavior(build_context(stuck))
    assert analysis["is_stuck"] is True
    assert analysis["needs_guidance"] is True


def test_location_hints_and_puzzle_criticality() -> None:
    context = build_context(_seed())
    assert location_hints(context) == [
        "knowledge_focus",
        "library_access",
        "research_needed",
        "information_available",
        "research_clue",
        "library_relevant",
    ]
    assert not is_puzzle_critical(context)
    assert is_puzzle_critical(build_context({"currentRoomId": "introReset"}))
