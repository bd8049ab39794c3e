########## Intervention Engine Tests ##########
# Priority order, gates, bookkeeping, and diagnostics.

from __future__ import annotations

from datetime import timedelta

from parley.core.intervention import InterventionEngine, player_reputation
from parley.core.types import ContextSnapshot, InterventionMessages, InterventionRule, PlayerState


def _tense_room(**overrides) -> ContextSnapshot:
    values = {
        "room_id": "latticeLibrary",
        "npcs_present": ["ayla", "Mr Wendell", "morthos", "albie"],
        "flags": {"tension_rising": True},
    }
    values.update(overrides)
    return ContextSnapshot(**values)


def _simple_rule(rule_id: str = "chef_shout", **overrides) -> InterventionRule:
    values = {
        "id": rule_id,
        "intervening_npc": "chef",
        "target_npcs": ["morthos"],
        "priority": 20,
        "messages": InterventionMessages(intervention="Chef bangs a pan!", suppressed=["flinches."]),
    }
    values.update(overrides)
    return InterventionRule(**values)


def test_highest_priority_rule_fires_first(clock) -> None:
    """Albie outranks Ayla in a crowded library."""

    engine = InterventionEngine(clock=clock)
    result = engine.evaluate(_tense_room())
    assert result.occurred is True
    assert result.rule_id == "albie_peacekeeper"
    assert result.intervening_npc == "albie"
    assert result.suppressed_npcs == ["mr wendell", "morthos"]
    assert result.messages == [
        "Albie steps in: 'Let's all remain civil, shall we?'",
        "Mr Wendell nods and steps back reluctantly.",
        "Morthos grumbles but complies with Albie's request.",
        "The tension in the room dissipates under Albie's authority.",
    ]
    assert result.effect_duration == timedelta(seconds=30)
    assert result.timestamp == clock.now


def test_cooldown_hands_over_to_next_rule(clock) -> None:
    engine = InterventionEngine(clock=clock)
    engine.evaluate(_tense_room())
    clock.advance(seconds=5)
    assert engine.evaluate(_tense_room()).rule_id == "ayla_scholar_mediation"
    clock.advance(seconds=30)
    assert engine.evaluate(_tense_room()).rule_id == "albie_peacekeeper"


def test_lifetime_cap_stops_a_rule(clock) -> None:
    # 1 Fire Albie three times, each after the cooldown expires.                # steps
    # 2 The fourth evaluation skips Albie for good.                             # steps
    engine = InterventionEngine(clock=clock)
    for _ in range(3):
        assert engine.evaluate(_tense_room()).rule_id == "albie_peacekeeper"
        clock.advance(seconds=31)
    assert engine.evaluate(_tense_room()).rule_id != "albie_peacekeeper"
    assert engine.history()["albie_peacekeeper"].count == 3
    reasons = {entry.rule_id: entry.reason for entry in engine.potential_interventions(_tense_room())}
    assert reasons["albie_peacekeeper"] == "Lifetime limit reached"


def test_hourly_cap_resets_after_window(clock) -> None:
    engine = InterventionEngine(clock=clock, rules=[_simple_rule(max_per_hour=2)])
    context = ContextSnapshot(npcs_present=["chef", "morthos"])
    assert engine.evaluate(context).occurred
    assert engine.evaluate(context).occurred
    assert not engine.evaluate(context).occurred
    clock.advance(minutes=61)
    assert engine.evaluate(context).occurred


def test_blocked_flags_veto_a_rule(clock) -> None:
    engine = InterventionEngine(clock=clock)
    context = ContextSnapshot(
        room_id="kitchen",
        npcs_present=["polly", "dominic", "morthos"],
        flags={"dominic_threatened": True, "polly_defeated": True},
    )
    assert not engine.evaluate(context).occurred
    allowed = ContextSnapshot(room_id="kitchen", npcs_present=["polly", "dominic", "morthos"], flags={"dominic_threatened": True})
    result = engine.evaluate(allowed)
    assert result.rule_id == "polly_dominic_protection"
    assert result.suppressed_npcs == ["morthos"]


def test_raising_predicate_is_skipped(clock) -> None:
    def explode(context: ContextSnapshot) -> bool:
        raise RuntimeError("boom")

    engine = InterventionEngine(clock=clock, rules=[_simple_rule(condition=explode)])
    result = engine.evaluate(ContextSnapshot(npcs_present=["chef", "morthos"]))
    assert result.occurred is False
    assert result.reason == "no rule fired"


def test_no_targets_or_empty_room_never_fires(clock) -> None:
    engine = InterventionEngine(clock=clock)
    assert engine.evaluate(ContextSnapshot()).reason == "no npcs present"
    lonely = ContextSnapshot(room_id="library", npcs_present=["albie", "ayla"], flags={"tension_rising": True})
    assert not engine.evaluate(lonely).occurred


def test_rule_management(clock) -> None:
    """Malformed rules are rejected; ids replace in place; removal clears history."""

    engine = InterventionEngine(clock=clock, rules=[])
    assert engine.add_rule({"id": "x", "intervening_npc": "chef"}) is False
    assert engine.add_rule(_simple_rule(rule_id="")) is False
    assert engine.add_rule(_simple_rule(target_npcs=[])) is False
    assert engine.add_rule(
        {
            "id": "chef_shout",
            "intervening_npc": "chef",
            "target_npcs": ["morthos"],
            "messages": {"intervention": "Quiet!", "suppressed": ["hushes."]},
        }
    )
    assert engine.add_rule(_simple_rule(priority=3)) is True
    assert [rule.priority for rule in engine.rules()] == [3]

    engine.evaluate(ContextSnapshot(npcs_present=["chef", "morthos"]))
    assert "chef_shout" in engine.history()
    assert engine.remove_rule("chef_shout") is True
    assert engine.history() == {}
    assert engine.recent_patterns() == []
    assert engine.remove_rule("chef_shout") is False
    assert engine.remove_rule("") is False


def test_message_sink_receives_every_line(clock) -> None:
    heard = []
    engine = InterventionEngine(clock=clock, message_sink=lambda message, kind: heard.append(kind))
    engine.evaluate(_tense_room())
    assert heard == ["intervention", "suppression", "suppression", "intervention_success"]


def test_broken_sink_does_not_stop_evaluation(clock) -> None:
    def sink(message: str, kind: str) -> None:
        raise ValueError("display gone")

    engine = InterventionEngine(clock=clock, message_sink=sink)
    assert engine.evaluate(_tense_room()).occurred is True


def test_diagnostics_and_stats(clock) -> None:
    engine = InterventionEngine(clock=clock)
    context = _tense_room()
    assert engine.can_intervene("albie", context)
    assert not engine.can_intervene("polly", context)

    report = {entry.rule_id: entry for entry in engine.potential_interventions(context)}
    assert report["albie_peacekeeper"].can_trigger
    assert report["albie_peacekeeper"].suppressed_count == 2
    assert report["polly_dominic_protection"].reason == "NPC not present"
    assert report["player_reputation_intervention"].reason == "NPC not present"

    engine.evaluate(context)
    clock.advance(seconds=10)
    engine.evaluate(context)
    stats = engine.stats()
    assert stats["total_rules"] == 8
    assert stats["recent_interventions"] == 2
    assert stats["average_interval"] == timedelta(seconds=10)
    assert [record.context for record in engine.recent_patterns()] == ["latticeLibrary_4npcs"] * 2

    engine.reset()
    assert engine.stats()["recent_interventions"] == 0
    assert engine.stats()["total_rules"] == 8


def test_diagnostics_leave_history_untouched(clock) -> None:
    """Asking what could fire never writes bookkeeping or rolls the hourly window."""

    engine = InterventionEngine(clock=clock)
    engine.can_intervene("albie", _tense_room())
    engine.potential_interventions(_tense_room())
    assert engine.history() == {}

    engine.evaluate(_tense_room())
    before = engine.history()
    clock.advance(minutes=61)
    assert engine.can_intervene("albie", _tense_room())
    engine.potential_interventions(_tense_room())
    assert engine.history() == before
    assert engine.history()["albie_peacekeeper"].hourly_count == 1

def test_reputation_uses_best_standing() -> None:
    player = PlayerState(npc_relationships={"ayla": 4}, reputation={"albie": 16})
    assert player_reputation(ContextSnapshot(player=player)) == 16
    assert player_reputation(ContextSnapshot()) == 0.0
