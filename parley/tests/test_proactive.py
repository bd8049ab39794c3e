########## Proactive Scheduler Tests ##########
# Evaluators per persona, pacing windows, suppression, priority drift.

from __future__ import annotations

from datetime import timedelta

from parley.core import config
from parley.core.proactive import ProactiveScheduler
from parley.core.types import (
    ContextSnapshot,
    NPCMemoryState,
    ProactivePrompt,
    PromptAccessibility,
    PromptPriority,
    PromptType,
    SessionTelemetry,
    TimerState,
)


def _library(**overrides) -> ContextSnapshot:
    values = {
        "room_id": "latticeLibrary",
        "npcs_present": ["ayla", "mr wendell", "morthos", "albie"],
        "inventory": ["coin", "napkin"],
        "recent_events": ["entered_library", "book_examined"],
        "session": SessionTelemetry(visit_count=2, idle_time=timedelta(seconds=4)),
    }
    values.update(overrides)
    return ContextSnapshot(**values)


def _countdown(seconds: float) -> dict:
    return {config.PRIMARY_COUNTDOWN_TIMER: TimerState(remaining=timedelta(seconds=seconds))}


def _prompt(npc_id: str, priority: PromptPriority) -> ProactivePrompt:
    return ProactivePrompt(
        npc_id=npc_id,
        message="psst",
        priority=priority,
        accessibility=PromptAccessibility(screen_reader_text=f"{npc_id} wants a word"),
    )


def test_library_raises_coin_and_book_prompts(clock) -> None:
    """Ayla notices the coin, Wendell the book; others have no evaluator."""

    scheduler = ProactiveScheduler(clock=clock)
    prompts = scheduler.check_prompts(_library())
    assert [(prompt.npc_id, prompt.priority) for prompt in prompts] == [
        ("ayla", PromptPriority.MEDIUM),
        ("mr wendell", PromptPriority.LOW),
    ]
    assert prompts[0].message == "About that coin..."
    assert prompts[0].triggers == ["puzzle_opportunity"]
    assert prompts[1].message == "Curious choice of reading..."
    assert scheduler.has_active_prompt("ayla")
    assert not scheduler.has_active_prompt("morthos")


def test_stuck_and_urgent_branches_for_ayla(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    stuck = _library(
        npcs_present=["ayla"],
        session=SessionTelemetry(visit_count=6, idle_time=timedelta(seconds=31)),
    )
    assert scheduler.check_prompts(stuck)[0].triggers == ["stuck_behavior"]

    urgent = ProactiveScheduler(clock=clock).check_prompts(_library(npcs_present=["ayla"], timers=_countdown(50)))
    assert urgent[0].priority is PromptPriority.URGENT
    assert urgent[0].prompt_type is PromptType.URGENT_FLASH


def test_polly_only_fires_under_thirty_seconds(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    room = ContextSnapshot(room_id="controlNexus", npcs_present=["polly"], timers=_countdown(40))
    assert scheduler.check_prompts(room) == []
    room = ContextSnapshot(room_id="controlNexus", npcs_present=["polly"], timers=_countdown(20))
    prompts = scheduler.check_prompts(room)
    assert prompts[0].message == "CRITICAL: System override imminent"
    assert prompts[0].accessibility.keyboard_hint


def test_wendell_goes_quiet_after_a_few_talks(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    memory = {"mr wendell": NPCMemoryState(npc_id="mr wendell", total_interactions=3)}
    prompts = scheduler.check_prompts(_library(npcs_present=["mr wendell"]), memory)
    assert prompts == []


def test_pacing_window_uses_the_longer_of_gap_and_cooldown(clock) -> None:
    # 1 Ayla's coin prompt cools for 20s and Wendell's book prompt for 25s.     # steps
    scheduler = ProactiveScheduler(clock=clock)
    scheduler.check_prompts(_library())
    clock.advance(seconds=16)
    assert scheduler.check_prompts(_library()) == []
    clock.advance(seconds=5)
    assert [prompt.npc_id for prompt in scheduler.check_prompts(_library())] == ["ayla"]
    clock.advance(seconds=5)
    assert [prompt.npc_id for prompt in scheduler.check_prompts(_library())] == ["mr wendell"]


def test_dismissal_suppresses_per_room(clock) -> None:
    """A dismissed NPC stays quiet in that room for two minutes."""

    scheduler = ProactiveScheduler(clock=clock)
    until = scheduler.suppress("ayla", "latticeLibrary")
    assert until == clock.now + timedelta(minutes=2)
    clock.advance(seconds=30)
    assert [prompt.npc_id for prompt in scheduler.check_prompts(_library())] == ["mr wendell"]
    assert not scheduler.is_suppressed("ayla", "londonCafe")

    clock.advance(seconds=91)
    assert not scheduler.is_suppressed("ayla", "latticeLibrary")
    assert [prompt.npc_id for prompt in scheduler.check_prompts(_library())] == ["ayla", "mr wendell"]


def test_priorities_promote_under_pressure_and_decay_when_stale(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    scheduler.activate(_prompt("chef", PromptPriority.LOW))
    scheduler.activate(_prompt("ayla", PromptPriority.MEDIUM))
    promoted = scheduler.update_priorities(ContextSnapshot(timers=_countdown(40)))
    assert [(prompt.npc_id, prompt.priority) for prompt in promoted] == [
        ("ayla", PromptPriority.HIGH),
        ("chef", PromptPriority.MEDIUM),
    ]

    clock.advance(seconds=46)
    decayed = scheduler.update_priorities(ContextSnapshot())
    assert scheduler.prompt_for("ayla").priority is PromptPriority.MEDIUM
    assert all(prompt.priority is not PromptPriority.HIGH for prompt in decayed)


def test_returned_prompts_are_copies(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    scheduler.activate(_prompt("chef", PromptPriority.LOW))
    scheduler.active_prompts()[0].priority = PromptPriority.URGENT
    assert scheduler.prompt_for("chef").priority is PromptPriority.LOW


def test_clear_and_reset(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    scheduler.check_prompts(_library())
    assert scheduler.clear_prompt("ayla").npc_id == "ayla"
    assert scheduler.clear_prompt("ayla") is None
    scheduler.suppress("mr wendell", "latticeLibrary")
    scheduler.reset()
    assert scheduler.active_prompts() == []
    assert not scheduler.is_suppressed("mr wendell", "latticeLibrary")
    assert len(scheduler.check_prompts(_library())) == 2


def test_empty_room_raises_nothing(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    assert scheduler.check_prompts(ContextSnapshot()) == []
    assert scheduler.update_priorities(ContextSnapshot()) == []


def test_excluded_npc_is_skipped_and_not_activated(clock) -> None:
    scheduler = ProactiveScheduler(clock=clock)
    prompts = scheduler.check_prompts(_library(), exclude=["Ayla"])
    assert [prompt.npc_id for prompt in prompts] == ["mr wendell"]
    assert not scheduler.has_active_prompt("ayla")


def test_prompt_keys_fold_case(clock) -> None:
    """Room rosters may capitalise names; every lookup lands on one key."""

    scheduler = ProactiveScheduler(clock=clock)
    prompts = scheduler.check_prompts(_library(npcs_present=["Ayla", "ayla ", "Mr Wendell"]))
    assert [prompt.npc_id for prompt in prompts] == ["ayla", "mr wendell"]
    assert scheduler.has_active_prompt("AYLA")
    assert scheduler.clear_prompt("ayla").npc_id == "ayla"
    assert not scheduler.has_active_prompt("Ayla")

    scheduler.suppress("Mr Wendell", "latticeLibrary")
    assert scheduler.is_suppressed("mr wendell", "latticeLibrary")
