########## Proactive Prompts ##########
# Per-NPC attention cues raised without the player asking.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from . import config
from .logs import log_run_event
from .personas import PersonaKind, persona_kind
from .types import (
    ContextSnapshot,
    NPCMemoryState,
    ProactivePrompt,
    PromptAccessibility,
    PromptPriority,
    PromptType,
    normalize_npc_id,
    utc_now,
)

Clock = Callable[[], datetime]
Evaluator = Callable[[str, ContextSnapshot, NPCMemoryState, datetime], Optional[ProactivePrompt]]

PROMOTIONS = {
    PromptPriority.MEDIUM: PromptPriority.HIGH,
    PromptPriority.LOW: PromptPriority.MEDIUM,
}


########## Evaluators ##########


def _ayla_prompt(npc_id: str, context: ContextSnapshot, memory: NPCMemoryState, now: datetime) -> Optional[ProactivePrompt]:
    session = context.session
    if session.visit_count > config.STUCK_REVISIT_COUNT and session.idle_time > config.STUCK_IDLE_TIME:
        return ProactivePrompt(
            npc_id=npc_id,
            prompt_type=PromptType.AMBIENT_FLASH,
            message="I might have some ideas...",
            priority=PromptPriority.MEDIUM,
            triggers=["stuck_behavior"],
            cooldown=timedelta(seconds=30),
            accessibility=PromptAccessibility(
                screen_reader_text="Ayla seems to have noticed you're having trouble and might have suggestions",
                keyboard_hint="Press Tab to focus on Ayla's talk button",
            ),
            created_at=now,
        )
    if context.countdown_below(config.TIMER_URGENT):
        return ProactivePrompt(
            npc_id=npc_id,
            prompt_type=PromptType.URGENT_FLASH,
            message="Time's running out!",
            priority=PromptPriority.URGENT,
            triggers=["time_pressure"],
            cooldown=timedelta(seconds=10),
            accessibility=PromptAccessibility(
                screen_reader_text="Ayla is urgently trying to get your attention - time is running out!",
                keyboard_hint="Press Tab to focus on Ayla's talk button immediately",
            ),
            created_at=now,
        )
    if "lore_discovered" in context.recent_events and memory.relationship_level > 0.5:
        return ProactivePrompt(
            npc_id=npc_id,
            prompt_type=PromptType.AMBIENT_FLASH,
            message="That reminds me of something...",
            priority=PromptPriority.LOW,
            triggers=["lore_discovery"],
            cooldown=timedelta(seconds=45),
            accessibility=PromptAccessibility(
                screen_reader_text="Ayla seems to have connected what you just learned to something else",
            ),
            created_at=now,
        )
    has_coin = "coin" in context.inventory or "schrodingerCoin" in context.inventory
    if has_coin and "library" in context.room_id.lower():
        return ProactivePrompt(
            npc_id=npc_id,
            prompt_type=PromptType.AMBIENT_FLASH,
            message="About that coin...",
            priority=PromptPriority.MEDIUM,
            triggers=["puzzle_opportunity"],
            cooldown=timedelta(seconds=20),
            accessibility=PromptAccessibility(
                screen_reader_text="Ayla has noticed you have the coin and seems to want to discuss it",
            ),
            created_at=now,
        )
    return None


def _polly_prompt(npc_id: str, context: ContextSnapshot, memory: NPCMemoryState, now: datetime) -> Optional[ProactivePrompt]:
    takeover = context.timer(config.PRIMARY_COUNTDOWN_TIMER)
    if takeover is None or takeover.remaining >= config.TIMER_CRITICAL:
        return None
    return ProactivePrompt(
        npc_id=npc_id,
        prompt_type=PromptType.URGENT_FLASH,
        message="CRITICAL: System override imminent",
        priority=PromptPriority.URGENT,
        triggers=["system_takeover"],
        cooldown=timedelta(seconds=5),
        accessibility=PromptAccessibility(
            screen_reader_text="ALERT: Polly's system takeover is imminent - less than 30 seconds remaining",
            keyboard_hint="Press Tab to focus on Polly immediately - critical situation",
        ),
        created_at=now,
    )


def _wendell_prompt(npc_id: str, context: ContextSnapshot, memory: NPCMemoryState, now: datetime) -> Optional[ProactivePrompt]:
    if "library" not in context.room_id.lower():
        return None
    if "book_examined" not in context.recent_events or memory.total_interactions >= 3:
        return None
    return ProactivePrompt(
        npc_id=npc_id,
        prompt_type=PromptType.AMBIENT_FLASH,
        message="Curious choice of reading...",
        priority=PromptPriority.LOW,
        triggers=["book_examination"],
        cooldown=timedelta(seconds=25),
        accessibility=PromptAccessibility(
            screen_reader_text="Wendell has noticed your choice of book and seems to have thoughts about it",
        ),
        created_at=now,
    )


def _chef_prompt(npc_id: str, context: ContextSnapshot, memory: NPCMemoryState, now: datetime) -> Optional[ProactivePrompt]:
    if "kitchen" not in context.room_id.lower() or "cooking_failed" not in context.recent_events:
        return None
    return ProactivePrompt(
        npc_id=npc_id,
        prompt_type=PromptType.AMBIENT_FLASH,
        message="Perhaps a different approach?",
        priority=PromptPriority.MEDIUM,
        triggers=["cooking_failure"],
        cooldown=timedelta(seconds=20),
        accessibility=PromptAccessibility(
            screen_reader_text="Chef has noticed your cooking attempt failed and might have advice",
        ),
        created_at=now,
    )


def _dominic_prompt(npc_id: str, context: ContextSnapshot, memory: NPCMemoryState, now: datetime) -> Optional[ProactivePrompt]:
    if "glitch_detected" not in context.recent_events:
        return None
    return ProactivePrompt(
        npc_id=npc_id,
        prompt_type=PromptType.AMBIENT_FLASH,
        message="System irregularities noted. Bloop.",
        priority=PromptPriority.LOW,
        triggers=["system_anomaly"],
        cooldown=timedelta(seconds=30),
        accessibility=PromptAccessibility(
            screen_reader_text="Dominic has detected system irregularities and might have technical insights",
        ),
        created_at=now,
    )


EVALUATORS: Dict[PersonaKind, Evaluator] = {
    PersonaKind.AYLA: _ayla_prompt,
    PersonaKind.POLLY: _polly_prompt,
    PersonaKind.WENDELL: _wendell_prompt,
    PersonaKind.CHEF: _chef_prompt,
    PersonaKind.DOMINIC: _dominic_prompt,
}


########## Scheduler ##########


class ProactiveScheduler:
    """Tracks active prompts, per-NPC pacing, and dismissal suppression."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self._active: Dict[str, ProactivePrompt] = {}
        self._last_prompt_at: Dict[str, datetime] = {}
        self._last_cooldown: Dict[str, timedelta] = {}
        self._suppressed_until: Dict[str, datetime] = {}

    def check_prompts(
        self,
        context: ContextSnapshot,
        memory_by_npc: Optional[Mapping[str, NPCMemoryState]] = None,
        now: Optional[datetime] = None,
        exclude: Iterable[str] = (),
    ) -> List[ProactivePrompt]:
        """Evaluate every present NPC and return new prompts, most urgent first.

        NPCs named in ``exclude`` (the one the player is already talking to)
        are skipped entirely.
        """

        stamp = now or self.clock()
        try:
            skipped = {normalize_npc_id(npc_id) for npc_id in exclude}
            return self._check(context, memory_by_npc or {}, stamp, skipped)
        except Exception as error:  # prompts are cosmetic, never fatal
            log_run_event(f"proactive: check failed ({error})")
            return []

    def _check(
        self,
        context: ContextSnapshot,
        memory_by_npc: Mapping[str, NPCMemoryState],
        now: datetime,
        skipped: Iterable[str] = (),
    ) -> List[ProactivePrompt]:
        # 1 Skip NPCs inside their pacing window or under dismissal suppression. # steps
        # 2 Run the NPC's evaluator and activate whatever it returns.            # steps
        self._expire_suppressions(now)
        emitted: List[ProactivePrompt] = []
        seen = set(skipped)
        for raw_id in context.npcs_present:
            npc_id = normalize_npc_id(raw_id)
            if npc_id in seen:
                continue
            seen.add(npc_id)
            if self._cooling_down(npc_id, now) or self.is_suppressed(npc_id, context.room_id, now):
                continue
            evaluator = EVALUATORS.get(persona_kind(npc_id))
            if evaluator is None:
                continue
            memory = memory_by_npc.get(npc_id) or NPCMemoryState(npc_id=npc_id)
            try:
                prompt = evaluator(npc_id, context, memory, now)
            except Exception as error:
                log_run_event(f"proactive: evaluator for {npc_id} raised {type(error).__name__}: {error}")
                continue
            if prompt is None:
                continue
            self.activate(prompt, now)
            emitted.append(prompt.model_copy())
            log_run_event(f"proactive: {npc_id} raised {prompt.priority.value} prompt '{prompt.message}'")
        emitted.sort(key=lambda prompt: prompt.priority.weight, reverse=True)
        return emitted

    def _cooling_down(self, npc_id: str, now: datetime) -> bool:
        last = self._last_prompt_at.get(npc_id)
        if last is None:
            return False
        window = max(config.PROMPT_MIN_GAP, self._last_cooldown.get(npc_id, timedelta(0)))
        return now - last < window

    ########## Active Prompts ##########

    def activate(self, prompt: ProactivePrompt, now: Optional[datetime] = None) -> None:
        """Store a prompt as the NPC's active cue, superseding any older one."""

        stamp = now or self.clock()
        key = normalize_npc_id(prompt.npc_id)
        stored = prompt.model_copy(update={"npc_id": key, "created_at": stamp})
        self._active[key] = stored
        self._last_prompt_at[key] = stamp
        self._last_cooldown[key] = prompt.cooldown

    def clear_prompt(self, npc_id: str) -> Optional[ProactivePrompt]:
        return self._active.pop(normalize_npc_id(npc_id), None)

    def clear_all(self) -> None:
        self._active.clear()

    def active_prompts(self) -> List[ProactivePrompt]:
        prompts = [prompt.model_copy() for prompt in self._active.values()]
        prompts.sort(key=lambda prompt: prompt.priority.weight, reverse=True)
        return prompts

    def has_active_prompt(self, npc_id: str) -> bool:
        return normalize_npc_id(npc_id) in self._active

    def prompt_for(self, npc_id: str) -> Optional[ProactivePrompt]:
        prompt = self._active.get(normalize_npc_id(npc_id))
        return prompt.model_copy() if prompt else None

    def update_priorities(self, context: ContextSnapshot, now: Optional[datetime] = None) -> List[ProactivePrompt]:
        """Promote prompts under time pressure and demote stale high ones."""

        stamp = now or self.clock()
        pressured = context.countdown_below(config.TIMER_URGENT)
        for prompt in self._active.values():
            if pressured and prompt.priority in PROMOTIONS:
                prompt.priority = PROMOTIONS[prompt.priority]
            age = stamp - prompt.created_at
            if age > config.PROMPT_STALE_AGE and prompt.priority is PromptPriority.HIGH:
                prompt.priority = PromptPriority.MEDIUM
        return self.active_prompts()

    ########## Suppression ##########

    def suppress(self, npc_id: str, room_id: str, now: Optional[datetime] = None) -> datetime:
        """Mute an NPC in a room until the suppression window passes."""

        stamp = now or self.clock()
        until = stamp + config.PROMPT_SUPPRESSION_WINDOW
        self._suppressed_until[_suppression_key(npc_id, room_id)] = until
        return until

    def is_suppressed(self, npc_id: str, room_id: str, now: Optional[datetime] = None) -> bool:
        stamp = now or self.clock()
        until = self._suppressed_until.get(_suppression_key(npc_id, room_id))
        return until is not None and stamp < until

    def _expire_suppressions(self, now: datetime) -> None:
        expired = [key for key, until in self._suppressed_until.items() if now >= until]
        for key in expired:
            del self._suppressed_until[key]

    def reset(self) -> None:
        self._active.clear()
        self._last_prompt_at.clear()
        self._last_cooldown.clear()
        self._suppressed_until.clear()


def _suppression_key(npc_id: str, room_id: str) -> str:
    return f"{normalize_npc_id(npc_id)}_{room_id}"
