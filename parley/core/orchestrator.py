########## Conversation Orchestrator ##########
# One entry point per turn and per room tick; owns every piece of engine state.

from __future__ import annotations

import json
import random
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import config, db
from .context import build_context
from .intent import IntentClassifier
from .intervention import InterventionEngine, MessageSink
from .llm import BaseLLMClient, LLMClient
from .logs import log_run_event
from .memory import MemoryStore
from .personas import PersonaKind, persona_kind, resolve_persona
from .proactive import ProactiveScheduler
from .synthesis import ResponseSynthesizer
from .types import (
    ContextSnapshot,
    IntentResult,
    MoodLabel,
    NPCMemoryState,
    RoomTickResult,
    Speaker,
    TurnAnnotation,
    TurnResponse,
    normalize_npc_id,
    utc_now,
)

Clock = Callable[[], datetime]

OPENING_LINE = "Hello"
FALLBACK_REPLY = "Hello there!"
FRIENDLY_THRESHOLD = 0.5

# intent -> (mood to drift toward, pressure)
MOOD_NUDGES = {
    "insult": (MoodLabel.IRRITATED, 0.3),
    "time_pressure": (MoodLabel.ANXIOUS, 0.25),
}


class ConversationOrchestrator:
    """Sequences context, intent, synthesis, memory, and prompts for each turn.

    Every mutating entry point takes the same lock, so a threaded host (the
    FastAPI server runs sync endpoints in a pool) still sees one writer.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
        persist_events: bool = False,
        polish: Optional[bool] = None,
        llm_client: Optional[BaseLLMClient] = None,
        message_sink: Optional[MessageSink] = None,
    ) -> None:
        # 1 Share one clock and one rng across every component.                 # steps
        self.clock = clock
        self.rng = rng or random.Random(config.RANDOM_SEED)
        self.persist_events = persist_events
        self.polish = config.LLM_POLISH_ENABLED if polish is None else polish
        self.llm_client = llm_client
        self.memory = MemoryStore(clock=clock, rng=self.rng)
        self.classifier = IntentClassifier()
        self.synthesizer = ResponseSynthesizer(rng=self.rng)
        self.interventions = InterventionEngine(clock=clock, message_sink=message_sink)
        self.prompts = ProactiveScheduler(clock=clock)
        self._lock = threading.RLock()

    ########## Turns ##########

    def handle_turn(self, npc_id: str, message: Any, game_state: Any = None) -> TurnResponse:
        """Run one full conversational turn with an NPC."""

        with self._lock:
            now = self.clock()
            try:
                return self._handle_turn(npc_id, message, game_state, now)
            except Exception as error:  # the player always gets a line back
                log_run_event(f"orchestrator: turn with {npc_id} failed ({error}), using fallback")
                return TurnResponse(npc_id=str(npc_id), message=FALLBACK_REPLY)

    def _handle_turn(self, npc_id: str, message: Any, game_state: Any, now: datetime) -> TurnResponse:
        # 1 Clear this NPC's prompt, then snapshot context and classify.         # steps
        # 2 Synthesize (and optionally polish) before touching memory.           # steps
        # 3 Record both turns, infer preferences, and re-check prompts.          # steps
        state = self.memory.get(npc_id)
        npc = state.npc_id
        utterance = message if isinstance(message, str) else ("" if message is None else str(message))
        self.prompts.clear_prompt(npc)

        context = build_context(game_state, now)
        intent = self.classifier.classify(utterance, context)
        line = self.synthesizer.compose(npc, utterance, intent, context, self.memory.snapshot(npc))
        reply, polished = self._polish(npc, line.message, context)

        emotional_state = "friendly" if state.relationship_level > FRIENDLY_THRESHOLD else "neutral"
        self.memory.append_turn(
            npc,
            Speaker.PLAYER,
            utterance,
            TurnAnnotation(intent=intent.intent, entities=list(intent.entities), emotional_state=emotional_state),
            room_id=context.room_id,
        )
        self.memory.append_turn(npc, Speaker.NPC, reply, room_id=context.room_id)
        self.memory.update_preference(npc, "asks_for_help", intent.intent == "help")
        self.memory.update_preference(npc, "likes_hints", intent.intent == "puzzle_hint")
        nudge = MOOD_NUDGES.get(intent.intent)
        if nudge is not None:
            self.memory.nudge_mood(npc, nudge[1], nudge[0])

        # the NPC being spoken to already has the player's attention
        new_prompts = self.prompts.check_prompts(context, self._memories_for(context), now, exclude=(npc,))
        follow_ups = follow_up_prompts(npc, intent, context, self.memory.get(npc))
        if self.persist_events:
            self._record(
                npc,
                "player",
                "turn",
                {"player": utterance, "reply": reply, "intent": intent.intent, "polished": polished},
                now,
            )
        return TurnResponse(
            npc_id=npc,
            message=reply,
            intent=intent,
            features=line.features,
            follow_up_prompts=follow_ups,
            proactive_update=new_prompts,
            polished=polished,
        )

    def open_conversation(self, npc_id: str, game_state: Any = None, player_input: Optional[str] = None) -> TurnResponse:
        """Player clicked an NPC's talk button; greet when nothing was typed."""

        return self.handle_turn(npc_id, player_input or OPENING_LINE, game_state)

    def _polish(self, npc_id: str, draft: str, context: ContextSnapshot) -> Tuple[str, bool]:
        if not self.polish:
            return draft, False
        try:
            if self.llm_client is None:
                self.llm_client = LLMClient()
            polished = self.llm_client.polish_line(npc_id, resolve_persona(npc_id), draft, context)
        except Exception as error:
            log_run_event(f"orchestrator: polish failed for {npc_id} ({error}), keeping template")
            return draft, False
        if not isinstance(polished, str) or not polished.strip():
            return draft, False
        return polished.strip(), polished.strip() != draft

    def _memories_for(self, context: ContextSnapshot) -> Dict[str, NPCMemoryState]:
        npc_ids = [normalize_npc_id(npc_id) for npc_id in context.npcs_present]
        known = set(self.memory.known_npcs())
        return {
            npc_id: self.memory.snapshot(npc_id) if npc_id in known else NPCMemoryState(npc_id=npc_id)
            for npc_id in npc_ids
        }

    ########## Room Ticks ##########

    def room_tick(self, game_state: Any = None) -> RoomTickResult:
        """Re-rank prompts, run interventions, and raise new prompts."""

        with self._lock:
            # 1 Read "now" once and share it across all three passes.             # steps
            now = self.clock()
            context = build_context(game_state, now)
            self.prompts.update_priorities(context, now)
            intervention = self.interventions.evaluate(context, now)
            new_prompts = self.prompts.check_prompts(context, self._memories_for(context), now)
            if intervention.occurred and self.persist_events:
                self._record(
                    intervention.intervening_npc or config.UNKNOWN,
                    ",".join(intervention.suppressed_npcs) or None,
                    "intervention",
                    {"rule_id": intervention.rule_id, "messages": intervention.messages, "room": context.room_id},
                    now,
                )
            return RoomTickResult(intervention=intervention, prompts=new_prompts)

    def dismiss_prompt(self, npc_id: str, room_id: str) -> datetime:
        """Player waved a prompt away; mute that NPC in this room for a while."""

        with self._lock:
            now = self.clock()
            self.prompts.clear_prompt(npc_id)
            return self.prompts.suppress(npc_id, room_id, now)

    ########## Save Games ##########

    def save_game(self, slot: str = config.DEFAULT_SAVE_SLOT) -> List[str]:
        """Write every known NPC's save blob into a slot."""

        with self._lock:
            now = self.clock()
            saved: List[str] = []
            for npc_id in self.memory.known_npcs():
                db.save_memory_blob(slot, npc_id, self.memory.serialize(npc_id), now)
                saved.append(npc_id)
            log_run_event(f"orchestrator: saved {len(saved)} npc(s) to slot '{slot}'")
            return saved

    def load_game(self, slot: str = config.DEFAULT_SAVE_SLOT) -> List[str]:
        """Replace in-memory NPC state with a slot's blobs.

        A corrupt blob resets only its own NPC; the rest still load.
        """

        with self._lock:
            blobs = db.load_memory_blobs(slot)
            self.memory.clear_all()
            self.prompts.clear_all()
            for npc_id, blob in blobs.items():
                self.memory.deserialize(npc_id, blob)
            log_run_event(f"orchestrator: loaded {len(blobs)} npc(s) from slot '{slot}'")
            return list(blobs.keys())

    def _record(self, npc_id: str, target_id: Optional[str], event_type: str, data: Dict[str, Any], now: datetime) -> None:
        try:
            db.log_event(npc_id, target_id, event_type, json.dumps(data, ensure_ascii=False), now)
        except Exception as error:  # audit trail is best effort
            log_run_event(f"orchestrator: event log write failed ({error})")

    ########## Diagnostics ##########

    def conversation_stats(self, npc_id: str) -> Dict[str, Any]:
        state = self.memory.snapshot(npc_id)
        return {
            "total_interactions": state.total_interactions,
            "relationship_level": state.relationship_level,
            "recent_turn_count": len(state.conversation_buffer[-10:]),
            "player_preferences": state.player_preferences.model_dump(),
            "has_active_prompt": self.prompts.has_active_prompt(state.npc_id),
        }

    def debug_state(self, npc_id: str) -> Dict[str, Any]:
        """Persona, memory counts, and prompt status for a debug panel."""

        persona = resolve_persona(npc_id)
        state = self.memory.snapshot(npc_id)
        prompt = self.prompts.prompt_for(state.npc_id)
        return {
            "npc_id": state.npc_id,
            "persona": {
                "id": persona.id,
                "role": persona.role,
                "tone": persona.tone.model_dump(),
                "speaking_style": persona.speaking_style.model_dump(mode="json"),
            },
            "memory": {
                "conversation_buffer": len(state.conversation_buffer),
                "episodic_memories": len(state.episodic_memories),
                "relationship_level": state.relationship_level,
                "total_interactions": state.total_interactions,
                "mood": state.mood.model_dump(mode="json"),
            },
            "summary": self.memory.memory_summary(state.npc_id).model_dump(mode="json"),
            "stats": self.conversation_stats(state.npc_id),
            "active_prompt": prompt.model_dump(mode="json") if prompt else None,
        }

    def reset(self) -> None:
        with self._lock:
            self.memory.clear_all()
            self.interventions.reset()
            self.prompts.reset()


def follow_up_prompts(
    npc_id: str,
    intent: IntentResult,
    context: ContextSnapshot,
    memory: NPCMemoryState,
) -> List[str]:
    """Suggested player replies, at most two."""

    prompts: List[str] = []
    if intent.intent == "puzzle_hint" and intent.confidence < 0.8:
        prompts.append("Can you be more specific about what you're stuck on?")
    if intent.intent == "greeting" and memory.total_interactions == 1:
        prompts.extend(["Is this your first time here?", "What brings you to this place?"])
    if context.inventory and intent.intent == "help":
        prompts.append("Want to discuss what you're carrying?")
    if persona_kind(npc_id) is PersonaKind.AYLA and context.timer(config.PRIMARY_COUNTDOWN_TIMER) is not None:
        prompts.append("Should we focus on the time pressure?")
    return prompts[: config.MAX_FOLLOW_UP_PROMPTS]
