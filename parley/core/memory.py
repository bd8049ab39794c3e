########## NPC Memory ##########
# Per-NPC conversation buffers, episodic memories, facts, and save blobs.

from __future__ import annotations

import copy
import math
import random
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from . import config
from .logs import log_run_event
from .types import (
    ConversationTurn,
    EpisodicMemory,
    MemorySummary,
    MoodLabel,
    MoodState,
    NPCMemoryState,
    Speaker,
    TurnAnnotation,
    clamp,
    normalize_npc_id,
    utc_now,
)

Clock = Callable[[], datetime]

PREFERENCE_NAMES = ("likes_hints", "impatient", "explores_thoroughly", "asks_for_help")


class MemoryStore:
    """Keyed memory for every NPC the player has spoken with."""

    def __init__(
        self,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
        capacity: int = config.CONVERSATION_BUFFER_SIZE,
    ) -> None:
        # 1 Keep the clock and rng injectable so tests can freeze both.       # steps
        self.clock = clock
        self.rng = rng or random.Random(config.RANDOM_SEED)
        self.capacity = max(1, int(capacity))
        self._states: Dict[str, NPCMemoryState] = {}

    ########## Access ##########

    def get(self, npc_id: str) -> NPCMemoryState:
        """Return live memory for an NPC, creating defaults on first use."""

        key = normalize_npc_id(npc_id)
        state = self._states.get(key)
        if state is None:
            state = NPCMemoryState(npc_id=key, mood=MoodState(last_updated=self.clock()))
            self._states[key] = state
        return state

    def snapshot(self, npc_id: str) -> NPCMemoryState:
        """Detached deep copy for readers that must not mutate state."""

        return self.get(npc_id).model_copy(deep=True)

    def known_npcs(self) -> List[str]:
        return list(self._states.keys())

    def forget(self, npc_id: str) -> None:
        self._states.pop(normalize_npc_id(npc_id), None)

    def clear_all(self) -> None:
        self._states.clear()

    ########## Conversation ##########

    def append_turn(
        self,
        npc_id: str,
        speaker: Speaker | str,
        message: Any,
        annotations: Optional[TurnAnnotation | Dict[str, Any]] = None,
        room_id: Optional[str] = None,
    ) -> ConversationTurn:
        """Append one turn and trim the buffer back to capacity."""

        # 1 Coerce loose inputs into a typed turn.                               # steps
        # 2 Append, then drop the oldest turns past capacity.                    # steps
        # 3 Player turns count as interactions.                                  # steps
        state = self.get(npc_id)
        now = self.clock()
        speaker_value = _coerce_speaker(speaker)
        turn = ConversationTurn(
            id=f"{state.npc_id}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}",
            timestamp=now,
            speaker=speaker_value,
            message=_coerce_text(message),
            npc_id=state.npc_id if speaker_value is Speaker.NPC else None,
            room_id=room_id,
            context=_coerce_annotation(annotations),
        )
        state.conversation_buffer.append(turn)
        overflow = len(state.conversation_buffer) - self.capacity
        if overflow > 0:
            del state.conversation_buffer[:overflow]
        if speaker_value is Speaker.PLAYER:
            state.last_interaction = now
            state.total_interactions += 1
        return turn

    def recent_conversation(self, npc_id: str, turns: int = config.RECENT_CONVERSATION_TURNS) -> List[ConversationTurn]:
        if turns <= 0:
            return []
        return [turn.model_copy() for turn in self.get(npc_id).conversation_buffer[-turns:]]

    ########## Episodes ##########

    def add_episode(
        self,
        npc_id: str,
        event_type: str,
        description: str,
        participants: Optional[Iterable[str]] = None,
        location: str = "",
        significance: float = config.DEFAULT_EPISODE_SIGNIFICANCE,
        tags: Optional[Iterable[str]] = None,
    ) -> EpisodicMemory:
        """Record a notable event and prune expired low-significance ones."""

        state = self.get(npc_id)
        now = self.clock()
        people = ["player"]
        for participant in participants or []:
            if participant not in people:
                people.append(participant)
        episode = EpisodicMemory(
            id=f"{state.npc_id}-{event_type}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}",
            timestamp=now,
            event_type=str(event_type),
            description=_coerce_text(description),
            participants=people,
            location=location or "",
            significance=significance,
            tags=list(tags or []),
        )
        state.episodic_memories.append(episode)
        self._prune_episodes(state, now)
        return episode

    def _prune_episodes(self, state: NPCMemoryState, now: datetime) -> None:
        kept: List[EpisodicMemory] = []
        for episode in state.episodic_memories:
            is_important = episode.significance > config.EPISODE_KEEP_SIGNIFICANCE
            is_recent = (now - episode.timestamp) < config.EPISODIC_MEMORY_TTL
            if is_important or is_recent:
                kept.append(episode)
        state.episodic_memories = kept

    def find_relevant_memories(
        self,
        npc_id: str,
        tags: Optional[Iterable[str]] = None,
        event_types: Optional[Iterable[str]] = None,
        max_results: int = 5,
    ) -> List[EpisodicMemory]:
        """Episodes matching any tag and event type, most significant first."""

        wanted_tags = set(tags or [])
        wanted_types = set(event_types or [])
        matches: List[EpisodicMemory] = []
        for episode in self.get(npc_id).episodic_memories:
            tag_ok = not wanted_tags or bool(wanted_tags.intersection(episode.tags))
            type_ok = not wanted_types or episode.event_type in wanted_types
            if tag_ok and type_ok:
                matches.append(episode)
        matches.sort(key=lambda episode: (episode.significance, episode.timestamp), reverse=True)
        return [episode.model_copy() for episode in matches[: max(0, max_results)]]

    ########## Facts & Relationship ##########

    def set_fact(self, npc_id: str, key: str, value: Any) -> None:
        self.get(npc_id).semantic_memory[key] = value

    def get_fact(self, npc_id: str, key: str, default: Any = None) -> Any:
        return self.get(npc_id).semantic_memory.get(key, default)

    def adjust_relationship(self, npc_id: str, delta: float) -> float:
        """Shift relationship by delta, clamped to [-1, 1]."""

        state = self.get(npc_id)
        try:
            step = float(delta)
        except (TypeError, ValueError):
            step = math.nan
        if not math.isfinite(step):
            log_run_event(f"memory: ignored relationship delta {delta!r} for {state.npc_id}")
            return state.relationship_level
        state.relationship_level = clamp(
            state.relationship_level + step,
            config.RELATIONSHIP_MIN,
            config.RELATIONSHIP_MAX,
        )
        return state.relationship_level

    def update_preference(self, npc_id: str, name: str, value: bool) -> None:
        if name not in PREFERENCE_NAMES:
            log_run_event(f"memory: unknown preference '{name}' for {npc_id}")
            return
        setattr(self.get(npc_id).player_preferences, name, bool(value))

    ########## Mood ##########

    def set_mood(self, npc_id: str, label: MoodLabel | str, intensity: float) -> MoodState:
        state = self.get(npc_id)
        state.mood = MoodState(label=MoodLabel(label), intensity=intensity, last_updated=self.clock())
        return state.mood

    def nudge_mood(
        self,
        npc_id: str,
        intensity: float = 0.0,
        toward: Optional[MoodLabel | str] = None,
    ) -> MoodState:
        """Drift intensity, occasionally flipping the label under pressure."""

        mood = self.get(npc_id).mood
        if toward is not None:
            target = MoodLabel(toward)
            if target != mood.label and intensity > config.MOOD_SHIFT_PRESSURE:
                if self.rng.random() < config.MOOD_SHIFT_CHANCE:
                    mood.label = target
        mood.intensity = clamp(mood.intensity + intensity, 0.0, 1.0)
        mood.last_updated = self.clock()
        return mood

    ########## Summaries ##########

    def memory_summary(self, npc_id: str) -> MemorySummary:
        """Condense memory into topics, standing, and play style."""

        state = self.get(npc_id)
        topics: List[str] = []
        for turn in state.conversation_buffer[-4:]:
            if turn.context is None:
                continue
            for entity in turn.context.entities:
                if entity not in topics:
                    topics.append(entity)
        facts = {key: value for key, value in state.semantic_memory.items() if value is not None}
        return MemorySummary(
            recent_topics=topics[:3],
            relationship_status=relationship_status(state.relationship_level),
            important_facts=copy.deepcopy(facts),
            player_style=player_style(state),
            mood_label=state.mood.label,
            mood_intensity=state.mood.intensity,
        )

    def stats(self) -> Dict[str, Any]:
        """Totals across every NPC held in memory."""

        states = list(self._states.values())
        total = len(states)
        relationship_sum = sum(state.relationship_level for state in states)
        return {
            "total_npcs": total,
            "total_conversations": sum(len(state.conversation_buffer) for state in states),
            "total_episodic_memories": sum(len(state.episodic_memories) for state in states),
            "average_relationship": relationship_sum / total if total else 0.0,
        }

    ########## Save Blobs ##########

    def serialize(self, npc_id: str) -> Dict[str, Any]:
        """Emit the persisted save-game blob for one NPC."""

        # 1 Keep only recent turns, important episodes, and allow-listed facts. # steps
        state = self.get(npc_id)
        turns = state.conversation_buffer[-config.SERIALIZED_TURNS :]
        episodes = [
            episode
            for episode in state.episodic_memories
            if episode.significance > config.EPISODE_PERSIST_SIGNIFICANCE
        ]
        facts = {
            key: copy.deepcopy(value)
            for key, value in state.semantic_memory.items()
            if key in config.SEMANTIC_MEMORY_PERSIST_KEYS
        }
        return {
            "npcId": state.npc_id,
            "conversationBuffer": [
                turn.model_dump(mode="json", by_alias=True, exclude_none=True) for turn in turns
            ],
            "episodicMemories": [episode.model_dump(mode="json") for episode in episodes],
            "semanticMemory": facts,
            "lastInteraction": state.last_interaction.isoformat() if state.last_interaction else None,
            "totalInteractions": state.total_interactions,
            "relationshipLevel": state.relationship_level,
            "playerPreferences": state.player_preferences.model_dump(),
        }

    def deserialize(self, npc_id: str, blob: Any) -> NPCMemoryState:
        """Load a save blob, backfilling defaults for anything missing."""

        # 1 Missing blobs reset the NPC to defaults.                             # steps
        # 2 Corrupt blobs are logged and also reset, never raised.               # steps
        key = normalize_npc_id(npc_id)
        self._states.pop(key, None)
        if not blob:
            return self.get(key)
        if not isinstance(blob, dict):
            log_run_event(f"memory: save blob for {key} is {type(blob).__name__}, using defaults")
            return self.get(key)
        payload = {name: value for name, value in blob.items() if value is not None}
        payload.pop("npcId", None)
        payload.pop("npc_id", None)
        try:
            state = NPCMemoryState(npc_id=key, **payload)
        except (ValidationError, TypeError) as error:
            log_run_event(f"memory: corrupt save blob for {key}, using defaults ({_short_error(error)})")
            return self.get(key)
        if len(state.conversation_buffer) > self.capacity:
            state.conversation_buffer = state.conversation_buffer[-self.capacity :]
        self._states[key] = state
        return state


def relationship_status(level: float) -> str:
    """Bucket a relationship level into a readable label."""

    if level > 0.6:
        return "trusted"
    if level > 0.3:
        return "friendly"
    if level < -0.6:
        return "hostile"
    if level < -0.3:
        return "suspicious"
    return "neutral"


def player_style(state: NPCMemoryState) -> str:
    prefs = state.player_preferences
    if prefs.impatient and not prefs.explores_thoroughly:
        return "rusher"
    if prefs.asks_for_help and prefs.likes_hints:
        return "guidance_seeker"
    if not prefs.likes_hints and prefs.explores_thoroughly:
        return "independent"
    return "explorer"


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _coerce_speaker(value: Any) -> Speaker:
    if isinstance(value, Speaker):
        return value
    try:
        return Speaker(str(value).lower())
    except ValueError:
        log_run_event(f"memory: unknown speaker {value!r}, recorded as npc")
        return Speaker.NPC


def _coerce_annotation(value: Any) -> Optional[TurnAnnotation]:
    if value is None or isinstance(value, TurnAnnotation):
        return value
    if isinstance(value, dict):
        try:
            return TurnAnnotation(**value)
        except (ValidationError, TypeError):
            log_run_event("memory: dropped malformed turn annotation")
    return None


def _short_error(error: Exception) -> str:
    text = str(error).splitlines()
    return text[0] if text else type(error).__name__
