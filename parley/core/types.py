########## Core Types ##########
# Pydantic models and enums shared by the dialogue engine.

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import config


def utc_now() -> datetime:
    """Single source of wall-clock time for engine components."""

    return datetime.now(timezone.utc)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp helper for bounded scalars; NaN collapses to the low bound."""

    if math.isnan(value) or value < low:
        return low
    if value > high:
        return high
    return value


def normalize_npc_id(npc_id: Any) -> str:
    """Canonical key for an NPC: trimmed, lower-case, or "unknown" when blank."""

    if isinstance(npc_id, str) and npc_id.strip():
        return npc_id.strip().lower()
    return config.UNKNOWN


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from older saves as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Speaker(str, Enum):
    """Who produced a conversation turn."""

    PLAYER = "player"
    NPC = "npc"


class PromptType(str, Enum):
    """Visual style of a proactive attention cue."""

    AMBIENT_FLASH = "visual_flash"
    THOUGHT_BUBBLE = "thought_bubble"
    URGENT_FLASH = "urgent_flash"


class PromptPriority(str, Enum):
    """Priority classes for proactive prompts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def weight(self) -> int:
        return config.PRIORITY_WEIGHTS.get(self.value, 0)


class EmotionalTone(str, Enum):
    """Tone derived from timers and relationship for the final pass."""

    URGENT = "urgent"
    CONCERNED = "concerned"
    WARM = "warm"
    DISTANT = "distant"
    NEUTRAL = "neutral"


class MoodLabel(str, Enum):
    """Lightweight NPC affect labels."""

    NEUTRAL = "neutral"
    WARM = "warm"
    IRRITATED = "irritated"
    ANXIOUS = "anxious"
    EUPHORIC = "euphoric"
    COLD = "cold"
    GRIEF = "grief"


########## Context ##########


class TimerState(BaseModel):
    """A named countdown with its remaining duration."""

    active: bool = True
    remaining: timedelta = timedelta(0)


class SessionTelemetry(BaseModel):
    """Player pacing numbers gathered by the host game."""

    play_time: timedelta = timedelta(0)
    idle_time: timedelta = timedelta(0)
    visit_count: int = 0
    last_action: str = config.UNKNOWN


class EnvironmentCues(BaseModel):
    """Advisory atmosphere tags used for tone shaping."""

    ambient_audio: Optional[str] = None
    room_mood: str = "neutral"
    light_level: str = "normal"
    temperature: str = "moderate"


class PlayerState(BaseModel):
    """Player traits and standing consumed by intervention gates."""

    traits: List[str] = Field(default_factory=list)
    inventory: List[str] = Field(default_factory=list)
    npc_relationships: Dict[str, float] = Field(default_factory=dict)
    reputation: Dict[str, float] = Field(default_factory=dict)  # legacy saves
    flags: Dict[str, Any] = Field(default_factory=dict)


class ContextSnapshot(BaseModel):
    """Immutable per-turn view of room, player, and world state."""

    model_config = ConfigDict(frozen=True)

    room_id: str = config.UNKNOWN
    zone: str = config.UNKNOWN
    npcs_present: List[str] = Field(default_factory=list)
    inventory: List[str] = Field(default_factory=list)
    timers: Dict[str, TimerState] = Field(default_factory=dict)
    flags: Dict[str, Any] = Field(default_factory=dict)
    recent_events: List[str] = Field(default_factory=list)
    session: SessionTelemetry = Field(default_factory=SessionTelemetry)
    player: PlayerState = Field(default_factory=PlayerState)
    environment: EnvironmentCues = Field(default_factory=EnvironmentCues)
    active_quests: List[str] = Field(default_factory=list)
    game_stage: str = config.UNKNOWN
    room_description: str = ""
    available_exits: List[str] = Field(default_factory=list)
    room_items: List[str] = Field(default_factory=list)
    built_at: datetime = Field(default_factory=utc_now)

    def flags_copy(self) -> Dict[str, Any]:
        """Return a detached copy of the player flags."""

        return dict(self.flags)

    def timers_copy(self) -> Dict[str, TimerState]:
        """Return detached copies of the active timers."""

        return {name: timer.model_copy() for name, timer in self.timers.items()}

    def has_flag(self, name: str) -> bool:
        return bool(self.flags.get(name))

    def timer(self, name: str) -> Optional[TimerState]:
        timer = self.timers.get(name)
        if timer is None or not timer.active:
            return None
        return timer

    def countdown_remaining(self) -> Optional[timedelta]:
        """Smallest remaining duration across active timers, if any."""

        remaining = [timer.remaining for timer in self.timers.values() if timer.active]
        if not remaining:
            return None
        return min(remaining)

    def countdown_below(self, threshold: timedelta) -> bool:
        remaining = self.countdown_remaining()
        return remaining is not None and remaining < threshold


########## Intent ##########


class IntentResult(BaseModel):
    """Classified player intent with supporting evidence."""

    intent: str = config.GENERAL_INTENT
    confidence: float = config.GENERAL_CONFIDENCE
    entities: List[str] = Field(default_factory=list)
    context_clues: List[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp(float(value), 0.0, 1.0)

    @field_validator("intent")
    @classmethod
    def _non_empty_intent(cls, value: str) -> str:
        return value or config.GENERAL_INTENT


########## Memory ##########


class TurnAnnotation(BaseModel):
    """Optional classification attached to a stored turn."""

    intent: Optional[str] = None
    entities: List[str] = Field(default_factory=list)
    emotional_state: Optional[str] = None


class ConversationTurn(BaseModel):
    """Single utterance kept in an NPC's rolling buffer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    speaker: Speaker
    message: str
    npc_id: Optional[str] = Field(default=None, alias="npcId")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    context: Optional[TurnAnnotation] = None

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class EpisodicMemory(BaseModel):
    """Significance-weighted record of a notable event."""

    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: str
    description: str
    participants: List[str] = Field(default_factory=list)
    location: str = ""
    significance: float = config.DEFAULT_EPISODE_SIGNIFICANCE
    tags: List[str] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("significance")
    @classmethod
    def _clamp_significance(cls, value: float) -> float:
        return clamp(float(value), 0.0, 1.0)


class PlayerPreferences(BaseModel):
    """Behavioural hints inferred from how the player talks."""

    likes_hints: bool = True
    impatient: bool = False
    explores_thoroughly: bool = True
    asks_for_help: bool = False


class MoodState(BaseModel):
    """Short-lived affect that colours an NPC's replies."""

    label: MoodLabel = MoodLabel.NEUTRAL
    intensity: float = config.DEFAULT_MOOD_INTENSITY
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("intensity")
    @classmethod
    def _clamp_intensity(cls, value: float) -> float:
        return clamp(float(value), 0.0, 1.0)

    @field_validator("last_updated")
    @classmethod
    def _aware_last_updated(cls, value: datetime) -> datetime:
        return as_utc(value)


class NPCMemoryState(BaseModel):
    """Everything one NPC remembers about the player."""

    model_config = ConfigDict(populate_by_name=True)

    npc_id: str = Field(alias="npcId")
    conversation_buffer: List[ConversationTurn] = Field(default_factory=list, alias="conversationBuffer")
    episodic_memories: List[EpisodicMemory] = Field(default_factory=list, alias="episodicMemories")
    semantic_memory: Dict[str, Any] = Field(default_factory=dict, alias="semanticMemory")
    last_interaction: Optional[datetime] = Field(default=None, alias="lastInteraction")
    total_interactions: int = Field(default=0, alias="totalInteractions")
    relationship_level: float = Field(default=0.0, alias="relationshipLevel")
    mood: MoodState = Field(default_factory=MoodState)
    player_preferences: PlayerPreferences = Field(default_factory=PlayerPreferences, alias="playerPreferences")

    @field_validator("last_interaction", mode="before")
    @classmethod
    def _zero_means_never(cls, value: Any) -> Any:
        # 0 marks "never" in older saves.
        if value in (0, "0", "", None):
            return None
        return value

    @field_validator("last_interaction")
    @classmethod
    def _aware_last_interaction(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("relationship_level")
    @classmethod
    def _clamp_relationship(cls, value: float) -> float:
        level = float(value)
        if not math.isfinite(level):
            return 0.0
        return clamp(level, config.RELATIONSHIP_MIN, config.RELATIONSHIP_MAX)

    @model_validator(mode="after")
    def _trim_buffer(self) -> "NPCMemoryState":
        # older saves may carry more turns than the buffer holds
        if len(self.conversation_buffer) > config.CONVERSATION_BUFFER_SIZE:
            self.conversation_buffer = self.conversation_buffer[-config.CONVERSATION_BUFFER_SIZE :]
        return self


class MemorySummary(BaseModel):
    """Condensed view of memory used for tone decisions."""

    recent_topics: List[str] = Field(default_factory=list)
    relationship_status: str = "neutral"
    important_facts: Dict[str, Any] = Field(default_factory=dict)
    player_style: str = "explorer"
    mood_label: MoodLabel = MoodLabel.NEUTRAL
    mood_intensity: float = config.DEFAULT_MOOD_INTENSITY


########## Intervention ##########


class InterventionMessages(BaseModel):
    """Authored lines for one intervention rule."""

    intervention: str
    suppressed: List[str]
    success: Optional[str] = None
    failure: Optional[str] = None


class InterventionRule(BaseModel):
    """Prioritised rule letting one NPC talk over others in a room."""

    id: str
    intervening_npc: str
    target_npcs: List[str]
    condition: Optional[Callable[[ContextSnapshot], bool]] = Field(default=None, exclude=True)
    priority: int = 0
    cooldown: Optional[timedelta] = None
    max_occurrences: Optional[int] = None
    max_per_hour: Optional[int] = None
    required_flags: List[str] = Field(default_factory=list)
    blocked_flags: List[str] = Field(default_factory=list)
    required_traits: List[str] = Field(default_factory=list)
    required_items: List[str] = Field(default_factory=list)
    min_reputation: Optional[float] = None
    room_restrictions: List[str] = Field(default_factory=list)
    messages: InterventionMessages


class RuleHistory(BaseModel):
    """Trigger bookkeeping for one rule id."""

    count: int = 0
    last_trigger: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    hourly_count: int = 0
    hour_window_start: datetime = Field(default_factory=utc_now)


class InterventionResult(BaseModel):
    """Outcome of one intervention evaluation."""

    occurred: bool = False
    intervening_npc: Optional[str] = None
    suppressed_npcs: List[str] = Field(default_factory=list)
    messages: List[str] = Field(default_factory=list)
    rule_id: Optional[str] = None
    reason: str = "no rule fired"
    effect_duration: Optional[timedelta] = None
    timestamp: datetime = Field(default_factory=utc_now)


class InterventionRecord(BaseModel):
    """Entry in the recent-intervention ring."""

    rule_id: str
    timestamp: datetime
    context: str


class PotentialIntervention(BaseModel):
    """Diagnostic view of whether a rule could fire right now."""

    rule_id: str
    priority: int
    can_trigger: bool
    suppressed_count: int
    reason: Optional[str] = None


########## Proactive Prompts ##########


class PromptAccessibility(BaseModel):
    """Screen-reader text and keyboard hint for a prompt."""

    screen_reader_text: str
    keyboard_hint: Optional[str] = None


class ProactivePrompt(BaseModel):
    """NPC-initiated attention cue shown without the player asking."""

    npc_id: str
    prompt_type: PromptType = PromptType.AMBIENT_FLASH
    message: str
    priority: PromptPriority = PromptPriority.LOW
    triggers: List[str] = Field(default_factory=list)
    cooldown: timedelta = timedelta(seconds=30)
    accessibility: PromptAccessibility
    created_at: datetime = Field(default_factory=utc_now)


########## Synthesis & Turns ##########


class SynthesisFeatures(BaseModel):
    """Which naturalising steps touched a line."""

    deflected: bool = False
    ask_twice: bool = False
    has_hedging: bool = False
    has_correction: bool = False
    has_humour: bool = False
    has_memory_reference: bool = False
    has_fourth_wall: bool = False
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    confidence: float = 0.8


class SynthesizedLine(BaseModel):
    """Final utterance plus the features applied to it."""

    message: str
    features: SynthesisFeatures = Field(default_factory=SynthesisFeatures)


class TurnResponse(BaseModel):
    """Everything the UI needs after one conversational turn."""

    npc_id: str
    message: str
    intent: IntentResult = Field(default_factory=IntentResult)
    features: SynthesisFeatures = Field(default_factory=SynthesisFeatures)
    follow_up_prompts: List[str] = Field(default_factory=list)
    proactive_update: List[ProactivePrompt] = Field(default_factory=list)
    polished: bool = False


class RoomTickResult(BaseModel):
    """Intervention and prompt output for one room tick."""

    intervention: InterventionResult = Field(default_factory=InterventionResult)
    prompts: List[ProactivePrompt] = Field(default_factory=list)
