########## Response Synthesis ##########
# Template selection plus the naturalising passes that give each NPC a voice.

from __future__ import annotations

import random
import re
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from . import config
from .logs import log_run_event
from .memory import relationship_status
from .personas import Persona, PersonaKind, resolve_persona
from .types import (
    ContextSnapshot,
    EmotionalTone,
    IntentResult,
    NPCMemoryState,
    Speaker,
    SynthesisFeatures,
    SynthesizedLine,
)

FALLBACK_LINE = "I'm not sure how to respond to that."
SPOILER_ENTITIES = {"polly", "takeover", "ending", "secret"}
WORD_RE = re.compile(r"[a-z0-9']+")

CONTRACTIONS: List[Tuple[str, str]] = [
    ("do not", "don't"),
    ("will not", "won't"),
    ("cannot", "can't"),
    ("it is", "it's"),
    ("that is", "that's"),
    ("you are", "you're"),
    ("I am", "I'm"),
    ("we are", "we're"),
]

SHARED_DEFLECTIONS = [
    "I can guide, but I won't override your discovery.",
    "Some things are better experienced than explained.",
    "That's something you'll need to figure out yourself.",
    "I'd rather not spoil the surprise.",
    "Let's focus on what you can do right now.",
]
TIME_PRESSURE_DEFLECTION = " Though given the time pressure, ask me again if you're really stuck."

SHARED_HEDGES = [
    "I think ",
    "It seems like ",
    "Perhaps ",
    "I believe ",
    "From what I understand, ",
    "If I'm not mistaken, ",
]
SHARED_CORRECTIONS = ["Actually, ", "Well, ", "I mean, ", "Or rather, ", "Wait, "]
MEMORY_HOOKS = [
    "Like you mentioned, ",
    "As you said earlier, ",
    "Following up on what you asked, ",
    "Continuing from before, ",
]
TRUSTED_CALLBACKS = ["As we discussed before, ", "Like last time, ", "You mentioned earlier that "]
URGENT_TAILS = [" We need to hurry!", " Time is running out!"]


class ResponseTemplate(BaseModel):
    """Base line, variants, and tone-driven substitutions for one intent."""

    base: str
    variants: List[str] = Field(default_factory=list)
    style_modifiers: Dict[str, str] = Field(default_factory=dict)


TEMPLATES: Dict[str, ResponseTemplate] = {
    "greeting": ResponseTemplate(
        base="Hello there!",
        variants=["Hi!", "Good to see you!", "Greetings!"],
        style_modifiers={
            "warmth_high": "It's wonderful to see you!",
            "formality_high": "Good day to you.",
            "humour_high": "Well, look who it is!",
        },
    ),
    "help": ResponseTemplate(
        base="I'd be happy to help.",
        variants=["What can I do for you?", "How can I assist?", "Let's figure this out together."],
        style_modifiers={
            "warmth_high": "Of course! I'm here for you.",
            "caution_high": "I'll help, but be careful about what you choose.",
        },
    ),
    "location": ResponseTemplate(
        base="Let me think about where you need to go.",
        variants=[
            "Navigation can be tricky here.",
            "The paths aren't always obvious.",
            "Where are you trying to reach?",
        ],
        style_modifiers={"caution_high": "Make sure you're prepared before moving on."},
    ),
    "inventory": ResponseTemplate(
        base="Let's take a look at what you're carrying.",
        variants=["Anything in your pockets worth a second look?", "Your belongings might matter more than you think."],
        style_modifiers={"formality_high": "Your possessions may prove significant."},
    ),
    "puzzle_hint": ResponseTemplate(
        base="Look closely at what the room is telling you.",
        variants=["The details here matter more than they seem.", "Try looking at it from a different angle."],
        style_modifiers={"caution_high": "Take it slowly. The details matter here."},
    ),
    "lore": ResponseTemplate(
        base="There's a lot of history in these walls.",
        variants=["Every place here has a story.", "Some of it is written down, if you know where to look."],
        style_modifiers={"formality_high": "The history of this place is long and rarely told."},
    ),
    "ethics": ResponseTemplate(
        base="That's your choice to make, but think about who it affects.",
        variants=["There's rarely a clean answer to that.", "Consequences have a way of following us."],
        style_modifiers={"warmth_high": "Whatever you decide, I'll be right here with you."},
    ),
    "meta": ResponseTemplate(
        base="Let's keep our focus on the here and now.",
        variants=["Some questions are bigger than this room.", "Funny thing to ask, in a place like this."],
    ),
    "farewell": ResponseTemplate(
        base="Take care out there.",
        variants=["See you soon.", "Until next time."],
        style_modifiers={"formality_high": "Farewell, then.", "warmth_high": "Come back soon, okay?"},
    ),
    config.GENERAL_INTENT: ResponseTemplate(
        base=FALLBACK_LINE,
        variants=["Could you rephrase that?", "I'm not following.", "What do you mean?"],
    ),
}

# intents answered from the persona's own emotional banks
EMOTIONAL_INTENTS = {
    "insult": "when_frustrated",
    "time_pressure": "when_concerned",
}


def word_overlap(first: str, second: str) -> float:
    """Shared words over the size of the combined vocabulary."""

    words_a = WORD_RE.findall(first.lower())
    words_b = WORD_RE.findall(second.lower())
    vocabulary = set(words_a) | set(words_b)
    if not vocabulary:
        return 0.0
    common = [word for word in words_a if word in words_b]
    return len(common) / len(vocabulary)


def add_contractions(text: str) -> str:
    for full, short in CONTRACTIONS:
        text = _swap(text, full, short)
    return text


def remove_contractions(text: str) -> str:
    for full, short in CONTRACTIONS:
        text = _swap(text, short, full)
    return text


def _swap(text: str, source: str, target: str) -> str:
    pattern = re.compile(r"\b" + re.escape(source) + r"\b", re.IGNORECASE)

    def _replace(match: re.Match) -> str:
        if source.startswith("I ") or source.startswith("I'"):
            return target
        if match.group(0)[:1].isupper():
            return target[:1].upper() + target[1:]
        return target

    return pattern.sub(_replace, text)


def _lower_first(text: str) -> str:
    """Lower-case the first letter so a prefix reads as one sentence."""

    if not text or text.startswith("I ") or text.startswith("I'"):
        return text
    return text[:1].lower() + text[1:]


def emotional_tone(context: ContextSnapshot, memory: NPCMemoryState) -> EmotionalTone:
    """Tone from countdown pressure first, then relationship."""

    remaining = context.countdown_remaining()
    if remaining is not None:
        if remaining < config.TIMER_URGENT:
            return EmotionalTone.URGENT
        if remaining < config.TIMER_CONCERNED:
            return EmotionalTone.CONCERNED
    if memory.relationship_level > config.WARM_RELATIONSHIP:
        return EmotionalTone.WARM
    if memory.relationship_level < config.DISTANT_RELATIONSHIP:
        return EmotionalTone.DISTANT
    return EmotionalTone.NEUTRAL


class ResponseSynthesizer:
    """Composes one NPC line; every random draw goes through self.rng."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random(config.RANDOM_SEED)

    ########## Coin Flips ##########

    def chance(self, probability: float) -> bool:
        return self.rng.random() < probability

    def choose(self, options: Sequence[str]) -> str:
        return options[self.rng.randrange(len(options))]

    ########## Entry Points ##########

    def synthesize(
        self,
        npc_id: str,
        utterance: str,
        intent: Optional[IntentResult],
        context: Optional[ContextSnapshot],
        memory: Optional[NPCMemoryState] = None,
    ) -> str:
        return self.compose(npc_id, utterance, intent, context, memory).message

    def compose(
        self,
        npc_id: str,
        utterance: str,
        intent: Optional[IntentResult],
        context: Optional[ContextSnapshot],
        memory: Optional[NPCMemoryState] = None,
    ) -> SynthesizedLine:
        """Run the full pipeline and report which passes fired."""

        if not isinstance(intent, IntentResult):
            intent = IntentResult()
        if not isinstance(context, ContextSnapshot):
            context = ContextSnapshot()
        if not isinstance(memory, NPCMemoryState):
            memory = None
        try:
            return self._compose(npc_id, utterance, intent, context, memory)
        except Exception as error:  # a malformed record still yields a line
            log_run_event(f"synthesis: compose for {npc_id} failed ({error}), using fallback")
            return SynthesizedLine(message=FALLBACK_LINE)

    def _compose(
        self,
        npc_id: str,
        utterance: str,
        intent: IntentResult,
        context: ContextSnapshot,
        memory: Optional[NPCMemoryState],
    ) -> SynthesizedLine:
        # 1 Forbidden topics deflect, unless the ask-twice exception applies.   # steps
        # 2 Repeated solution requests get the direct answer.                   # steps
        # 3 Otherwise template, naturalise, and apply emotional tone.           # steps
        persona = resolve_persona(npc_id)
        state = memory or NPCMemoryState(npc_id=persona.id)
        query = utterance.lower().strip() if isinstance(utterance, str) else ""
        asked_twice = self._asked_twice(query, state, persona)

        if self._is_forbidden(intent, persona, context, asked_twice):
            return SynthesizedLine(
                message=self._deflection(persona, context),
                features=SynthesisFeatures(deflected=True, emotional_tone=emotional_tone(context, state)),
            )
        if asked_twice:
            return SynthesizedLine(
                message=direct_solution(query),
                features=SynthesisFeatures(ask_twice=True, emotional_tone=emotional_tone(context, state)),
            )

        features = SynthesisFeatures()
        line = self._template_line(persona, intent)
        line = self._naturalise(line, persona, intent, state, features)
        tone = emotional_tone(context, state)
        features.emotional_tone = tone
        line = self._apply_tone(line, tone, persona).strip()
        return SynthesizedLine(message=line or FALLBACK_LINE, features=features)

    ########## Gates ##########

    def _is_forbidden(
        self,
        intent: IntentResult,
        persona: Persona,
        context: ContextSnapshot,
        asked_twice: bool,
    ) -> bool:
        entities = set(intent.entities)
        for topic in persona.forbidden_topics:
            lowered = topic.lower()
            if "puzzle solutions" in lowered and intent.intent == "puzzle_hint":
                if context.countdown_below(config.TIMER_CRITICAL):
                    return False
                if "asked twice" in lowered and asked_twice:
                    return False
                return True
            if "spoilers" in lowered and intent.intent in ("lore", "meta") and entities & SPOILER_ENTITIES:
                return True
            topic_words = set(WORD_RE.findall(lowered))
            if any(len(entity) > 3 and entity in topic_words for entity in entities):
                return True
        return False

    def _asked_twice(self, query: str, memory: NPCMemoryState, persona: Persona) -> bool:
        if not persona.supports_ask_twice or not query:
            return False
        if "solution" not in query and "answer" not in query:
            return False
        window = memory.conversation_buffer[-config.ASK_TWICE_WINDOW_TURNS :]
        previous = [turn.message for turn in window if turn.speaker is Speaker.PLAYER]
        recent = previous[-config.ASK_TWICE_COMPARE_UTTERANCES :]
        return any(word_overlap(query, earlier) > config.ASK_TWICE_SIMILARITY for earlier in recent)

    def _deflection(self, persona: Persona, context: ContextSnapshot) -> str:
        line = self.choose(SHARED_DEFLECTIONS + persona.extra_deflections)
        if context.countdown_below(config.TIMER_URGENT):
            line += TIME_PRESSURE_DEFLECTION
        return line

    ########## Templates ##########

    def _template_line(self, persona: Persona, intent: IntentResult) -> str:
        bank_name = EMOTIONAL_INTENTS.get(intent.intent)
        if bank_name:
            bank = getattr(persona.emotional_responses, bank_name)
            if bank:
                return self.choose(bank)
        template = TEMPLATES.get(intent.intent, TEMPLATES[config.GENERAL_INTENT])
        line = template.base
        tone = persona.tone
        modifiers = template.style_modifiers
        if tone.warmth > 0.7 and "warmth_high" in modifiers:
            line = modifiers["warmth_high"]
        elif tone.warmth < 0.3 and "warmth_low" in modifiers:
            line = modifiers["warmth_low"]
        if tone.humour > 0.7 and "humour_high" in modifiers:
            line = modifiers["humour_high"]
        if tone.formality > 0.7 and "formality_high" in modifiers:
            line = modifiers["formality_high"]
        if tone.caution > 0.7 and "caution_high" in modifiers:
            line = modifiers["caution_high"]
        if template.variants and self.chance(config.VARIANT_CHANCE):
            line = self.choose(template.variants)
        return line

    ########## Naturalising Passes ##########

    def _naturalise(
        self,
        line: str,
        persona: Persona,
        intent: IntentResult,
        memory: NPCMemoryState,
        features: SynthesisFeatures,
    ) -> str:
        if persona.humour_lines and persona.tone.humour > config.HUMOUR_THRESHOLD and self.chance(config.HUMOUR_CHANCE):
            line += self.choose(persona.humour_lines)
            features.has_humour = True

        if persona.speaking_style.fourth_wall_awareness and persona.fourth_wall_lines:
            if self.chance(config.FOURTH_WALL_CHANCE):
                line += self.choose(persona.fourth_wall_lines)
                features.has_fourth_wall = True

        if self._should_hedge(persona, intent, memory):
            line = self.choose(SHARED_HEDGES + persona.extra_hedges) + _lower_first(line)
            features.has_hedging = True
            features.confidence *= 0.9

        if self._should_correct(persona, memory):
            line = self.choose(SHARED_CORRECTIONS + persona.extra_corrections) + _lower_first(line)
            features.has_correction = True

        hooked = self._memory_hook(line, memory)
        if hooked is not None:
            line = hooked
            features.has_memory_reference = True
        elif relationship_status(memory.relationship_level) == "trusted" and self.chance(config.TRUSTED_CALLBACK_CHANCE):
            line = self.choose(TRUSTED_CALLBACKS) + _lower_first(line)
            features.has_memory_reference = True

        if persona.speaking_style.use_contractions:
            return add_contractions(line)
        return remove_contractions(line)

    def _should_hedge(self, persona: Persona, intent: IntentResult, memory: NPCMemoryState) -> bool:
        if persona.tone.caution > config.HEDGE_CAUTION_THRESHOLD:
            return self.chance(config.HEDGE_CAUTION_CHANCE)
        if intent.confidence < config.HEDGE_LOW_CONFIDENCE:
            return self.chance(config.HEDGE_LOW_CONFIDENCE_CHANCE)
        if memory.relationship_level < config.HEDGE_LOW_RELATIONSHIP:
            return self.chance(config.HEDGE_LOW_RELATIONSHIP_CHANCE)
        return False

    def _should_correct(self, persona: Persona, memory: NPCMemoryState) -> bool:
        if memory.relationship_level > config.CORRECTION_CLOSE_RELATIONSHIP:
            return self.chance(config.CORRECTION_CLOSE_CHANCE)
        if persona.kind is PersonaKind.AYLA:
            return self.chance(config.CORRECTION_PERSONA_CHANCE)
        return self.chance(config.CORRECTION_BASE_CHANCE)

    def _memory_hook(self, line: str, memory: NPCMemoryState) -> Optional[str]:
        if len(memory.conversation_buffer) < config.MEMORY_HOOK_MIN_TURNS:
            return None
        if not self.chance(config.MEMORY_HOOK_CHANCE):
            return None
        for turn in memory.conversation_buffer[-3:]:
            words = WORD_RE.findall(turn.message.lower())
            if turn.speaker is Speaker.PLAYER and ("you" in words or "said" in words):
                return self.choose(MEMORY_HOOKS) + _lower_first(line)
        return None

    ########## Emotional Tone ##########

    def _apply_tone(self, line: str, tone: EmotionalTone, persona: Persona) -> str:
        if tone is EmotionalTone.URGENT:
            return line + self.choose(URGENT_TAILS)
        if tone is EmotionalTone.CONCERNED and self.chance(0.3):
            return line + " I hope we can figure this out soon."
        if tone is EmotionalTone.WARM and persona.tone.warmth > 0.6 and self.chance(0.3):
            return line + " I'm glad I can help!"
        if tone is EmotionalTone.DISTANT:
            return remove_contractions(line.replace("!", "."))
        return line


def direct_solution(query: str) -> str:
    """Specific answers handed out when the player asks twice."""

    if "coin" in query or "schrodinger" in query:
        return (
            "Alright, since you asked twice: The Schrödinger coin exists in two states. "
            "Pick it up to collapse it into being unusable, or leave it to keep it usable for the extrapolator. "
            "The choice affects what you can do in the library."
        )
    if "blue" in query and ("switch" in query or "button" in query):
        return (
            "The blue switch resets everything to the beginning. Only press it if you're certain you want "
            "to start over completely, or if Polly has taken control and it's your only option."
        )
    return "I've given you all the help I can. Sometimes the answer becomes clear when you try different approaches."
