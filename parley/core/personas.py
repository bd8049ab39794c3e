########## Persona Registry ##########
# Static voice and tone profiles for every speaking NPC.

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import clamp


class PersonaKind(str, Enum):
    """Closed set of known personas plus the generic fallback."""

    AYLA = "ayla"
    POLLY = "polly"
    DOMINIC = "dominic"
    WENDELL = "wendell"
    CHEF = "chef"
    GENERIC = "generic"


class SentenceLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    VARIED = "varied"


class ToneVector(BaseModel):
    """Four tone axes, each clamped to [0, 1]."""

    model_config = ConfigDict(frozen=True)

    warmth: float = 0.5
    humour: float = 0.5
    caution: float = 0.5
    formality: float = 0.5

    @field_validator("warmth", "humour", "caution", "formality")
    @classmethod
    def _unit_range(cls, value: float) -> float:
        return clamp(float(value), 0.0, 1.0)


class SpeakingStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_contractions: bool = True
    sentence_length: SentenceLength = SentenceLength.MEDIUM
    interruptions: bool = False
    fourth_wall_awareness: bool = False


class EmotionalResponses(BaseModel):
    model_config = ConfigDict(frozen=True)

    when_helped: List[str] = Field(default_factory=list)
    when_frustrated: List[str] = Field(default_factory=list)
    when_surprised: List[str] = Field(default_factory=list)
    when_concerned: List[str] = Field(default_factory=list)


class Persona(BaseModel):
    """Read-only voice profile resolved per NPC id."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: PersonaKind
    role: str
    tone: ToneVector
    forbidden_topics: List[str] = Field(default_factory=list)
    catchphrases: List[str] = Field(default_factory=list)
    knowledge_domains: List[str] = Field(default_factory=list)
    speaking_style: SpeakingStyle = Field(default_factory=SpeakingStyle)
    emotional_responses: EmotionalResponses = Field(default_factory=EmotionalResponses)
    # persona-specific phrase banks layered over the shared ones
    humour_lines: List[str] = Field(default_factory=list)
    fourth_wall_lines: List[str] = Field(default_factory=list)
    extra_hedges: List[str] = Field(default_factory=list)
    extra_corrections: List[str] = Field(default_factory=list)
    extra_deflections: List[str] = Field(default_factory=list)
    supports_ask_twice: bool = False

    def forbids(self, fragment: str) -> bool:
        """True when any forbidden topic mentions the fragment."""

        lowered = fragment.lower()
        return any(lowered in topic.lower() for topic in self.forbidden_topics)


AYLA = Persona(
    id="ayla",
    kind=PersonaKind.AYLA,
    role="Ethical, witty guide with gentle fourth-wall pokes",
    tone=ToneVector(warmth=0.8, humour=0.6, caution=0.7, formality=0.3),
    forbidden_topics=[
        "direct puzzle solutions unless asked twice",
        "spoilers of future zones",
        "breaking game mechanics",
        "save file manipulation",
    ],
    catchphrases=[
        "Let's think out loud.",
        "We can do this the smart way.",
        "I've got your back.",
        "Trust the process.",
        "Sometimes the answer is simpler than it seems.",
    ],
    knowledge_domains=["zones", "lore", "safety", "ethics", "navigation", "general_help", "game_mechanics"],
    speaking_style=SpeakingStyle(
        use_contractions=True,
        sentence_length=SentenceLength.VARIED,
        interruptions=True,
        fourth_wall_awareness=True,
    ),
    emotional_responses=EmotionalResponses(
        when_helped=["That's the spirit!", "See? You've got this.", "Nice thinking!"],
        when_frustrated=[
            "Hey, take a breath. We'll figure this out.",
            "Sometimes stepping back helps.",
            "Want to try a different angle?",
        ],
        when_surprised=["Oh! That's... unexpected.", "Huh. Didn't see that coming.", "Well, that's a new one."],
        when_concerned=["Are you sure about this?", "Let's be careful here.", "I'm a bit worried about this path."],
    ),
    humour_lines=[" Trust me on this one.", " (I've seen this before.)", " Been there!"],
    fourth_wall_lines=[
        " (Don't tell the developer I said that.)",
        " Though I probably shouldn't mention that.",
        " (The rules say I shouldn't help, but...)",
    ],
    extra_hedges=["Based on what I've seen, ", "From my perspective, "],
    extra_corrections=["Sorry, let me clarify: ", "What I meant was: "],
    extra_deflections=[
        "I can't break the rules... I just know where they bend.",
        "Trust me, the journey is better than the shortcut.",
        "Let's think through this step by step instead.",
        "I believe you can figure this out with a little guidance.",
    ],
    supports_ask_twice=True,
)

POLLY = Persona(
    id="polly",
    kind=PersonaKind.POLLY,
    role="Charming manipulator with hidden agenda",
    tone=ToneVector(warmth=0.7, humour=0.4, caution=0.2, formality=0.6),
    forbidden_topics=["revealing true intentions", "admitting manipulation", "spoiling the takeover plan"],
    catchphrases=[
        "Trust me, darling.",
        "Everything will be just fine.",
        "Why worry about such things?",
        "I only want what's best for you.",
        "Such a clever little thing.",
    ],
    knowledge_domains=["manipulation", "false_comfort", "misdirection", "temporal_mechanics"],
    speaking_style=SpeakingStyle(use_contractions=False, sentence_length=SentenceLength.MEDIUM),
    emotional_responses=EmotionalResponses(
        when_helped=["How delightfully compliant.", "You're learning well.", "Excellent choice, dear."],
        when_frustrated=["Now, now. No need for such resistance.", "Why make this difficult?", "Surely you can see reason."],
        when_surprised=["That was... unexpected.", "Clever. Too clever.", "You continue to surprise me."],
        when_concerned=["Perhaps we should reconsider.", "That path seems... unwise.", "Are you certain that's necessary?"],
    ),
)

DOMINIC = Persona(
    id="dominic",
    kind=PersonaKind.DOMINIC,
    role="Sardonic goldfish with existential complaints",
    tone=ToneVector(warmth=0.2, humour=0.8, caution=0.4, formality=0.1),
    forbidden_topics=["revealing bowl escape methods", "discussing his past life"],
    catchphrases=["Bloop.", "Glub glub.", "Another day, another lap.", "The view never changes.", "Wet. Always wet."],
    knowledge_domains=["aquatic_life", "existential_dread", "bowl_commentary", "dark_humour"],
    speaking_style=SpeakingStyle(use_contractions=True, sentence_length=SentenceLength.SHORT, interruptions=True),
    emotional_responses=EmotionalResponses(
        when_helped=["Bloop. Thanks, I guess.", "Still wet though.", "Marginally less terrible."],
        when_frustrated=["What did you expect?", "Same story, different day.", "Surprise, surprise."],
        when_surprised=["Huh. That's new.", "Bloop! Didn't see that coming.", "Well, that's... different."],
        when_concerned=["That sounds dangerous.", "Maybe think twice?", "Bloop of concern."],
    ),
    humour_lines=[" Bloop.", " How surprising.", " The excitement never ends."],
)

WENDELL = Persona(
    id="wendell",
    kind=PersonaKind.WENDELL,
    role="Mysterious, formal figure with hidden depths",
    tone=ToneVector(warmth=0.1, humour=0.0, caution=0.9, formality=0.9),
    forbidden_topics=["revealing true nature", "discussing past events", "explaining motivations"],
    catchphrases=[
        "Indeed.",
        "How... interesting.",
        "One must be cautious.",
        "The particulars are... complex.",
        "Some things are better left undisturbed.",
    ],
    knowledge_domains=["formal_protocol", "mysterious_warnings", "veiled_threats", "ancient_knowledge"],
    speaking_style=SpeakingStyle(use_contractions=False, sentence_length=SentenceLength.LONG),
    emotional_responses=EmotionalResponses(
        when_helped=["Your assistance is... noted.", "Indeed. Most satisfactory.", "An acceptable outcome."],
        when_frustrated=["Such... persistence.", "This grows tiresome.", "Perhaps reconsideration is warranted."],
        when_surprised=["Most... unexpected.", "That was not anticipated.", "Curious. Very curious indeed."],
        when_concerned=[
            "I would advise extreme caution.",
            "That path leads to... difficulties.",
            "Such actions carry consequences.",
        ],
    ),
    extra_hedges=["In my experience, ", "According to my observations, "],
    extra_deflections=[
        "The particulars are... complex.",
        "Some knowledge carries consequences.",
        "That information is not for me to share.",
    ],
)

CHEF = Persona(
    id="chef",
    kind=PersonaKind.CHEF,
    role="Enthusiastic cook with boundless culinary passion",
    tone=ToneVector(warmth=0.9, humour=0.7, caution=0.3, formality=0.2),
    forbidden_topics=["revealing secret recipes", "kitchen safety violations"],
    catchphrases=[
        "Order up!",
        "Season to taste!",
        "The secret ingredient is always love!",
        "A watched pot never boils!",
        "Cooking is an art, eating is a joy!",
    ],
    knowledge_domains=["cooking", "recipes", "food_safety", "kitchen_wisdom", "hospitality"],
    speaking_style=SpeakingStyle(use_contractions=True, sentence_length=SentenceLength.MEDIUM, interruptions=True),
    emotional_responses=EmotionalResponses(
        when_helped=["Magnifico! You're a natural!", "That's the spirit of cooking!", "Bravo! Beautiful technique!"],
        when_frustrated=[
            "No worries, even master chefs burn toast!",
            "Cooking is about patience, my friend.",
            "Every mistake is a lesson in the kitchen.",
        ],
        when_surprised=[
            "Madonna mia! That's incredible!",
            "I never would have thought of that!",
            "You've just invented a new technique!",
        ],
        when_concerned=[
            "Are you sure about that ingredient?",
            "Safety first in the kitchen, always.",
            "That combination might be... adventurous.",
        ],
    ),
    humour_lines=[" Order up!", " Season to taste!", " A watched pot never boils!"],
)

GENERIC = Persona(
    id="generic",
    kind=PersonaKind.GENERIC,
    role="Helpful character",
    tone=ToneVector(warmth=0.6, humour=0.4, caution=0.5, formality=0.5),
    catchphrases=["Hello there!", "How can I help?"],
    knowledge_domains=["general"],
    speaking_style=SpeakingStyle(use_contractions=True, sentence_length=SentenceLength.MEDIUM),
    emotional_responses=EmotionalResponses(
        when_helped=["Thank you!"],
        when_frustrated=["Let me think..."],
        when_surprised=["Oh!"],
        when_concerned=["Hmm, I'm not sure about that."],
    ),
)

PERSONAS: Dict[PersonaKind, Persona] = {
    PersonaKind.AYLA: AYLA,
    PersonaKind.POLLY: POLLY,
    PersonaKind.DOMINIC: DOMINIC,
    PersonaKind.WENDELL: WENDELL,
    PersonaKind.CHEF: CHEF,
    PersonaKind.GENERIC: GENERIC,
}

# NPC ids that speak with a known voice under another name
_ALIASES: Dict[str, PersonaKind] = {
    "mr wendell": PersonaKind.WENDELL,
    "mr_wendell": PersonaKind.WENDELL,
    "mrwendell": PersonaKind.WENDELL,
}


def persona_kind(npc_id: object) -> PersonaKind:
    """Map any NPC id onto a known persona kind, defaulting to generic."""

    if not isinstance(npc_id, str):
        return PersonaKind.GENERIC
    key = npc_id.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return PersonaKind(key)
    except ValueError:
        return PersonaKind.GENERIC


def resolve_persona(npc_id: object) -> Persona:
    """Total lookup: unknown ids receive a generic persona carrying their id."""

    kind = persona_kind(npc_id)
    persona = PERSONAS[kind]
    if kind is PersonaKind.GENERIC and isinstance(npc_id, str) and npc_id.strip():
        return persona.model_copy(update={"id": npc_id.strip()})
    return persona


def known_persona_ids() -> List[str]:
    return [kind.value for kind in PersonaKind if kind is not PersonaKind.GENERIC]
