########## Intent Classifier ##########
# Keyword scoring with soft context gating and lexical entity extraction.

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from pydantic import BaseModel, Field

from . import config
from .logs import log_run_event
from .types import ContextSnapshot, IntentResult


class IntentPattern(BaseModel):
    """Keyword lists and weighting for one intent label."""

    keywords: List[str]
    negative_keywords: List[str] = Field(default_factory=list)
    confidence_boost: float = 0.5
    requires_context: List[str] = Field(default_factory=list)


DEFAULT_PATTERNS: Dict[str, IntentPattern] = {
    "greeting": IntentPattern(
        keywords=["hello", "hi", "hey", "greetings", "good morning", "good day"],
        negative_keywords=["goodbye", "bye", "farewell"],
        confidence_boost=0.8,
    ),
    "help": IntentPattern(
        keywords=["help", "assist", "stuck", "lost", "confused", "guidance", "hint", "clue"],
        confidence_boost=0.9,
    ),
    "location": IntentPattern(
        keywords=["where", "location", "room", "place", "zone", "area", "go to", "find", "reach"],
        negative_keywords=["reset location", "save location"],
        confidence_boost=0.7,
    ),
    "inventory": IntentPattern(
        keywords=["inventory", "items", "carrying", "have", "possess", "belongings"],
        confidence_boost=0.8,
    ),
    "puzzle_hint": IntentPattern(
        keywords=["puzzle", "solution", "solve", "answer", "how do i", "what should i do"],
        confidence_boost=0.6,
    ),
    "lore": IntentPattern(
        keywords=["story", "history", "background", "lore", "why", "explain", "tell me about"],
        confidence_boost=0.5,
    ),
    "ethics": IntentPattern(
        keywords=["should i", "is it wrong", "ethical", "moral", "right thing", "consequences"],
        confidence_boost=0.7,
    ),
    "insult": IntentPattern(
        keywords=["stupid", "dumb", "useless", "terrible", "hate", "awful"],
        confidence_boost=0.8,
    ),
    "meta": IntentPattern(
        keywords=["game", "developer", "fourth wall", "real", "ai", "program", "code"],
        confidence_boost=0.6,
    ),
    "time_pressure": IntentPattern(
        keywords=["timer", "time", "hurry", "quick", "fast", "urgent", "polly", "takeover"],
        confidence_boost=0.8,
        requires_context=["timer_active"],
    ),
    "farewell": IntentPattern(
        keywords=["goodbye", "bye", "farewell", "see you", "talk later", "thanks"],
        negative_keywords=["hello", "hi"],
        confidence_boost=0.8,
    ),
}

ENTITY_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "room_names": [
        re.compile(r"\b(control(?:nexus|room)|crossing|hiddenlab|resetroom|library|cafe|maze)\b", re.I),
        re.compile(r"\b(gorstan|lattice|glitch|intro|london|maze)(?:zone|hub|village)?\b", re.I),
    ],
    "item_names": [
        re.compile(r"\b(coin|napkin|schrodinger|blue\s*(?:switch|button)|extrapolator)\b", re.I),
        re.compile(r"\b(coffee|cup|book|key|note|paper)\b", re.I),
    ],
    "npc_names": [
        re.compile(r"\b(ayla|polly|dominic|wendell|chef|albie|morthos|al|librarian)\b", re.I),
        re.compile(r"\bmr\.?\s*wendell\b", re.I),
    ],
    "game_mechanics": [
        re.compile(r"\b(timer|takeover|reset|teleport|save|load|flag|achievement)\b", re.I),
        re.compile(r"\b(lives|death|respawn|inventory|command)\b", re.I),
    ],
    "directions": [re.compile(r"\b(north|south|east|west|up|down|jump|sit|back|out)\b", re.I)],
}

SOLUTION_KEYWORDS = ("solution", "answer", "solve", "how do i")
PUZZLE_ROOM_FRAGMENTS = ("maze", "puzzle")


def _keyword_regex(keyword: str) -> Pattern[str]:
    parts = [re.escape(part) for part in keyword.lower().split()]
    return re.compile(r"\b" + r"\s+".join(parts) + r"\b")


def normalize_utterance(utterance: Any) -> str:
    if not isinstance(utterance, str):
        return ""
    return utterance.lower().strip()


class IntentClassifier:
    """Scores utterances against registered intent patterns."""

    def __init__(self, patterns: Optional[Dict[str, IntentPattern]] = None) -> None:
        # 1 Precompile keyword matchers once per classifier.                     # steps
        self.patterns: Dict[str, IntentPattern] = dict(patterns or DEFAULT_PATTERNS)
        self._compiled: Dict[str, Tuple[List[Pattern[str]], List[Pattern[str]]]] = {}
        for name, pattern in self.patterns.items():
            self._compile(name, pattern)

    def _compile(self, name: str, pattern: IntentPattern) -> None:
        self._compiled[name] = (
            [_keyword_regex(keyword) for keyword in pattern.keywords],
            [_keyword_regex(keyword) for keyword in pattern.negative_keywords],
        )

    def register_pattern(self, name: str, pattern: IntentPattern) -> None:
        """Add or replace an intent pattern."""

        self.patterns[name] = pattern
        self._compile(name, pattern)

    def classify(self, utterance: Any, context: Optional[ContextSnapshot] = None) -> IntentResult:
        """Return the best intent, or a low-confidence general result."""

        try:
            return self._classify(utterance, context or ContextSnapshot())
        except Exception as error:  # classification must never break a turn
            log_run_event(f"intent: classification failed ({error}), using general")
            return IntentResult()

    def _classify(self, utterance: Any, context: ContextSnapshot) -> IntentResult:
        # 1 Score every pattern and keep candidates above the floor.             # steps
        # 2 Re-rank near ties with context, then apply the threshold.            # steps
        text = normalize_utterance(utterance)
        entities = extract_entities(text)
        clues = context_clues(text, context)
        candidates = [
            IntentResult(intent=name, confidence=score, entities=entities, context_clues=clues)
            for name, score in self.score(text, context)
            if score > config.INTENT_CANDIDATE_FLOOR
        ]
        best = disambiguate(candidates, context)
        if best is None or best.confidence < config.INTENT_THRESHOLD:
            return IntentResult(
                intent=config.GENERAL_INTENT,
                confidence=config.GENERAL_CONFIDENCE,
                entities=entities,
                context_clues=clues,
            )
        return best

    def score(self, text: str, context: ContextSnapshot) -> List[Tuple[str, float]]:
        """Raw per-intent scores, highest first."""

        scores: List[Tuple[str, float]] = []
        for name, pattern in self.patterns.items():
            positives, negatives = self._compiled[name]
            confidence = 0.0
            matched = sum(1 for regex in positives if regex.search(text))
            if matched and positives:
                negative_hits = sum(1 for regex in negatives if regex.search(text))
                confidence = (matched / len(positives)) * pattern.confidence_boost
                confidence -= negative_hits * config.NEGATIVE_KEYWORD_PENALTY
            if pattern.requires_context and not _context_met(pattern.requires_context, context):
                confidence *= config.UNMET_CONTEXT_FACTOR
            scores.append((name, max(0.0, min(1.0, confidence))))
        scores.sort(key=lambda item: item[1], reverse=True)
        return scores


def _context_met(requirements: Iterable[str], context: ContextSnapshot) -> bool:
    for requirement in requirements:
        if requirement == "timer_active" and context.countdown_remaining() is None:
            return False
    return True


def extract_entities(utterance: Any) -> List[str]:
    """Collect room, item, NPC, mechanic, and direction mentions."""

    text = utterance if isinstance(utterance, str) else ""
    found: List[str] = []
    for patterns in ENTITY_PATTERNS.values():
        for regex in patterns:
            for match in regex.finditer(text):
                entity = " ".join(match.group(0).lower().split())
                if entity not in found:
                    found.append(entity)
    return found


def context_clues(utterance: str, context: ContextSnapshot) -> List[str]:
    """Free-text tags describing urgency, location, and question shape."""

    clues: List[str] = []
    remaining = context.countdown_remaining()
    if remaining is not None:
        if remaining < config.TIMER_URGENT:
            clues.append("urgent_time_pressure")
        elif remaining < config.TIMER_MODERATE:
            clues.append("moderate_time_pressure")
        else:
            clues.append("mild_time_pressure")

    room = context.room_id.lower()
    if "reset" in room:
        clues.append("in_critical_room")
    if "library" in room:
        clues.append("in_knowledge_area")
    if "maze" in room:
        clues.append("in_navigation_challenge")

    if "?" in utterance or "how" in utterance:
        clues.append("seeking_information")
    if "!" in utterance or "please" in utterance:
        clues.append("emotional_emphasis")
    word_count = len(utterance.split())
    if word_count > 10:
        clues.append("detailed_query")
    if word_count < 3:
        clues.append("brief_query")

    for prefix, clue in (
        ("what", "what_question"),
        ("where", "where_question"),
        ("how", "how_question"),
        ("why", "why_question"),
        ("should", "decision_question"),
    ):
        if utterance.startswith(prefix):
            clues.append(clue)
    return clues


def disambiguate(results: List[IntentResult], context: ContextSnapshot) -> Optional[IntentResult]:
    """Pick a winner, nudging near ties toward context-relevant intents."""

    if not results:
        return None
    ranked = sorted(results, key=lambda result: result.confidence, reverse=True)
    if len(ranked) == 1 or ranked[0].confidence > config.CLEAR_WINNER_CONFIDENCE:
        return ranked[0]
    boosted: List[IntentResult] = []
    room = context.room_id.lower()
    for result in ranked:
        bump = 0.0
        if result.intent == "time_pressure" and context.countdown_remaining() is not None:
            bump += config.DISAMBIGUATION_BOOST
        if result.intent == "puzzle_hint" and any(fragment in room for fragment in PUZZLE_ROOM_FRAGMENTS):
            bump += config.DISAMBIGUATION_BOOST
        boosted.append(result.model_copy(update={"confidence": min(1.0, result.confidence + bump)}))
    boosted.sort(key=lambda result: result.confidence, reverse=True)
    return boosted[0]


def is_puzzle_solution_request(utterance: Any, entities: Iterable[str]) -> Dict[str, Any]:
    """Detect direct requests for a named puzzle's solution."""

    text = normalize_utterance(utterance)
    known = set(entities or [])
    has_solution_keyword = any(keyword in text for keyword in SOLUTION_KEYWORDS)

    specific: Optional[str] = None
    if "coin" in known or "schrodinger" in text:
        specific = "schrodinger_coin"
    elif "blue switch" in known or "blue button" in known:
        specific = "blue_switch"
    elif "extrapolator" in known:
        specific = "library_extrapolator"
    elif "maze" in known:
        specific = "maze_navigation"

    urgency = 0.0
    if "urgent" in text or "hurry" in text:
        urgency += 0.5
    if "please" in text or "help" in text:
        urgency += 0.3
    if "stuck" in text or "lost" in text:
        urgency += 0.4

    return {
        "is_puzzle_request": has_solution_keyword and specific is not None,
        "specific_puzzle": specific,
        "urgency_level": min(1.0, urgency),
    }


_DEFAULT_CLASSIFIER: Optional[IntentClassifier] = None


def classify(utterance: Any, context: Optional[ContextSnapshot] = None) -> IntentResult:
    """Module-level convenience over a shared default classifier."""

    global _DEFAULT_CLASSIFIER
    if _DEFAULT_CLASSIFIER is None:
        _DEFAULT_CLASSIFIER = IntentClassifier()
    return _DEFAULT_CLASSIFIER.classify(utterance, context)
