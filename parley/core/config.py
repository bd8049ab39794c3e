from __future__ import annotations
import os

########## Core Config ##########
# Houses runtime constants for the Parley dialogue engine.

########## Variable Controls ##########
# All tweakable knobs live here so you can tune dialogue pacing without code changes.

# LLM polishing (off by default; templated lines are always the fallback)
LLM_POLISH_ENABLED: bool = os.getenv("PARLEY_LLM_POLISH", "").lower() in {"1", "true", "yes"}
LLM_PROVIDER: str = os.getenv("PARLEY_LLM_PROVIDER", "openrouter")
#LLM_PROVIDER: str = "ollama"

LLM_MODEL_NAME = "phi3:mini"
LLM_BASE_URL: str = "http://localhost:11434/v1"
LLM_API_KEY: str = "ollama"

LLM_OPENROUTER_MODEL: str = os.getenv("PARLEY_OPENROUTER_MODEL", "openai/gpt-4o-mini")
LLM_OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
LLM_OPENROUTER_API_KEY: str = os.getenv("OPENROUTER_API_KEY", "")
LLM_TIMEOUT_SECONDS: float = 15.0

POLISH_TEMPERATURE: float = 0.5
POLISH_TOP_P: float = 0.9
POLISH_MAX_TOKENS: int = 120

POLISH_SYSTEM_PROMPT: str = (
    "You lightly rephrase one line of NPC dialogue for a narrative game. "
    "Keep the meaning, the speaker's voice, and roughly the same length. "
    "Never add puzzle solutions or new facts. "
    'Return only JSON: {"line": "..."}.'
)

# Dialogue randomness
RANDOM_SEED: int = 202410

# Logging and debug
DEBUG_VERBOSE: bool = False  # mirrors log lines into DEBUG_LOG for panels
LOG_TEXT_ENABLED: bool = True  # toggle human-readable run log
LOG_TEXT_DIR: str = "logs"
LOG_TEXT_FILENAME: str = "parley.log"
LOG_TEXT_MAX_LINES: int = 800
DEFAULT_DIALOGUE_EXPORT: str = "parley/demo/run_logs"
DEFAULT_DIALOGUE_FILENAME_TEMPLATE: str = "run_{timestamp}.jsonl"

from datetime import timedelta
from pathlib import Path

########## Memory ##########

CONVERSATION_BUFFER_SIZE: int = 12
SERIALIZED_TURNS: int = 6
RECENT_CONVERSATION_TURNS: int = 6
EPISODIC_MEMORY_TTL: timedelta = timedelta(hours=24)
EPISODE_KEEP_SIGNIFICANCE: float = 0.7  # survives TTL expiry above this
EPISODE_PERSIST_SIGNIFICANCE: float = 0.5  # written to saves above this
DEFAULT_EPISODE_SIGNIFICANCE: float = 0.5
SEMANTIC_MEMORY_PERSIST_KEYS: list[str] = [
    "DominicKilled",
    "PlayerMetBefore",
    "ImportantChoicesMade",
    "EthicalStance",
]
RELATIONSHIP_MIN: float = -1.0
RELATIONSHIP_MAX: float = 1.0
DEFAULT_MOOD_INTENSITY: float = 0.3
MOOD_SHIFT_CHANCE: float = 0.25
MOOD_SHIFT_PRESSURE: float = 0.2

########## Intent ##########

INTENT_THRESHOLD: float = 0.3
INTENT_CANDIDATE_FLOOR: float = 0.1
GENERAL_INTENT: str = "general"
GENERAL_CONFIDENCE: float = 0.2
NEGATIVE_KEYWORD_PENALTY: float = 0.3
UNMET_CONTEXT_FACTOR: float = 0.5
DISAMBIGUATION_BOOST: float = 0.2
CLEAR_WINNER_CONFIDENCE: float = 0.8

########## Timers ##########
# Countdown thresholds shared by intent, synthesis, and prompts.

PRIMARY_COUNTDOWN_TIMER: str = "polly_takeover"
TIMER_CRITICAL: timedelta = timedelta(seconds=30)
TIMER_URGENT: timedelta = timedelta(seconds=60)
TIMER_CONCERNED: timedelta = timedelta(seconds=120)
TIMER_MODERATE: timedelta = timedelta(seconds=180)

########## Synthesis ##########

ASK_TWICE_SIMILARITY: float = 0.7
ASK_TWICE_WINDOW_TURNS: int = 4
ASK_TWICE_COMPARE_UTTERANCES: int = 2
VARIANT_CHANCE: float = 0.3
HUMOUR_THRESHOLD: float = 0.6
HUMOUR_CHANCE: float = 0.4
HEDGE_CAUTION_THRESHOLD: float = 0.6
HEDGE_CAUTION_CHANCE: float = 0.4
HEDGE_LOW_CONFIDENCE: float = 0.7
HEDGE_LOW_CONFIDENCE_CHANCE: float = 0.3
HEDGE_LOW_RELATIONSHIP: float = 0.2
HEDGE_LOW_RELATIONSHIP_CHANCE: float = 0.2
CORRECTION_CLOSE_RELATIONSHIP: float = 0.6
CORRECTION_CLOSE_CHANCE: float = 0.15
CORRECTION_PERSONA_CHANCE: float = 0.2
CORRECTION_BASE_CHANCE: float = 0.1
MEMORY_HOOK_MIN_TURNS: int = 3
MEMORY_HOOK_CHANCE: float = 0.25
TRUSTED_CALLBACK_CHANCE: float = 0.3
FOURTH_WALL_CHANCE: float = 0.1
WARM_RELATIONSHIP: float = 0.7
DISTANT_RELATIONSHIP: float = -0.3
MAX_FOLLOW_UP_PROMPTS: int = 2

########## Intervention ##########

HOURLY_WINDOW: timedelta = timedelta(hours=1)
MAX_RECENT_INTERVENTIONS: int = 50

########## Proactive Prompts ##########

PROMPT_MIN_GAP: timedelta = timedelta(seconds=15)
PROMPT_SUPPRESSION_WINDOW: timedelta = timedelta(minutes=2)
PROMPT_STALE_AGE: timedelta = timedelta(seconds=45)
STUCK_IDLE_TIME: timedelta = timedelta(seconds=30)
STUCK_REVISIT_COUNT: int = 5
PRIORITY_WEIGHTS: dict[str, int] = {"urgent": 4, "high": 3, "medium": 2, "low": 1}

########## Context ##########

RECENT_EVENT_LIMIT: int = 5
UNKNOWN: str = "unknown"

########## Persistence ##########

DB_FILE: str = os.getenv("PARLEY_DB_FILE", str(Path("parley/runtime_data/parley_saves.sqlite")))
DB_ECHO: bool = False
DEFAULT_SAVE_SLOT: str = "autosave"
