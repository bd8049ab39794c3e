########## LLM Interface ##########
# Optional rephrasing of templated NPC lines through an OpenAI-compatible endpoint.

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from openai import OpenAI

from . import config
from .agentic_helpers import extract_line
from .logs import log_run_event
from .personas import Persona
from .types import ContextSnapshot

STUB_ENV_VAR = "PARLEY_LLM_STUB"


def stub_requested() -> bool:
    return os.getenv(STUB_ENV_VAR, "").lower() in {"1", "true", "yes"}


def _persona_brief(persona: Persona) -> Dict[str, Any]:
    """Voice facts the model may lean on; nothing about puzzles."""

    tone = persona.tone
    return {
        "role": persona.role,
        "tone": {
            "warmth": tone.warmth,
            "formality": tone.formality,
            "humour": tone.humour,
            "caution": tone.caution,
        },
        "catchphrases": persona.catchphrases[:3],
        "uses_contractions": persona.speaking_style.use_contractions,
        "sentence_length": persona.speaking_style.sentence_length.value,
        "never_discuss": persona.forbidden_topics,
    }


def build_polish_messages(npc_id: str, persona: Persona, draft: str, context: ContextSnapshot) -> List[Dict[str, str]]:
    """Chat messages asking for a light rewrite of one draft line."""

    scene = {
        "room": context.room_id,
        "zone": context.zone,
        "mood": context.environment.room_mood,
        "countdown_seconds": _countdown_seconds(context),
    }
    return [
        {"role": "system", "content": config.POLISH_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"NPC: {npc_id}\n"
                f"Voice:\n{json.dumps(_persona_brief(persona), ensure_ascii=False, indent=2)}\n"
                f"Scene:\n{json.dumps(scene, ensure_ascii=False)}\n"
                f"Draft line: {draft}"
            ),
        },
    ]


def _countdown_seconds(context: ContextSnapshot) -> Optional[int]:
    remaining = context.countdown_remaining()
    return int(remaining.total_seconds()) if remaining is not None else None


class BaseLLMClient:
    """Shared interface for concrete LLM clients."""

    def polish_line(self, npc_id: str, persona: Persona, draft: str, context: ContextSnapshot) -> str:
        raise NotImplementedError


class _ChatCompletionClient(BaseLLMClient):
    """Common request path for OpenAI-compatible chat endpoints."""

    model: str
    client: OpenAI

    def polish_line(self, npc_id: str, persona: Persona, draft: str, context: ContextSnapshot) -> str:
        # 1 Ask for a JSON rewrite and pull the line back out.                  # steps
        # 2 Any failure or empty answer hands back the draft untouched.          # steps
        messages = build_polish_messages(npc_id, persona, draft, context)
        try:
            content = self._run_completion(messages)
        except Exception as error:
            log_run_event(f"llm: polish failed for {npc_id} ({error}), keeping template")
            return draft
        if config.DEBUG_VERBOSE:
            log_run_event(f"llm: {npc_id} raw polish: {content}")
        line = extract_line(content)
        if not line:
            log_run_event(f"llm: empty polish for {npc_id}, keeping template")
            return draft
        return line

    def _run_completion(self, messages: List[Dict[str, str]]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=config.POLISH_TEMPERATURE,
            top_p=config.POLISH_TOP_P,
            max_tokens=config.POLISH_MAX_TOKENS,
            timeout=config.LLM_TIMEOUT_SECONDS,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class OllamaLLMClient(_ChatCompletionClient):
    """Talks to a local Ollama endpoint using the OpenAI compatible client."""

    def __init__(self) -> None:
        self.model = config.LLM_MODEL_NAME
        self.client = OpenAI(
            base_url=config.LLM_BASE_URL,
            api_key=config.LLM_API_KEY,
            timeout=config.LLM_TIMEOUT_SECONDS,
        )


class OpenRouterLLMClient(_ChatCompletionClient):
    """Talks to OpenRouter using OpenAI-compatible SDK."""

    def __init__(self) -> None:
        api_key = config.LLM_OPENROUTER_API_KEY
        if not api_key:
            raise RuntimeError("OPENROUTER_API_KEY is not set")
        self.model = config.LLM_OPENROUTER_MODEL
        self.client = OpenAI(
            base_url=config.LLM_OPENROUTER_BASE_URL,
            api_key=api_key,
            timeout=config.LLM_TIMEOUT_SECONDS,
        )


class StubLLMClient(BaseLLMClient):
    """Deterministic stand-in that returns drafts unchanged."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def polish_line(self, npc_id: str, persona: Persona, draft: str, context: ContextSnapshot) -> str:
        self.calls.append(npc_id)
        return draft


def LLMClient() -> BaseLLMClient:  # factory mirrors the other engine services
    """Return a working LLM client, falling back to the stub when needed."""

    if stub_requested():
        log_run_event(f"llm: {STUB_ENV_VAR} set, using stub client")
        return StubLLMClient()
    provider = config.LLM_PROVIDER.lower()
    try:
        if provider == "openrouter":
            return OpenRouterLLMClient()
        return OllamaLLMClient()
    except Exception as error:
        print(
            "[LLM] Failed to initialize LLM client, falling back to stub.\n"
            f"      Provider: {provider}\n"
            "      For ollama: ensure `ollama serve` is running and `LLM_BASE_URL` is reachable.\n"
            "      For openrouter: ensure OPENROUTER_API_KEY is set.\n"
            f"      Error: {error}"
        )
        log_run_event(f"llm: init failed for {provider} ({error}), using stub")
        return StubLLMClient()
