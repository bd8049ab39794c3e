########## Persona Registry Tests ##########
# Lookup totality, aliases, and frozen reference data.

from __future__ import annotations

import pytest
from pydantic import ValidationError

from parley.core.personas import (
    PersonaKind,
    ToneVector,
    known_persona_ids,
    persona_kind,
    resolve_persona,
)


def test_known_ids_resolve_to_their_persona() -> None:
    """Each authored persona comes back under its own id."""

    for npc_id in known_persona_ids():
        persona = resolve_persona(npc_id)
        assert persona.id == npc_id
        assert persona.kind.value == npc_id


def test_wendell_aliases_share_one_voice() -> None:
    for alias in ("mr wendell", "Mr_Wendell", "MrWendell", " wendell "):
        assert persona_kind(alias) is PersonaKind.WENDELL


def test_unknown_ids_get_generic_persona_with_their_id() -> None:
    """Unknown NPCs never raise and keep their id."""

    persona = resolve_persona("albie")
    assert persona.kind is PersonaKind.GENERIC
    assert persona.id == "albie"
    assert resolve_persona(None).kind is PersonaKind.GENERIC
    assert resolve_persona("").kind is PersonaKind.GENERIC


def test_personas_are_read_only() -> None:
    persona = resolve_persona("ayla")
    with pytest.raises(ValidationError):
        persona.role = "someone else"  # type: ignore[misc]


def test_tone_axes_are_clamped() -> None:
    tone = ToneVector(warmth=1.7, humour=-0.2)
    assert tone.warmth == 1.0
    assert tone.humour == 0.0


def test_only_ayla_supports_ask_twice_and_fourth_wall() -> None:
    ayla = resolve_persona("ayla")
    assert ayla.supports_ask_twice
    assert ayla.speaking_style.fourth_wall_awareness
    for npc_id in ("polly", "dominic", "wendell", "chef"):
        persona = resolve_persona(npc_id)
        assert not persona.supports_ask_twice
        assert not persona.speaking_style.fourth_wall_awareness


def test_forbids_matches_topic_fragments() -> None:
    ayla = resolve_persona("ayla")
    assert ayla.forbids("puzzle solutions")
    assert ayla.forbids("SPOILERS")
    assert not ayla.forbids("cooking")
