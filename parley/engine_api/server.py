########## Engine API ##########
# FastAPI surface over a single orchestrator; every mutation goes through it.

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..core.orchestrator import ConversationOrchestrator
from ..core.types import ProactivePrompt, RoomTickResult, TurnResponse, normalize_npc_id

app = FastAPI(title="Parley Engine API", version="0.1.0")
_orchestrator: ConversationOrchestrator = ConversationOrchestrator()


def reset_orchestrator(orchestrator: Optional[ConversationOrchestrator] = None) -> ConversationOrchestrator:
    """Swap in a fresh orchestrator (tests use this to control the clock)."""

    global _orchestrator
    _orchestrator = orchestrator or ConversationOrchestrator()
    return _orchestrator


class TurnRequest(BaseModel):
    npc_id: str
    message: str = ""
    game_state: Dict[str, Any] = Field(default_factory=dict)


class TickRequest(BaseModel):
    game_state: Dict[str, Any] = Field(default_factory=dict)


class OpenRequest(BaseModel):
    game_state: Dict[str, Any] = Field(default_factory=dict)
    player_input: Optional[str] = None


class DismissRequest(BaseModel):
    room_id: str


@app.post("/turn", response_model=TurnResponse)
def turn(request: TurnRequest) -> TurnResponse:
    """Run one conversational turn."""

    return _orchestrator.handle_turn(request.npc_id, request.message, request.game_state)


@app.post("/tick", response_model=RoomTickResult)
def tick(request: TickRequest) -> RoomTickResult:
    """Advance one room tick: priorities, interventions, new prompts."""

    return _orchestrator.room_tick(request.game_state)


@app.get("/prompts", response_model=List[ProactivePrompt])
def prompts() -> List[ProactivePrompt]:
    return _orchestrator.prompts.active_prompts()


@app.post("/prompts/{npc_id}/open", response_model=TurnResponse)
def open_prompt(npc_id: str, request: OpenRequest) -> TurnResponse:
    """Player clicked the NPC's prompt; start a conversation."""

    return _orchestrator.open_conversation(npc_id, request.game_state, request.player_input)


@app.post("/prompts/{npc_id}/dismiss")
def dismiss_prompt(npc_id: str, request: DismissRequest) -> Dict[str, str]:
    until = _orchestrator.dismiss_prompt(npc_id, request.room_id)
    return {"npc_id": npc_id, "room_id": request.room_id, "suppressed_until": until.isoformat()}


@app.get("/memory/{npc_id}")
def memory(npc_id: str) -> Dict[str, Any]:
    """Return the NPC's save blob plus a readable summary."""

    if normalize_npc_id(npc_id) not in _orchestrator.memory.known_npcs():
        raise HTTPException(status_code=404, detail=f"No memory for {npc_id}")
    return {
        "blob": _orchestrator.memory.serialize(npc_id),
        "summary": _orchestrator.memory.memory_summary(npc_id).model_dump(mode="json"),
        "stats": _orchestrator.conversation_stats(npc_id),
    }


@app.get("/interventions")
def interventions(limit: int = 10) -> Dict[str, Any]:
    """Recent firings and rule stats."""

    recent = _orchestrator.interventions.recent_patterns()[-limit:] if limit > 0 else []
    stats = _orchestrator.interventions.stats()
    average = stats.get("average_interval")
    stats["average_interval"] = average.total_seconds() if average is not None else None
    return {
        "recent": [record.model_dump(mode="json") for record in recent],
        "stats": stats,
    }


@app.post("/save/{slot}")
def save(slot: str) -> Dict[str, Any]:
    return {"slot": slot, "npcs": _orchestrator.save_game(slot)}


@app.post("/load/{slot}")
def load(slot: str) -> Dict[str, Any]:
    return {"slot": slot, "npcs": _orchestrator.load_game(slot)}
