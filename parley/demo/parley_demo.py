########## Demo Runner ##########
# Loads the library seed, plays a scripted exchange, and exports run logs.

from __future__ import annotations

import copy
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core import config
from ..core.db import fetch_events
from ..core.orchestrator import ConversationOrchestrator

SEED_DIR = Path(__file__).resolve().parent / "seeds"
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# (npc, player line); None opens the conversation with a greeting
DEMO_SCRIPT: List[Tuple[str, Optional[str]]] = [
    ("ayla", None),
    ("ayla", "what is the solution?"),
    ("ayla", "what is the solution?"),
    ("mr wendell", "tell me about the history of this library"),
    ("ayla", "where should i go to find help"),
    ("morthos", "you are useless and stupid"),
]


########## Env Loader ##########


def _load_env_file() -> None:
    """Load .env key value pairs that are not already set."""

    env_path = PROJECT_ROOT / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        value = value.strip()
        if key and value and key not in os.environ:
            os.environ[key] = value


def load_seed_state(name: str = "game_state.json") -> Dict[str, Any]:
    with (SEED_DIR / name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _advance(game_state: Dict[str, Any], seconds: int) -> Dict[str, Any]:
    """Tick the seed's countdown and idle clocks forward."""

    state = copy.deepcopy(game_state)
    takeover = state.get("timers", {}).get(config.PRIMARY_COUNTDOWN_TIMER)
    if takeover:
        takeover["timeRemaining"] = max(0, takeover["timeRemaining"] - seconds * 1000)
    metadata = state.setdefault("metadata", {})
    metadata["idleTime"] = metadata.get("idleTime", 0) + seconds * 1000
    metadata["playTime"] = metadata.get("playTime", 0) + seconds * 1000
    return state


########## Exports ##########


def _export_dir() -> Path:
    export_dir = Path(config.DEFAULT_DIALOGUE_EXPORT)
    if not export_dir.is_absolute():
        export_dir = PROJECT_ROOT / export_dir
    export_dir.mkdir(parents=True, exist_ok=True)
    return export_dir


def export_run_log(entries: List[Dict[str, Any]]) -> Path:
    """Write the demo transcript as JSONL."""

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    file_path = _export_dir() / config.DEFAULT_DIALOGUE_FILENAME_TEMPLATE.format(timestamp=timestamp)
    with file_path.open("w", encoding="utf-8") as handle:
        for entry in entries:
            handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return file_path


########## Run ##########


def run_demo(game_state: Optional[Dict[str, Any]] = None, persist: bool = True) -> List[Dict[str, Any]]:
    """Play the scripted exchange with a room tick between turns."""

    # 1 Build one orchestrator for the whole run.                               # steps
    # 2 Alternate turns and ticks while the countdown drains.                   # steps
    # 3 Save memory into a demo slot so the run can be resumed.                 # steps
    _load_env_file()
    orchestrator = ConversationOrchestrator(persist_events=persist)
    state = game_state or load_seed_state()
    entries: List[Dict[str, Any]] = []
    for step, (npc_id, line) in enumerate(DEMO_SCRIPT):
        state = _advance(state, 15 if step else 0)
        if line is None:
            response = orchestrator.open_conversation(npc_id, state)
        else:
            response = orchestrator.handle_turn(npc_id, line, state)
        entries.append(
            {
                "kind": "turn",
                "npc_id": response.npc_id,
                "player": line or "Hello",
                "reply": response.message,
                "intent": response.intent.intent,
                "tone": response.features.emotional_tone.value,
                "follow_ups": response.follow_up_prompts,
            }
        )
        tick = orchestrator.room_tick(state)
        if tick.intervention.occurred:
            entries.append({"kind": "intervention", "rule_id": tick.intervention.rule_id, "messages": tick.intervention.messages})
        for prompt in tick.prompts:
            entries.append({"kind": "prompt", "npc_id": prompt.npc_id, "priority": prompt.priority.value, "message": prompt.message})
    if persist:
        orchestrator.save_game("demo")
    return entries


def main() -> None:
    """Entry point when running the demo script directly."""

    entries = run_demo()
    path = export_run_log(entries)
    for entry in entries:
        if entry["kind"] == "turn":
            print(f"> {entry['player']}\n{entry['npc_id']}: {entry['reply']}")
        elif entry["kind"] == "intervention":
            print("\n".join(f"  * {message}" for message in entry["messages"]))
        else:
            print(f"  [{entry['priority']}] {entry['npc_id']}: {entry['message']}")
    print(f"Logged {len(fetch_events())} events. Transcript saved to {path}.")


if __name__ == "__main__":
    main()
