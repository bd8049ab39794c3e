########## Context Builder ##########
# Turns a loose game-state mapping into an immutable ContextSnapshot.

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from . import config
from .logs import log_run_event
from .types import (
    ContextSnapshot,
    EnvironmentCues,
    PlayerState,
    SessionTelemetry,
    TimerState,
    as_utc,
    utc_now,
)

ZONE_MOODS = {
    "glitchZone": "chaotic",
    "gorstanZone": "mystical",
    "introZone": "technological",
    "latticeZone": "scholarly",
}
ROOM_MOODS = [
    ("reset", "urgent"),
    ("cafe", "cozy"),
    ("kitchen", "cozy"),
    ("library", "quiet"),
    ("maze", "confusing"),
]
ZONE_LIGHT = {"glitchZone": "flickering", "introZone": "artificial", "latticeZone": "soft"}
ZONE_TEMPERATURE = {"glitchZone": "unstable", "gorstanZone": "cool", "introZone": "controlled"}
QUEST_FLAGS = [
    ("seekingResetRoom", "find_reset_room"),
    ("pollyTakeoverActive", "stop_polly"),
    ("needsLibraryAccess", "access_library"),
    ("lookingForDominic", "find_dominic"),
]
CRITICAL_ROOMS = ("introreset", "resetroom", "blueswitch")
ZONE_HINTS = {
    "glitchZone": ["reality_unstable", "expect_glitches"],
    "latticeZone": ["knowledge_focus", "library_access"],
    "gorstanZone": ["mystical_realm", "ancient_wisdom"],
    "introZone": ["control_center", "tutorial_space"],
}
ROOM_HINTS = [
    ("reset", ["critical_choice", "point_of_no_return"]),
    ("library", ["research_needed", "information_available"]),
    ("cafe", ["social_space", "rest_area"]),
    ("maze", ["navigation_challenge", "patience_required"]),
]
ITEM_HINTS = {
    "schrodingerCoin": ["quantum_paradox", "choice_matters"],
    "napkin": ["research_clue", "library_relevant"],
}


def build_context(game_state: Any, now: Optional[datetime] = None) -> ContextSnapshot:
    """Build a snapshot from raw game state; bad input yields defaults."""

    # 1 Read "now" once so idle time and build stamp agree.                    # steps
    # 2 Copy every nested structure so callers cannot alias snapshot state.    # steps
    stamp = now or utc_now()
    if not isinstance(game_state, Mapping):
        if game_state is not None:
            log_run_event(f"context: game state was {type(game_state).__name__}, using defaults")
        return ContextSnapshot(built_at=stamp)
    try:
        return _build(game_state, stamp)
    except Exception as error:  # keep turns alive on odd host data
        log_run_event(f"context: failed to build snapshot ({error}), using defaults")
        return ContextSnapshot(built_at=stamp)


def _build(state: Mapping[str, Any], now: datetime) -> ContextSnapshot:
    room_id = _text(_first(state, "currentRoomId", "current_room_id", "room_id")) or config.UNKNOWN
    room = _current_room(state, room_id)
    zone = _text(room.get("zone")) or _text(state.get("zone")) or config.UNKNOWN

    flags: Dict[str, Any] = copy.deepcopy(_mapping(state.get("flags")))
    player_raw = _mapping(state.get("player"))
    for key, value in _mapping(player_raw.get("flags")).items():
        flags.setdefault(key, copy.deepcopy(value))

    inventory = _string_list(player_raw.get("inventory", state.get("inventory")))
    player = PlayerState(
        traits=_string_list(player_raw.get("traits")),
        inventory=list(inventory),
        npc_relationships=_number_map(_first(player_raw, "npcRelationships", "npc_relationships")),
        reputation=_number_map(player_raw.get("reputation")),
        flags=copy.deepcopy(flags),
    )

    return ContextSnapshot(
        room_id=room_id,
        zone=zone,
        npcs_present=_npc_ids(_first(state, "npcsInRoom", "npcs_present", "npcs")),
        inventory=inventory,
        timers=_timers(state, flags),
        flags=flags,
        recent_events=_recent_events(_first(state, "history", "recent_events")),
        session=_session(state, room_id, now),
        player=player,
        environment=EnvironmentCues(
            ambient_audio=_text(_first(room, "ambientAudio", "ambient_audio")) or None,
            room_mood=_room_mood(room_id, zone, flags),
            light_level=_light_level(room_id, zone),
            temperature=ZONE_TEMPERATURE.get(zone, "moderate"),
        ),
        active_quests=_active_quests(flags),
        game_stage=_text(state.get("stage")) or config.UNKNOWN,
        room_description=_description(room.get("description")),
        available_exits=_exits(room.get("exits")),
        room_items=_string_list(room.get("items")),
        built_at=now,
    )


########## Field Readers ##########


def _first(source: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in source and source[key] is not None:
            return source[key]
    return None


def _mapping(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    items: List[str] = []
    for entry in value:
        if isinstance(entry, str):
            items.append(entry)
        elif isinstance(entry, Mapping):
            name = _text(_first(entry, "id", "name"))
            if name:
                items.append(name)
    return items


def _number_map(value: Any) -> Dict[str, float]:
    numbers: Dict[str, float] = {}
    for key, entry in _mapping(value).items():
        if isinstance(entry, bool):
            continue
        if isinstance(entry, (int, float)):
            numbers[str(key)] = float(entry)
    return numbers


def _npc_ids(value: Any) -> List[str]:
    seen: List[str] = []
    for npc in _string_list(value):
        if npc not in seen:
            seen.append(npc)
    return seen


def _current_room(state: Mapping[str, Any], room_id: str) -> Dict[str, Any]:
    room = _mapping(state.get("room"))
    if room:
        return room
    room_map = _mapping(_first(state, "roomMap", "room_map"))
    return _mapping(room_map.get(room_id))


def _description(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(part) for part in value)
    return _text(value)


def _exits(value: Any) -> List[str]:
    if isinstance(value, Mapping):
        return [str(key) for key in value.keys()]
    return _string_list(value)


def _recent_events(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    events: List[str] = []
    for entry in list(value)[-config.RECENT_EVENT_LIMIT :]:
        text = entry.get("text") if isinstance(entry, Mapping) else entry
        if isinstance(text, str) and text:
            events.append(text)
    return events


def _duration(value: Any, unit_ms: bool) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return timedelta(0)
    if unit_ms:
        return timedelta(milliseconds=max(0.0, float(value)))
    return timedelta(seconds=max(0.0, float(value)))


def _timer_state(raw: Any) -> Optional[TimerState]:
    if isinstance(raw, TimerState):
        return raw.model_copy()
    if isinstance(raw, timedelta):
        return TimerState(active=True, remaining=raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return TimerState(active=True, remaining=_duration(raw, unit_ms=False))
    if not isinstance(raw, Mapping):
        return None
    if "timeRemaining" in raw:
        remaining = _duration(raw.get("timeRemaining"), unit_ms=True)
    else:
        remaining = _duration(_first(raw, "remaining", "remaining_seconds"), unit_ms=False)
    return TimerState(active=bool(raw.get("active", True)), remaining=remaining)


def _timers(state: Mapping[str, Any], flags: Mapping[str, Any]) -> Dict[str, TimerState]:
    """Named countdowns, including the legacy takeover flags."""

    timers: Dict[str, TimerState] = {}
    for name, raw in _mapping(state.get("timers")).items():
        timer = _timer_state(raw)
        if timer is not None:
            timers[str(name)] = timer
    if flags.get("pollyTakeoverActive") and config.PRIMARY_COUNTDOWN_TIMER not in timers:
        timers[config.PRIMARY_COUNTDOWN_TIMER] = TimerState(
            active=True,
            remaining=_duration(flags.get("pollyTakeoverTimeRemaining", 0), unit_ms=True),
        )
    return timers


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def _session(state: Mapping[str, Any], room_id: str, now: datetime) -> SessionTelemetry:
    metadata = _mapping(state.get("metadata"))
    visits = _mapping(_first(state, "roomVisitCount", "room_visit_count"))
    visit_count = visits.get(room_id, 0)
    if not isinstance(visit_count, int) or isinstance(visit_count, bool):
        visit_count = 0
    if "idleTime" in metadata:
        idle = _duration(metadata.get("idleTime"), unit_ms=True)
    else:
        last_action_time = _as_datetime(_first(metadata, "lastActionTime", "last_action_time"))
        idle = max(timedelta(0), now - last_action_time) if last_action_time else timedelta(0)
    return SessionTelemetry(
        play_time=_duration(metadata.get("playTime"), unit_ms=True),
        idle_time=idle,
        visit_count=max(0, visit_count),
        last_action=_text(_first(metadata, "lastAction", "last_action")) or config.UNKNOWN,
    )


########## Environment Tags ##########


def _room_mood(room_id: str, zone: str, flags: Mapping[str, Any]) -> str:
    if room_id == config.UNKNOWN and zone == config.UNKNOWN:
        return "neutral"
    if zone in ZONE_MOODS:
        return ZONE_MOODS[zone]
    lowered = room_id.lower()
    for fragment, mood in ROOM_MOODS:
        if fragment in lowered:
            return mood
    if flags.get("pollyTakeoverActive"):
        return "tense"
    if flags.get("dominicKilled"):
        return "somber"
    return "neutral"


def _light_level(room_id: str, zone: str) -> str:
    if zone in ZONE_LIGHT:
        return ZONE_LIGHT[zone]
    lowered = room_id.lower()
    if "hidden" in lowered:
        return "dim"
    if "lab" in lowered:
        return "bright"
    return "normal"


def _active_quests(flags: Mapping[str, Any]) -> List[str]:
    quests = [quest for flag, quest in QUEST_FLAGS if flags.get(flag)]
    if flags.get("hasSchrodingerCoin") and not flags.get("coinUsed"):
        quests.append("use_coin")
    return quests


########## Derived Views ##########


def is_puzzle_critical(context: ContextSnapshot) -> bool:
    """Whether the player is at a point where help matters most."""

    if context.countdown_below(config.TIMER_URGENT):
        return True
    lowered = context.room_id.lower()
    if any(room in lowered for room in CRITICAL_ROOMS):
        return True
    return context.zone == "glitchZone" and context.session.idle_time > config.STUCK_IDLE_TIME


def analyze_player_behavior(context: ContextSnapshot) -> Dict[str, Any]:
    """Rough read on whether the player is exploring, stuck, or rushing."""

    events = context.recent_events
    joined = " ".join(events).lower()
    idle = context.session.idle_time
    visits = context.session.visit_count

    is_exploring = len(context.available_exits) > 1 and visits < 3 and "help" not in joined
    repeating = len(events) > 2 and all(event == events[0] for event in events)
    is_stuck = idle > config.STUCK_IDLE_TIME or "help" in joined or "stuck" in joined or repeating
    is_rushing = (
        context.session.play_time > timedelta(0)
        and visits > 10
        and "look" not in joined
        and idle < timedelta(seconds=5)
    )
    needs_guidance = is_stuck or context.countdown_below(config.TIMER_CONCERNED) or "?" in joined

    confidence = 0.5
    if is_exploring and not is_stuck:
        confidence += 0.3
    if is_stuck:
        confidence -= 0.4
    if is_rushing and not is_stuck:
        confidence += 0.2
    if needs_guidance:
        confidence -= 0.2

    return {
        "is_exploring": is_exploring,
        "is_stuck": is_stuck,
        "is_rushing": is_rushing,
        "needs_guidance": needs_guidance,
        "confidence_level": max(0.0, min(1.0, confidence)),
    }


def location_hints(context: ContextSnapshot) -> List[str]:
    hints: List[str] = list(ZONE_HINTS.get(context.zone, []))
    lowered = context.room_id.lower()
    for fragment, tags in ROOM_HINTS:
        if fragment in lowered:
            hints.extend(tags)
    for item, tags in ITEM_HINTS.items():
        if item in context.inventory:
            hints.extend(tags)
    return hints
