########## Database Utilities ##########
# SQLite save slots for NPC memory blobs plus the engine's event log.

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import Engine, create_engine, text

from . import config

_ENGINE: Optional[Engine] = None


def _db_path() -> Path:
    """Return the configured sqlite path and ensure its directory exists."""

    # 1 Resolve the configured path under the project workspace.               # steps
    # 2 Create parent directories when needed.                                 # steps
    path = Path(config.DB_FILE).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_engine() -> Engine:
    """Create or reuse the SQLAlchemy engine."""

    global _ENGINE
    if _ENGINE is None:
        path = _db_path()
        _ENGINE = create_engine(f"sqlite:///{path}", echo=config.DB_ECHO, future=True)
    return _ENGINE


def reset_engine() -> None:
    """Dispose the cached engine so the next call picks up a new DB_FILE."""

    global _ENGINE
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None


def ensure_schema() -> None:
    """Create tables when they do not exist."""

    engine = get_engine()
    with engine.begin() as connection:
        for statement in _schema_statements():
            connection.execute(text(statement))


def _schema_statements() -> List[str]:
    """Provide the schema definitions for idempotent creation."""

    save_slots = """
    CREATE TABLE IF NOT EXISTS save_slots (
        slot TEXT,
        npc_id TEXT,
        blob TEXT,
        saved_at TEXT,
        PRIMARY KEY (slot, npc_id)
    )
    """
    event_log = """
    CREATE TABLE IF NOT EXISTS event_log (
        event_id INTEGER PRIMARY KEY AUTOINCREMENT,
        npc_id TEXT,
        target_id TEXT,
        type TEXT,
        data TEXT,
        ts TEXT
    )
    """
    return [save_slots, event_log]


########## Save Slots ##########


def save_memory_blob(slot: str, npc_id: str, blob: Dict[str, Any], saved_at: Optional[datetime] = None) -> None:
    """Insert or replace one NPC's serialized memory within a slot."""

    # 1 Store the blob as JSON text keyed by (slot, npc_id).                   # steps
    ensure_schema()
    engine = get_engine()
    statement = text(
        """
        INSERT INTO save_slots (slot, npc_id, blob, saved_at)
        VALUES (:slot, :npc_id, :blob, :saved_at)
        ON CONFLICT(slot, npc_id)
        DO UPDATE SET blob = :blob, saved_at = :saved_at
        """
    )
    parameters = {
        "slot": slot,
        "npc_id": npc_id,
        "blob": json.dumps(blob, ensure_ascii=False),
        "saved_at": saved_at.isoformat() if saved_at else None,
    }
    with engine.begin() as connection:
        connection.execute(statement, parameters)


def load_memory_blobs(slot: str) -> Dict[str, Any]:
    """Return every NPC blob in a slot, keyed by npc id.

    Rows whose text is not valid JSON come back as the raw string so the
    caller can decide how to recover; nothing here raises on bad data.
    """

    ensure_schema()
    engine = get_engine()
    statement = text(
        """
        SELECT npc_id, blob FROM save_slots
        WHERE slot = :slot
        ORDER BY npc_id
        """
    )
    with engine.begin() as connection:
        rows = connection.execute(statement, {"slot": slot}).mappings().all()
    blobs: Dict[str, Any] = {}
    for row in rows:
        raw = row["blob"]
        try:
            blobs[row["npc_id"]] = json.loads(raw) if raw else None
        except ValueError:
            blobs[row["npc_id"]] = raw
    return blobs


def list_slots() -> List[str]:
    ensure_schema()
    engine = get_engine()
    with engine.begin() as connection:
        rows = connection.execute(text("SELECT DISTINCT slot FROM save_slots ORDER BY slot")).fetchall()
    return [row[0] for row in rows]


def delete_slot(slot: str) -> int:
    """Remove a save slot; returns how many NPC rows were dropped."""

    ensure_schema()
    engine = get_engine()
    with engine.begin() as connection:
        result = connection.execute(text("DELETE FROM save_slots WHERE slot = :slot"), {"slot": slot})
    return int(result.rowcount or 0)


########## Event Log ##########


def log_event(npc_id: str, target_id: Optional[str], event_type: str, data_json: str, timestamp: datetime) -> None:
    """Persist an event to the event_log table."""

    ensure_schema()
    engine = get_engine()
    statement = text(
        """
        INSERT INTO event_log (npc_id, target_id, type, data, ts)
        VALUES (:npc_id, :target_id, :type, :data, :ts)
        """
    )
    parameters = {
        "npc_id": npc_id,
        "target_id": target_id,
        "type": event_type,
        "data": data_json,
        "ts": timestamp.isoformat(),
    }
    with engine.begin() as connection:
        connection.execute(statement, parameters)


def fetch_events(limit: Optional[int] = None, event_type: Optional[str] = None) -> List[Dict[str, str]]:
    """Return recent events oldest-first, optionally filtered by type."""

    # 1 Query newest rows first so LIMIT keeps the latest ones.                # steps
    # 2 Reverse into chronological order for export.                           # steps
    ensure_schema()
    engine = get_engine()
    query = "SELECT npc_id, target_id, type, data, ts FROM event_log"
    params: Dict[str, Any] = {}
    if event_type is not None:
        query += " WHERE type = :type"
        params["type"] = event_type
    query += " ORDER BY ts DESC, event_id DESC"
    if limit is not None:
        query += " LIMIT :limit"
        params["limit"] = limit
    with engine.begin() as connection:
        rows = connection.execute(text(query), params).mappings().all()
    payloads: List[Dict[str, str]] = []
    for row in rows:
        payloads.append(
            {
                "npc_id": row["npc_id"],
                "target_id": row["target_id"],
                "type": row["type"],
                "data": row["data"],
                "ts": row["ts"],
            }
        )
    payloads.reverse()
    return payloads


# TODO: add a schema_version table before the save blob layout changes.
