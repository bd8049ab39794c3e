########## Text Logging ##########
# Lightweight, human-readable log lines for engine runs.

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from . import config

DEBUG_LOG: list[str] = []  # shared buffer for debug panels to read


def log_run_event(message: str) -> None:
    """Append a single readable line to the run log file."""

    if config.DEBUG_VERBOSE:
        DEBUG_LOG.append(message)
    if not config.LOG_TEXT_ENABLED:  # fast skip when disabled
        return
    log_dir = Path(config.LOG_TEXT_DIR)
    if not log_dir.is_absolute():
        log_dir = Path(__file__).resolve().parents[2] / log_dir
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / config.LOG_TEXT_FILENAME
        timestamp = datetime.now(timezone.utc).isoformat()
        line = f"[{timestamp}] {message}"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        _trim_log_file(log_path, config.LOG_TEXT_MAX_LINES)
    except OSError as error:
        print(f"[parley] could not write run log: {error}")


def _trim_log_file(log_path: Path, max_lines: int) -> None:
    """Keep the log file short and readable."""

    if max_lines <= 0 or not log_path.exists():
        return
    lines = log_path.read_text(encoding="utf-8").splitlines()
    if len(lines) <= max_lines:
        return
    trimmed = "\n".join(lines[-max_lines:]) + "\n"
    log_path.write_text(trimmed, encoding="utf-8")
