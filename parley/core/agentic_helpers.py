########## Agentic Helpers ##########
# Cleans chatty model output down to a single speakable NPC line.

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterator, Optional

THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", flags=re.S | re.I)
CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", flags=re.S | re.I)
SPEAKER_TAG_RE = re.compile(r"^\s*[A-Za-z_ ]{1,24}:\s+")
WRAPPING_QUOTES = "\"'“”‘’"


def strip_think(text: Optional[str]) -> str:
    """Drop <think> reasoning blocks some models emit before answering."""

    return THINK_BLOCK_RE.sub("", text or "").strip()


def first_code_block(text: str) -> Optional[str]:
    match = CODE_FENCE_RE.search(text or "")
    return match.group(1).strip() if match else None


def extract_balanced_json(text: str) -> Optional[str]:
    """Return the first balanced {...} span, ignoring braces inside strings."""

    payload = text or ""
    start = payload.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(payload)):
        char = payload[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return payload[start : index + 1]
    return None


def _json_candidates(cleaned: str) -> Iterator[str]:
    fence = first_code_block(cleaned)
    if fence:
        yield fence
    balanced = extract_balanced_json(cleaned)
    if balanced:
        yield balanced
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        yield cleaned[first : last + 1]


def parse_json_loose(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Try fenced, balanced, then outermost-brace JSON; None when all fail."""

    cleaned = strip_think(raw)
    for candidate in _json_candidates(cleaned):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def tidy_line(text: str) -> str:
    """Collapse whitespace, drop a leading speaker tag and wrapping quotes."""

    line = " ".join((text or "").split())
    line = SPEAKER_TAG_RE.sub("", line, count=1)
    while len(line) >= 2 and line[0] in WRAPPING_QUOTES and line[-1] in WRAPPING_QUOTES:
        line = line[1:-1].strip()
    return line


def extract_line(raw: Optional[str], key: str = "line") -> str:
    """Pull the spoken line out of a model reply.

    JSON replies use ``key``; plain-text replies fall back to their first
    non-empty paragraph. Returns an empty string when nothing usable remains.
    """

    parsed = parse_json_loose(raw)
    if parsed is not None:
        value = parsed.get(key)
        return tidy_line(value) if isinstance(value, str) else ""
    cleaned = strip_think(raw)
    if "{" in cleaned:
        return ""
    for paragraph in cleaned.split("\n\n"):
        if paragraph.strip():
            return tidy_line(paragraph)
    return ""
