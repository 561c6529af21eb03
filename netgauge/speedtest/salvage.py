"""Recover a speedtest result object from noisy CLI output.

Speedtest CLIs run with progress enabled mix log lines and several JSON
documents into one stream. ``parse_json_output`` tries a strict parse first
and otherwise scans the text for balanced JSON blocks, keeping the one that
looks most like a final result.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

MAX_BLOCKS = 40
EXCERPT_CHARS = 200

_BLOCK_START = re.compile(r"[\{\[]")

# field -> points when the field is present and truthy
SCORE_RULES = (
    ("ping", 2),
    ("download", 3),
    ("upload", 3),
    ("isp", 1),
    ("interface", 1),
    ("server", 1),
)
RESULT_TYPE_SCORE = 10


@dataclass(frozen=True)
class ParseOutcome:
    ok: bool
    value: Any = None
    salvaged: bool = False
    error: Optional[str] = None
    message: str = ""
    head: str = ""
    tail: str = ""
    length: int = 0


def score_candidate(obj: Any) -> int:
    if not isinstance(obj, dict):
        return 0
    score = sum(points for name, points in SCORE_RULES if obj.get(name))
    if obj.get("type") == "result":
        score += RESULT_TYPE_SCORE
    return score


def _is_result(obj: Any) -> bool:
    return isinstance(obj, dict) and obj.get("type") == "result"


def pick_best_result(value: Any) -> Any:
    """Return the most result-like object nested in ``value``, or ``None``."""

    if isinstance(value, list):
        best = None
        best_score = 0
        for item in value:
            candidate = pick_best_result(item)
            if candidate is None:
                candidate = item
            if _is_result(candidate):
                return candidate
            score = score_candidate(candidate)
            if score > best_score:
                best_score = score
                best = candidate
        return best if best_score > 0 else None

    if isinstance(value, dict):
        if _is_result(value):
            return value
        for key in ("result", "data"):
            inner = value.get(key)
            if isinstance(inner, (dict, list)):
                picked = pick_best_result(inner)
                if picked is not None:
                    return picked
                break
        return value

    return None


def extract_json_block(text: str, start: int) -> Optional[Tuple[str, int]]:
    """Return the balanced block opening at ``start`` and its closing index."""

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start:index + 1], index
    return None


def extract_json_blocks(text: str, limit: int = MAX_BLOCKS) -> List[str]:
    blocks: List[str] = []
    pos = 0
    while pos < len(text) and len(blocks) < limit:
        match = _BLOCK_START.search(text, pos)
        if match is None:
            break
        found = extract_json_block(text, match.start())
        if found is None:
            pos = match.start() + 1
            continue
        block, end = found
        blocks.append(block)
        pos = end + 1
    return blocks


def extract_best_json_block(text: str) -> Any:
    best = None
    best_score = -1
    for block in extract_json_blocks(text):
        try:
            parsed = json.loads(block)
        except ValueError:
            continue
        candidate = pick_best_result(parsed)
        if candidate is None:
            candidate = parsed
        score = score_candidate(candidate)
        if score > best_score:
            best_score = score
            best = candidate
    return best


def parse_json_output(text: Optional[str]) -> ParseOutcome:
    stripped = (text or "").strip()
    if not stripped:
        return ParseOutcome(ok=False, error="empty_output")

    try:
        parsed = json.loads(stripped)
    except ValueError as exc:
        best = extract_best_json_block(stripped)
        if best is not None:
            return ParseOutcome(ok=True, value=best, salvaged=True)
        return ParseOutcome(
            ok=False,
            error="invalid_json",
            message=str(exc),
            head=stripped[:EXCERPT_CHARS],
            tail=stripped[-EXCERPT_CHARS:],
            length=len(stripped),
        )

    picked = pick_best_result(parsed)
    if picked is None:
        return ParseOutcome(ok=True, value=parsed)
    return ParseOutcome(ok=True, value=picked, salvaged=picked is not parsed)
