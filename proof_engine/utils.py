"""Shared helpers: excerpts, idempotency hashes, bounded random ints, JSON parsing."""

from __future__ import annotations

import hashlib
import json
import random
import re
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def sanitize_excerpt(text: str, max_length: int = 200) -> str:
    """Strip control characters, collapse whitespace and cap the length.

    The returned excerpt never exceeds ``max_length`` characters, including
    the trailing ellipsis added when the text is cut.
    """
    if not text:
        return ""
    sanitized = _CONTROL_CHARS.sub("", text)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    if len(sanitized) > max_length:
        cut = max(0, max_length - 3)
        sanitized = sanitized[:cut].rstrip() + "..."
    return sanitized


def generate_response_hash(chat_id: str, student_response: str, timestamp: str) -> str:
    """Hex SHA-256 of ``chat_id|response|timestamp`` for deduplicating proof events."""
    data = f"{chat_id}|{student_response}|{timestamp}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def random_int(low: int, high: int, rng: Optional[random.Random] = None) -> int:
    """Uniform random integer in [low, high], inclusive on both ends."""
    return (rng or random).randint(low, high)


def parse_json_payload(raw_text: str) -> Any:
    """Parse model output as JSON, tolerating markdown code fences.

    Raises ``ValueError`` when nothing parseable is found.
    """
    if raw_text is None:
        raise ValueError("empty model output")
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        pass
    # Extract JSON from markdown code blocks if present
    match = _CODE_FENCE.search(raw_text)
    if match:
        raw_text = match.group(1)
    else:
        start, end = raw_text.find("{"), raw_text.rfind("}")
        if start != -1 and end > start:
            raw_text = raw_text[start : end + 1]
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ValueError(f"model output is not valid JSON: {e}") from e


def format_teaching_text(messages, limit: Optional[int] = None, sep: str = "\n\n") -> str:
    """Join the content of assistant messages, optionally only the last ``limit``."""
    assistant = [m for m in messages if m.role == "assistant"]
    if limit is not None:
        assistant = assistant[-limit:]
    return sep.join(m.content for m in assistant)
