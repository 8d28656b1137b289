"""Persistence for per-chat proof engine trace events."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

Trace = list[dict[str, Any]]


class TraceStore:
    """Store middleware trace events (classifier, checkpoint, validator) in a JSON file."""

    def __init__(self, path: str | Path = "data/proof_traces.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> dict[str, Trace]:
        if not self.path.exists():
            return {}
        try:
            data: Any = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, traces: dict[str, Trace]) -> None:
        self.path.write_text(json.dumps(traces, indent=2, default=str))

    def append_events(self, chat_id: str, events: Trace) -> dict[str, Trace]:
        """Append events to a chat's trace and return merged data."""
        traces = self.load()
        traces.setdefault(chat_id, []).extend(events)
        self.save(traces)
        return traces

    def get_chat(self, chat_id: str) -> Trace:
        return self.load().get(chat_id, [])
