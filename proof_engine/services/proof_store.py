"""JSON-file persistence for proof events.

Enforces a unique ``(chat_id, response_hash)`` constraint the way a database
index would: inserting a colliding event raises ``DuplicateProofEventError``.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from proof_engine.models import ProofEvent


class ProofStoreError(Exception):
    """Raised when a proof event cannot be written or read."""


class DuplicateProofEventError(ProofStoreError):
    """An event with the same chat id and response hash already exists."""


class ProofEventStore:
    """Append-only proof event table in a single JSON file (thread-safe)."""

    def __init__(self, path: str | Path = "data/proof_events.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data: Any = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise ProofStoreError(f"Corrupted proof store {self.path}: {e}") from e
        return data if isinstance(data, list) else []

    def _save(self, rows: list[dict[str, Any]]) -> None:
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(rows, indent=2))
        tmp.replace(self.path)

    def insert(self, event: ProofEvent) -> ProofEvent:
        with self._lock:
            rows = self._load()
            for row in rows:
                if row["chat_id"] == event.chat_id and row["response_hash"] == event.response_hash:
                    raise DuplicateProofEventError(
                        f"Proof event already stored for chat {event.chat_id} ({event.response_hash[:12]})"
                    )
            rows.append(event.model_dump(mode="json"))
            try:
                self._save(rows)
            except OSError as e:
                raise ProofStoreError(f"Could not write {self.path}: {e}") from e
        return event

    def _events(self) -> list[ProofEvent]:
        with self._lock:
            rows = self._load()
        return [ProofEvent.model_validate(row) for row in rows]

    def find_by_student(self, student_id: str, limit: int | None = None) -> list[ProofEvent]:
        """Events for a student, newest first."""
        matching = [(i, e) for i, e in enumerate(self._events()) if e.student_id == student_id]
        # Insertion order breaks timestamp ties.
        matching.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        events = [e for _, e in matching]
        return events[:limit] if limit is not None else events

    def find_by_chat(self, chat_id: str) -> list[ProofEvent]:
        """Events for a chat, oldest first."""
        matching = [(i, e) for i, e in enumerate(self._events()) if e.chat_id == chat_id]
        matching.sort(key=lambda pair: (pair[1].created_at, pair[0]))
        return [e for _, e in matching]

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
