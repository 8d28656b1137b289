"""Simple JSON-based conversation state persistence with per-chat files."""

import json
import logging
from pathlib import Path
from typing import Optional

from proof_engine.models import ConversationState

log = logging.getLogger(__name__)


class ConversationStateStore:
    """Persists checkpoint state, one file per chat."""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir) / "states"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._health_check()

    def _health_check(self):
        """Verify state directory is writable."""
        try:
            test_file = self.data_dir / ".health_check"
            test_file.write_text("ok")
            test_file.unlink()
            log.info(f"State store OK: {self.data_dir}")
        except OSError as e:
            raise RuntimeError(f"State store error: {e}")

    def _state_path(self, chat_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in chat_id)
        return self.data_dir / f"state_{safe}.json"

    def get_state(self, chat_id: str) -> Optional[ConversationState]:
        """Saved state for a chat, or None when missing or unreadable."""
        path = self._state_path(chat_id)
        if not path.exists():
            return None
        try:
            return ConversationState.model_validate(json.loads(path.read_text()))
        except (json.JSONDecodeError, ValueError) as e:
            log.warning(f"Ignoring corrupted state file {path.name}: {e}")
            return None

    def save_state(self, chat_id: str, state: ConversationState):
        """Persist the state returned by the last turn, camelCase keys."""
        path = self._state_path(chat_id)
        path.write_text(json.dumps(state.model_dump(mode="json", by_alias=True), indent=2))

    def clear(self):
        for state_file in self.data_dir.glob("state_*.json"):
            state_file.unlink()
