"""Proof event logger with an in-memory retry buffer.

Writes are best-effort relative to the live conversation: a failed write is
parked in the buffer and retried by a background ticker until it succeeds,
ages out, or runs out of attempts.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from proof_engine.config import settings
from proof_engine.models import ProofEvent, ProofReceipt, ProofStats, ValidationResult
from proof_engine.services.proof_store import DuplicateProofEventError, ProofEventStore
from proof_engine.utils import generate_response_hash, sanitize_excerpt

log = logging.getLogger(__name__)

STATS_WINDOW = 1000


@dataclass
class RetryEntry:
    event: ProofEvent
    first_seen: float
    attempts: int = 1


class RetryBuffer:
    """Failed writes keyed by response hash. Shared by every conversation."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.clock = clock
        self._entries: dict[str, RetryEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, response_hash: str) -> bool:
        with self._lock:
            return response_hash in self._entries

    def add(self, event: ProofEvent) -> RetryEntry:
        with self._lock:
            entry = self._entries.get(event.response_hash)
            if entry is None:
                entry = RetryEntry(event=event, first_seen=self.clock())
                self._entries[event.response_hash] = entry
            else:
                entry.attempts += 1
            return entry

    def record_attempt(self, response_hash: str) -> None:
        with self._lock:
            entry = self._entries.get(response_hash)
            if entry is not None:
                entry.attempts += 1

    def remove(self, response_hash: str) -> None:
        with self._lock:
            self._entries.pop(response_hash, None)

    def pending(self) -> list[RetryEntry]:
        with self._lock:
            return list(self._entries.values())

    def sweep(self) -> Optional[list[str]]:
        """Evict expired or exhausted entries.

        Returns the evicted hashes, or None when the buffer is busy and this
        cycle was skipped.
        """
        if not self._lock.acquire(blocking=False):
            log.debug("Retry buffer busy, skipping sweep")
            return None
        try:
            now = self.clock()
            evicted = []
            for key, entry in list(self._entries.items()):
                age = now - entry.first_seen
                if age > self.ttl_seconds or entry.attempts >= self.max_attempts:
                    del self._entries[key]
                    evicted.append(key)
                    log.error(
                        f"Abandoning proof event for chat {entry.event.chat_id} "
                        f"after {entry.attempts} attempts ({age:.0f}s old)"
                    )
            return evicted
        finally:
            self._lock.release()


class ProofEventLogger:
    """Persists checkpoint attempts and answers dashboard queries."""

    def __init__(
        self,
        store: ProofEventStore,
        ttl_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sweep_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.clock = clock
        self.buffer = RetryBuffer(
            ttl_seconds=settings.RETRY_TTL_SECONDS if ttl_seconds is None else ttl_seconds,
            max_attempts=settings.MAX_RETRY_ATTEMPTS if max_attempts is None else max_attempts,
            clock=clock,
        )
        self.sweep_interval_seconds = (
            settings.RETRY_SWEEP_INTERVAL_SECONDS if sweep_interval_seconds is None else sweep_interval_seconds
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -- background ticker ---------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="proof-retry-ticker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> "ProofEventLogger":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            try:
                self.retry_failed_events()
                self.buffer.sweep()
            except Exception as e:
                log.warning(f"Retry ticker cycle failed: {e}")

    # -- writes --------------------------------------------------------------

    def log_event(
        self,
        chat_id: str,
        student_id: str,
        concept: str,
        prompt: str,
        response: str,
        validation_result: ValidationResult,
        timestamp: Optional[str] = None,
    ) -> bool:
        """Store one checkpoint attempt. True when stored or already present."""
        try:
            if timestamp is None:
                timestamp = datetime.fromtimestamp(self.clock(), timezone.utc).isoformat()
            event = ProofEvent(
                chat_id=chat_id,
                student_id=student_id,
                concept=concept,
                prompt=prompt,
                student_response=response,
                student_response_excerpt=sanitize_excerpt(response, settings.EXCERPT_MAX_LENGTH),
                response_hash=generate_response_hash(chat_id, response, timestamp),
                validation_result=validation_result,
                classification=validation_result.classification,
            )
        except Exception as e:
            log.error(f"Could not build proof event for chat {chat_id}: {e}")
            return False

        try:
            self.store.insert(event)
        except DuplicateProofEventError:
            log.info(f"Duplicate proof event for chat {chat_id}, already stored")
            return True
        except Exception as e:
            log.warning(f"Proof event write failed for chat {chat_id}, buffering for retry: {e}")
            self.buffer.add(event)
            return False

        log.info(f"Logged proof event for chat {chat_id}: {concept} -> {event.classification}")
        return True

    def retry_failed_events(self) -> int:
        """Re-attempt buffered writes. Returns how many were stored."""
        stored = 0
        for entry in self.buffer.pending():
            key = entry.event.response_hash
            try:
                self.store.insert(entry.event)
            except DuplicateProofEventError:
                self.buffer.remove(key)
                continue
            except Exception as e:
                self.buffer.record_attempt(key)
                log.warning(f"Retry {entry.attempts} failed for chat {entry.event.chat_id}: {e}")
                continue
            self.buffer.remove(key)
            stored += 1
        if stored:
            log.info(f"Stored {stored} buffered proof events")
        return stored

    # -- queries -------------------------------------------------------------

    def get_student_history(self, student_id: str, limit: int = 50) -> list[ProofEvent]:
        try:
            return self.store.find_by_student(student_id, limit=limit)
        except Exception as e:
            log.warning(f"Could not load proof history for {student_id}: {e}")
            return []

    def get_chat_events(self, chat_id: str) -> list[ProofEvent]:
        try:
            return self.store.find_by_chat(chat_id)
        except Exception as e:
            log.warning(f"Could not load proof events for chat {chat_id}: {e}")
            return []

    def get_stats(self, student_id: str) -> ProofStats:
        events = self.get_student_history(student_id, limit=STATS_WINDOW)
        if not events:
            return ProofStats()
        counts = {"pass": 0, "partial": 0, "retry": 0}
        for event in events:
            counts[event.classification] += 1
        passed = [e.concept for e in reversed(events) if e.classification == "pass"]
        return ProofStats(
            total_attempts=len(events),
            pass_count=counts["pass"],
            partial_count=counts["partial"],
            retry_count=counts["retry"],
            pass_rate=counts["pass"] / len(events),
            concepts_proven=list(dict.fromkeys(passed)),
        )

    def get_receipts(self, student_id: str) -> list[ProofReceipt]:
        """First pass per concept with the retries it took, newest first."""
        events = self.get_student_history(student_id, limit=STATS_WINDOW)
        first_pass: dict[str, datetime] = {}
        retries: dict[str, int] = {}
        for event in reversed(events):
            if event.concept in first_pass:
                continue
            if event.classification == "pass":
                first_pass[event.concept] = event.created_at
            elif event.classification == "retry":
                retries[event.concept] = retries.get(event.concept, 0) + 1

        receipts = [
            ProofReceipt(concept=concept, date_proven=date, retries_before_pass=retries.get(concept, 0))
            for concept, date in first_pass.items()
        ]
        receipts.sort(key=lambda r: r.date_proven, reverse=True)
        return receipts
