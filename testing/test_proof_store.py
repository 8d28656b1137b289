"""Tests for the JSON proof event store."""

import json

import pytest

from proof_engine.models import ProofEvent, ValidationResult
from proof_engine.services.proof_store import DuplicateProofEventError, ProofEventStore, ProofStoreError


def _event(chat_id="chat-1", student_id="student-1", response_hash="h1", classification="pass"):
    return ProofEvent(
        chat_id=chat_id,
        student_id=student_id,
        concept="density",
        prompt="In your own words, explain density.",
        student_response="Density is mass per volume.",
        student_response_excerpt="Density is mass per volume.",
        response_hash=response_hash,
        validation_result=ValidationResult(classification=classification),
        classification=classification,
    )


def test_insert_and_find_by_chat(tmp_path):
    store = ProofEventStore(tmp_path / "events.json")

    store.insert(_event(response_hash="a"))
    store.insert(_event(response_hash="b", classification="retry"))

    events = store.find_by_chat("chat-1")
    assert [e.response_hash for e in events] == ["a", "b"]
    assert events[1].validation_result.classification == "retry"


def test_unique_chat_and_hash(tmp_path):
    store = ProofEventStore(tmp_path / "events.json")
    store.insert(_event())

    with pytest.raises(DuplicateProofEventError):
        store.insert(_event())

    # Same hash in another chat is a different row.
    store.insert(_event(chat_id="chat-2"))
    assert len(json.loads(store.path.read_text())) == 2


def test_find_by_student_newest_first_with_limit(tmp_path):
    store = ProofEventStore(tmp_path / "events.json")
    for i in range(4):
        store.insert(_event(response_hash=f"h{i}"))
    store.insert(_event(student_id="someone-else", response_hash="x"))

    events = store.find_by_student("student-1", limit=2)

    assert [e.response_hash for e in events] == ["h3", "h2"]


def test_corrupted_file_raises_store_error(tmp_path):
    path = tmp_path / "events.json"
    path.write_text("{not json")
    store = ProofEventStore(path)

    with pytest.raises(ProofStoreError):
        store.insert(_event())


def test_clear_removes_file(tmp_path):
    store = ProofEventStore(tmp_path / "events.json")
    store.insert(_event())

    store.clear()

    assert store.find_by_chat("chat-1") == []
