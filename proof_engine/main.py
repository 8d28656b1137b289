#!/usr/bin/env python3
"""Proof engine - interactive console session.

Usage:
    python -m proof_engine.main                          # Chat on stdin
    python -m proof_engine.main --grade 10               # High school depth
    python -m proof_engine.main --chat-id demo-1         # Resume a saved chat
    python -m proof_engine.main --script turns.txt       # One student turn per line
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional

from proof_engine.config import settings
from proof_engine.middleware import ProofEngineMiddleware
from proof_engine.models import ConversationState, Message, MessageMetadata
from proof_engine.proof_logger import ProofEventLogger
from proof_engine.services.database import ConversationStateStore
from proof_engine.services.llm import LLMService
from proof_engine.services.proof_store import ProofEventStore
from proof_engine.services.trace_store import TraceStore
from proof_engine.validator import UnderstandingValidator

log = logging.getLogger(__name__)


def _assistant_message(text: str, metadata: dict) -> Message:
    return Message(
        role="assistant",
        content=text,
        metadata=MessageMetadata(
            is_proof_checkpoint=bool(metadata.get("is_proof_checkpoint")),
            is_validation_feedback=bool(metadata.get("is_validation_feedback")),
            is_celebration=bool(metadata.get("is_celebration")),
            concept=metadata.get("concept"),
        ),
    )


def run_session(
    engine: ProofEngineMiddleware,
    state_store: ConversationStateStore,
    trace_store: TraceStore,
    chat_id: str,
    student_id: str,
    turns: Iterable[str],
    grade_level: Optional[int] = None,
    output: Callable[[str], None] = print,
) -> ConversationState:
    """Feed student turns through the engine, persisting state and traces per turn."""
    state = state_store.get_state(chat_id) or ConversationState()
    if grade_level is not None:
        state = state.model_copy(update={"grade_level": grade_level})

    history: list[Message] = []
    for student_text in turns:
        student_text = student_text.strip()
        if not student_text:
            continue
        if student_text.lower() in ("quit", "exit"):
            break

        result = engine.process_message(
            student_text, state, history[-settings.HISTORY_WINDOW:], chat_id, student_id
        )
        state = result.state
        state_store.save_state(chat_id, state)

        history.append(Message(role="user", content=student_text))
        history.append(_assistant_message(result.assistant_text, result.metadata))

        if result.metadata.get("is_proof_checkpoint") and not result.metadata.get("is_validation_feedback"):
            agent = "Checkpoint"
        elif result.metadata.get("is_validation_feedback"):
            agent = "Validator"
        else:
            agent = "Tutor"
        trace_store.append_events(
            chat_id,
            [
                {
                    "agent": agent,
                    "mode": state.mode,
                    "teaching_exchange_count": state.teaching_exchange_count,
                    "detail": dict(result.metadata),
                }
            ],
        )
        output(f"Tutor: {result.assistant_text}")

    stats = engine.get_proof_stats(student_id)
    log.info(
        f"Session complete: {stats.total_attempts} attempts, pass rate {stats.pass_rate:.0%}, "
        f"proven={', '.join(stats.concepts_proven) or 'none'}"
    )
    return state


def _stdin_turns() -> Iterable[str]:
    while True:
        try:
            yield input("You: ")
        except EOFError:
            return


def main():
    parser = argparse.ArgumentParser(description="Proof engine console session")
    parser.add_argument("--chat-id", type=str, default="console")
    parser.add_argument("--student-id", type=str, default="console-student")
    parser.add_argument(
        "--grade",
        type=int,
        default=settings.DEFAULT_GRADE_LEVEL,
        help="Student grade level (default: 8)",
    )
    parser.add_argument("--script", type=Path, default=None, help="File with one student turn per line")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s: %(message)s")

    if not settings.OPENAI_API_KEY:
        log.error("OPENAI_API_KEY is not set; the tutor needs a model to teach")
        return 1

    llm = LLMService()
    data_dir = Path(settings.DATA_DIR)
    state_store = ConversationStateStore(data_dir=str(data_dir))
    trace_store = TraceStore(data_dir / "proof_traces.json")

    with ProofEventLogger(ProofEventStore(data_dir / "proof_events.json")) as proof_logger:
        engine = ProofEngineMiddleware(
            call_tutor=llm.call_tutor,
            validator=UnderstandingValidator(call_ai=llm.call_evaluation),
            logger=proof_logger,
            call_ai=llm.call_evaluation,
        )
        turns = args.script.read_text().splitlines() if args.script else _stdin_turns()
        run_session(
            engine, state_store, trace_store, args.chat_id, args.student_id, turns, grade_level=args.grade
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
