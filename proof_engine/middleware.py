"""Proof engine middleware: the teaching/checkpoint state machine.

One call to ``process_message`` handles one student turn:

teaching mode
    call the tutor, classify the reply, count it if it teaches, and enter
    checkpoint mode with an explain-back prompt when the schedule says so.
checkpoint mode
    treat the student text as an explain-back attempt: validate, log,
    record the result and answer adaptively. Only a pass returns to
    teaching mode. Nothing in checkpoint mode touches the teaching count.

The caller's state is never mutated; a new state is returned each turn.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from pydantic import ValidationError

from proof_engine.adaptive_response import AdaptiveResponseGenerator
from proof_engine.checkpoint_frequency import should_trigger_checkpoint, update_checkpoint_target
from proof_engine.exchange_classifier import ModelCallBudget, classify_exchange
from proof_engine.models import (
    ConversationState,
    Message,
    ProcessedResponse,
    ProofEvent,
    ProofReceipt,
    ProofStats,
    ValidationResult,
)
from proof_engine.proof_logger import ProofEventLogger
from proof_engine.prompt_generator import generate_explain_back_prompt
from proof_engine.validator import UnderstandingValidator

log = logging.getLogger(__name__)

CallTutor = Callable[[str, Sequence[Message], int], str]

TEACHING_CONTEXT_SIZE = 4
FALLBACK_PROMPT = "Explain the concept in your own words."
UNNAMED_CONCEPT = "general concept"
RECOVERY_TEXT = "Let's keep going. Could you tell me a bit more about what you're thinking?"


def normalize_state(state: Any) -> ConversationState:
    """Fresh ``ConversationState`` from whatever the chat store handed us.

    Missing fields get defaults; fields that fail validation are dropped and
    defaulted rather than failing the turn.
    """
    if state is None:
        return ConversationState()
    if isinstance(state, ConversationState):
        data = state.model_dump()
    elif isinstance(state, dict):
        data = dict(state)
    else:
        log.warning(f"Unsupported state type {type(state).__name__}, starting fresh")
        return ConversationState()

    try:
        return ConversationState.model_validate(data)
    except ValidationError as e:
        bad = {err["loc"][0] for err in e.errors() if err["loc"]}
        log.warning(f"Dropping invalid state fields {sorted(map(str, bad))}")
        cleaned = {k: v for k, v in data.items() if k not in bad}
        try:
            return ConversationState.model_validate(cleaned)
        except ValidationError:
            return ConversationState()


class ProofEngineMiddleware:
    def __init__(
        self,
        call_tutor: CallTutor,
        validator: UnderstandingValidator,
        logger: ProofEventLogger,
        call_ai: Optional[Callable[[str], str]] = None,
        adaptive_responses: Optional[AdaptiveResponseGenerator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.call_tutor = call_tutor
        self.validator = validator
        self.logger = logger
        self.call_ai = call_ai
        self.adaptive_responses = adaptive_responses or AdaptiveResponseGenerator(call_ai)
        self.rng = rng

    def process_message(
        self,
        student_text: str,
        state: Any,
        recent_messages: Sequence[Message],
        chat_id: str,
        student_id: str,
    ) -> ProcessedResponse:
        """Handle one student turn. Never raises."""
        current = normalize_state(state)
        try:
            if current.is_in_checkpoint_mode:
                return self._handle_checkpoint(student_text, current, recent_messages, chat_id, student_id)
            return self._handle_teaching(student_text, current, recent_messages)
        except Exception as e:
            log.exception(f"Proof engine turn failed for chat {chat_id}: {e}")
            return ProcessedResponse(
                assistant_text=RECOVERY_TEXT,
                state=normalize_state(state),
                metadata={"error": True},
            )

    # -- teaching mode -------------------------------------------------------

    def _handle_teaching(
        self, student_text: str, state: ConversationState, recent_messages: Sequence[Message]
    ) -> ProcessedResponse:
        assistant_text = self.call_tutor(student_text, recent_messages, state.grade_level)
        classification = classify_exchange(
            Message(role="assistant", content=assistant_text),
            call_ai=self.call_ai,
            budget=ModelCallBudget(),
        )
        if classification.is_teaching:
            state.teaching_exchange_count += 1

        decision = should_trigger_checkpoint(state, self.rng)
        log.debug(
            f"Teaching turn: teaching={classification.is_teaching} ({classification.reason}); "
            f"{decision.reason}"
        )
        if classification.is_teaching and decision.trigger:
            return self._trigger_checkpoint(state, recent_messages, assistant_text, classification.reason)

        state.next_checkpoint_target = decision.next_target
        state.checkpoint_target = decision.next_target
        return ProcessedResponse(
            assistant_text=assistant_text,
            state=state,
            metadata={
                "is_teaching_exchange": classification.is_teaching,
                "classifier_reason": classification.reason,
                "checkpoint_reason": decision.reason,
            },
        )

    def _trigger_checkpoint(
        self,
        state: ConversationState,
        recent_messages: Sequence[Message],
        teaching_text: str,
        classifier_reason: str,
    ) -> ProcessedResponse:
        teaching_context = [m for m in recent_messages if m.role == "assistant"][-(TEACHING_CONTEXT_SIZE - 1):]
        teaching_context.append(Message(role="assistant", content=teaching_text))

        concept = next(
            (m.metadata.concept for m in reversed(teaching_context) if m.metadata and m.metadata.concept),
            None,
        )
        prompt = generate_explain_back_prompt(teaching_context, state.grade_level, concept, self.call_ai)
        if concept is None and prompt.referenced_concepts:
            concept = prompt.referenced_concepts[0]

        state.is_in_checkpoint_mode = True
        state.mode = "checkpoint"
        state.current_checkpoint_concept = concept
        state.last_checkpoint_prompt = prompt.prompt
        state.last_checkpoint_at_exchange = state.teaching_exchange_count
        state.last_checkpoint_at = datetime.now(timezone.utc)
        state.next_checkpoint_target = update_checkpoint_target(state.last_three_validation_results, self.rng)
        state.checkpoint_target = state.next_checkpoint_target

        log.info(f"Checkpoint triggered at exchange {state.teaching_exchange_count} (concept={concept})")
        return ProcessedResponse(
            assistant_text=f"{teaching_text}\n\n{prompt.prompt}",
            state=state,
            metadata={
                "is_teaching_exchange": True,
                "is_proof_checkpoint": True,
                "concept": concept,
                "classifier_reason": classifier_reason,
                "used_ai_prompt": prompt.used_ai,
            },
        )

    # -- checkpoint mode -----------------------------------------------------

    def _handle_checkpoint(
        self,
        student_text: str,
        state: ConversationState,
        recent_messages: Sequence[Message],
        chat_id: str,
        student_id: str,
    ) -> ProcessedResponse:
        teaching_context = [m for m in recent_messages if m.role == "assistant"][-TEACHING_CONTEXT_SIZE:]
        prompt = state.last_checkpoint_prompt or FALLBACK_PROMPT

        result = self.validator.validate(
            student_text,
            teaching_context,
            prompt,
            state.grade_level,
            state.current_checkpoint_concept,
        )

        logged = self.logger.log_event(
            chat_id=chat_id,
            student_id=student_id,
            concept=state.current_checkpoint_concept or "unknown",
            prompt=state.last_checkpoint_prompt or "",
            response=student_text,
            validation_result=result,
        )

        state.last_three_validation_results = (state.last_three_validation_results + [result.classification])[-3:]
        state.validation_history.append(result.classification)

        response = self.adaptive_responses.generate(result, state, teaching_context)
        metadata: dict[str, Any] = {
            "is_validation_feedback": True,
            "classification": result.classification,
            "concept": state.current_checkpoint_concept,
            "proof_event_logged": logged,
            "validation": validation_summary(result),
        }

        if result.classification == "pass":
            self._record_pass(state)
            metadata["is_celebration"] = True
        elif result.classification == "retry":
            if response.follow_up_prompt:
                state.last_checkpoint_prompt = response.follow_up_prompt
            metadata["is_proof_checkpoint"] = True

        log.info(f"Checkpoint attempt in chat {chat_id}: {result.classification}")
        return ProcessedResponse(assistant_text=response.content, state=state, metadata=metadata)

    def _record_pass(self, state: ConversationState) -> None:
        concept = state.current_checkpoint_concept or UNNAMED_CONCEPT
        if concept not in state.concepts_proven_this_session:
            state.concepts_proven_this_session.append(concept)
        if concept not in state.concepts_proven:
            state.concepts_proven.append(concept)
        state.concepts_proven_count = len(state.concepts_proven)

        state.is_in_checkpoint_mode = False
        state.mode = "teaching"
        state.current_checkpoint_concept = None
        state.last_checkpoint_prompt = None
        state.next_checkpoint_target = update_checkpoint_target(state.last_three_validation_results, self.rng)
        state.checkpoint_target = state.next_checkpoint_target

    # -- query surface -------------------------------------------------------

    def get_student_proof_history(self, student_id: str, limit: int = 50) -> list[ProofEvent]:
        return self.logger.get_student_history(student_id, limit)

    def get_chat_proof_events(self, chat_id: str) -> list[ProofEvent]:
        return self.logger.get_chat_events(chat_id)

    def get_proof_stats(self, student_id: str) -> ProofStats:
        return self.logger.get_stats(student_id)

    def get_proof_receipts(self, student_id: str) -> list[ProofReceipt]:
        return self.logger.get_receipts(student_id)


def validation_summary(result: ValidationResult) -> dict[str, Any]:
    """Compact view of a validation result for traces and dashboards."""
    return {
        "classification": result.classification,
        "key_concepts": result.key_concepts,
        "relationships": len(result.relationships),
        "misconceptions": len(result.misconceptions),
        "flags": [
            name
            for name, hit in (
                ("parroting", result.is_parroting),
                ("keyword_stuffing", result.is_keyword_stuffing),
                ("vague_acknowledgment", result.is_vague_acknowledgment),
            )
            if hit
        ],
    }
