"""Adaptive responses to a validated checkpoint attempt.

pass    -> celebrate the named concept and cumulative progress, advance
partial -> say what was captured and what is missing, ask one question
retry   -> reteach with a different framing and renew the explain-back ask

No output ever contains "fail", "failed", "wrong" or "bad".
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, ValidationError

from proof_engine.models import (
    AdaptiveResponse,
    ConversationState,
    Message,
    MessageMetadata,
    PartialResponseOutput,
    PassResponseOutput,
    RetryResponseOutput,
    ValidationResult,
)
from proof_engine.prompts import PARTIAL_RESPONSE, PASS_RESPONSE, RETRY_RESPONSE
from proof_engine.utils import format_teaching_text, parse_json_payload

log = logging.getLogger(__name__)

DEFAULT_CONCEPT = "this concept"

BANNED_WORDS = re.compile(r"\b(fail(?:s|ed|ing)?|wrong(?:ly)?|bad(?:ly)?)\b", re.I)
_NEUTRAL = {
    "fail": "miss",
    "fails": "misses",
    "failed": "missed",
    "failing": "missing",
    "wrong": "off track",
    "wrongly": "off track",
    "bad": "tricky",
    "badly": "roughly",
}
_OWN_WORDS = re.compile(r"in your own words", re.I)


def contains_banned_word(text: str) -> bool:
    return bool(BANNED_WORDS.search(text or ""))


def soften(text: str) -> str:
    """Replace each standalone banned word with a neutral one; longer words are left alone."""
    return BANNED_WORDS.sub(lambda m: _NEUTRAL[m.group(1).lower()], text)


def concept_label(concept: str) -> str:
    """How the concept is named to the student; a name carrying a banned word is referred to generically."""
    return DEFAULT_CONCEPT if contains_banned_word(concept) else concept


def progress_message(count: int) -> str:
    return f"You've proven {count} concept{'s' if count != 1 else ''} today."


def renewed_prompt(concept: str) -> str:
    return f"Now, in your own words, explain what {concept} is and why it happens."


def reteach_framing(concept: str) -> str:
    # Step framing, distinct from the prose explanation that came before.
    return (
        f"Let's break {concept} into steps. First, what goes in or starts the process? "
        "Second, what happens to it? Third, what comes out, and why does that matter?"
    )


class AdaptiveResponseGenerator:
    def __init__(self, call_ai: Optional[Callable[[str], str]] = None):
        self.call_ai = call_ai

    def generate(
        self,
        validation_result: ValidationResult,
        conversation_state: ConversationState,
        teaching_context: Optional[Sequence[Message]] = None,
    ) -> AdaptiveResponse:
        concept = conversation_state.current_checkpoint_concept or DEFAULT_CONCEPT
        label = concept_label(concept)
        teaching_text = format_teaching_text(teaching_context or [], limit=4)

        if validation_result.classification == "pass":
            response = self._pass(concept, label, conversation_state)
        elif validation_result.classification == "partial":
            response = self._partial(concept, label, validation_result, teaching_text)
        else:
            response = self._retry(concept, label, validation_result, teaching_text)

        content = soften(response.content)
        follow_up = soften(response.follow_up_prompt) if response.follow_up_prompt else None
        return response.model_copy(update={"content": content, "follow_up_prompt": follow_up})

    def _ask_model(self, request: str, schema: type[BaseModel]) -> Optional[BaseModel]:
        if self.call_ai is None:
            return None
        try:
            parsed = schema.model_validate(parse_json_payload(self.call_ai(request)))
        except (ValueError, ValidationError) as e:
            log.warning(f"{schema.__name__} rejected, using template: {e}")
            return None
        except Exception as e:
            log.warning(f"Adaptive response model call failed, using template: {e}")
            return None
        if any(contains_banned_word(str(v)) for v in parsed.model_dump().values()):
            log.warning(f"{schema.__name__} contained discouraging language, using template")
            return None
        return parsed

    def _pass(self, concept: str, label: str, state: ConversationState) -> AdaptiveResponse:
        proven = set(state.concepts_proven_this_session)
        if concept != DEFAULT_CONCEPT:
            proven.add(concept)
        progress = progress_message(max(1, len(proven)))

        content = f"Excellent explanation! You really understand {label}. {progress} Ready to move forward?"
        parsed = self._ask_model(PASS_RESPONSE.format(concept=label, progress_message=progress), PassResponseOutput)
        if parsed is not None:
            candidate = f"{parsed.celebration} {progress} {parsed.transition_message}"
            if label == DEFAULT_CONCEPT or label.lower() in candidate.lower():
                content = candidate
            else:
                log.warning(f"Celebration did not name {label}, using template")

        return AdaptiveResponse(
            content=content,
            should_advance=True,
            should_reteach=False,
            metadata=MessageMetadata(is_celebration=True, is_validation_feedback=True, concept=concept),
        )

    def _partial(self, concept: str, label: str, result: ValidationResult, teaching_text: str) -> AdaptiveResponse:
        captured = ", ".join(result.key_concepts[:3]) or "a start on the idea"
        if not result.key_concepts:
            missing = "the main ideas themselves"
        elif not result.relationships:
            missing = "how those ideas connect to each other"
        elif result.misconceptions:
            missing = "one part that works differently than you described"
        else:
            missing = "a bit more depth on why it happens"

        content = (
            f"You're on the right track! You captured {captured}. What's still missing is {missing}. "
            f"{result.guidance} Can you explain how these concepts connect?"
        )
        parsed = self._ask_model(
            PARTIAL_RESPONSE.format(concept=label, teaching_text=teaching_text, captured=captured, missing=missing),
            PartialResponseOutput,
        )
        if parsed is not None and parsed.clarifying_question.rstrip().endswith("?"):
            content = f"{parsed.encouragement} {parsed.targeted_hint} {parsed.clarifying_question}"

        return AdaptiveResponse(
            content=content,
            should_advance=False,
            should_reteach=False,
            metadata=MessageMetadata(is_validation_feedback=True, concept=concept),
        )

    def _retry(self, concept: str, label: str, result: ValidationResult, teaching_text: str) -> AdaptiveResponse:
        follow_up = renewed_prompt(label)
        hint = result.diagnostic_hint or result.guidance
        content = (
            f"No worries, let's try again! {hint} Let me explain it differently. "
            f"{reteach_framing(label)} {follow_up}"
        )

        issues = "; ".join(
            name
            for name, hit in (
                ("parroting", result.is_parroting),
                ("keyword stuffing", result.is_keyword_stuffing),
                ("vague acknowledgment", result.is_vague_acknowledgment),
                ("misconceptions", bool(result.misconceptions)),
            )
            if hit
        ) or "incomplete explanation"
        parsed = self._ask_model(
            RETRY_RESPONSE.format(concept=label, teaching_text=teaching_text, issues=issues, guidance=result.guidance),
            RetryResponseOutput,
        )
        if parsed is not None and _OWN_WORDS.search(parsed.new_explain_back_prompt):
            follow_up = parsed.new_explain_back_prompt
            content = f"{parsed.supportive_opening} {parsed.reteaching_content} {follow_up}"

        return AdaptiveResponse(
            content=content,
            should_advance=False,
            should_reteach=True,
            metadata=MessageMetadata(is_validation_feedback=True, is_proof_checkpoint=True, concept=concept),
            follow_up_prompt=follow_up,
        )
