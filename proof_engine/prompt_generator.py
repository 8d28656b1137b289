"""Explain-back prompt generator.

Every prompt returned here:
- contains "in your own words"
- is open-ended (no yes/no opener)
- names a concept from the last few teaching exchanges, or a supplied one

A model candidate is only used when it passes both checks; otherwise the
grade-band template is returned.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from proof_engine.models import ExplainBackPrompt, Message, PromptCandidateOutput
from proof_engine.prompts import EXPLAIN_BACK
from proof_engine.utils import format_teaching_text, parse_json_payload

log = logging.getLogger(__name__)

DEFAULT_CONCEPT = "the main idea we just covered"
RECENT_EXCHANGES = 4

_YES_NO_OPENERS = re.compile(
    r"^(is|are|do|does|did|can|could|would|will|have|has|should)\b", re.I
)
_OWN_WORDS = re.compile(r"in your own words", re.I)

_CONTENT_PATTERNS = [
    re.compile(r"the concept of ([^,.!?\n]+)", re.I),
    re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*) (?:is|means)\b"),
    re.compile(r"\bunderstand ([^,.!?\n]+)", re.I),
]
# Sentence openers that the capitalised-phrase pattern would otherwise pick up.
_NOT_CONCEPTS = {
    "this", "that", "it", "there", "here", "what", "which", "who", "the",
    "a", "an", "let", "so", "now", "remember", "first", "next", "then",
    "why", "how", "when", "where", "each", "every", "one", "step",
}


def validate_open_ended(prompt: str) -> bool:
    """False for prompts that open like a yes/no question."""
    return not _YES_NO_OPENERS.match(prompt.strip())


def validate_own_words(prompt: str) -> bool:
    return bool(_OWN_WORDS.search(prompt))


def extract_concepts(teaching_context: Sequence[Message], limit: int = 3) -> list[str]:
    """Concept names from the most recent assistant messages, newest first.

    Metadata ``concept`` values win; content patterns are only consulted when
    no message carries one.
    """
    recent = [m for m in teaching_context if m.role == "assistant"][-RECENT_EXCHANGES:]
    recent.reverse()

    from_metadata = [m.metadata.concept for m in recent if m.metadata and m.metadata.concept]
    if from_metadata:
        return list(dict.fromkeys(from_metadata))[:limit]

    found: list[str] = []
    for message in recent:
        for pattern in _CONTENT_PATTERNS:
            match = pattern.search(message.content)
            if not match:
                continue
            candidate = match.group(1).strip()
            if candidate and candidate.lower() not in _NOT_CONCEPTS and len(candidate.split()) <= 5:
                found.append(candidate)
    return list(dict.fromkeys(found))[:limit]


def middle_school_template(concept: Optional[str]) -> str:
    concept_text = concept or DEFAULT_CONCEPT
    return f"In your own words, explain what {concept_text} means and give one example of it."


def high_school_template(concept: Optional[str], related: Optional[str] = None) -> str:
    concept_text = concept or DEFAULT_CONCEPT
    if related:
        return (
            f"In your own words, explain {concept_text} and how it connects to {related}. "
            "Why does that relationship matter?"
        )
    return (
        f"In your own words, explain how {concept_text} works and why it matters. "
        "What makes it useful?"
    )


def _ai_candidate(
    teaching_context: Sequence[Message],
    concepts: list[str],
    grade_level: int,
    call_ai: Callable[[str], str],
) -> Optional[PromptCandidateOutput]:
    grade_context = (
        "middle school: simpler phrasing, one idea at a time"
        if grade_level <= 8
        else "high school: deeper reasoning, why/how framing"
    )
    request = EXPLAIN_BACK.format(
        teaching_text=format_teaching_text(teaching_context, limit=RECENT_EXCHANGES),
        concepts=", ".join(concepts) or DEFAULT_CONCEPT,
        grade_level=grade_level,
        grade_context=grade_context,
    )
    try:
        return PromptCandidateOutput.model_validate(parse_json_payload(call_ai(request)))
    except (ValueError, ValidationError) as e:
        log.warning(f"Explain-back candidate rejected: {e}")
    except Exception as e:
        log.warning(f"Explain-back model call failed: {e}")
    return None


def generate_explain_back_prompt(
    teaching_context: Sequence[Message],
    grade_level: int,
    concept: Optional[str] = None,
    call_ai: Optional[Callable[[str], str]] = None,
) -> ExplainBackPrompt:
    extracted = extract_concepts(teaching_context)
    main_concept = concept or (extracted[0] if extracted else None)
    related = next((c for c in extracted if c != main_concept), None)

    if call_ai is not None:
        candidate = _ai_candidate(teaching_context, extracted or ([concept] if concept else []), grade_level, call_ai)
        if candidate is not None:
            text = candidate.prompt.strip()
            if text and validate_open_ended(text) and validate_own_words(text):
                referenced = candidate.referenced_concepts or ([main_concept] if main_concept else [])
                return ExplainBackPrompt(
                    prompt=text, is_open_ended=True, referenced_concepts=referenced, used_ai=True
                )
            log.warning("Explain-back candidate failed open-ended/own-words check, using template")

    if grade_level <= 8:
        text = middle_school_template(main_concept)
        referenced = [main_concept] if main_concept else []
    else:
        text = high_school_template(main_concept, related)
        referenced = [c for c in (main_concept, related) if c]

    return ExplainBackPrompt(prompt=text, is_open_ended=True, referenced_concepts=referenced)
