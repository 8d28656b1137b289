"""Teaching exchange classifier.

Decides whether an assistant message counts toward the checkpoint schedule.
Tiers run cheapest first:

1. Metadata hints set by upstream layers.
2. Ordered rule tables (exclusion phrases, then teaching phrases).
3. Optional model check, only for low-confidence rule results, behind
   ``settings.ENABLE_AI_CLASSIFIER`` and a per-request call budget.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from pydantic import ValidationError

from proof_engine.config import settings
from proof_engine.models import ClassifierOutput, Message, TeachingExchangeClassification
from proof_engine.prompts import EXCHANGE_CLASSIFIER
from proof_engine.utils import parse_json_payload

log = logging.getLogger(__name__)

CallAI = Callable[[str], str]

# Checkpoint prompts, validation feedback and celebrations.
EXCLUSION_PATTERNS = [
    re.compile(r"can you explain", re.I),
    re.compile(r"in your own words", re.I),
    re.compile(r"tell me about", re.I),
    re.compile(r"what do you think", re.I),
    re.compile(r"how would you describe", re.I),
    re.compile(r"excellent explanation", re.I),
    re.compile(r"great job", re.I),
    re.compile(r"you've proven", re.I),
    re.compile(r"let's try again", re.I),
    re.compile(r"no worries", re.I),
]

# Explanatory connectives and step structure.
TEACHING_PATTERNS = [
    re.compile(r"let me explain", re.I),
    re.compile(r"here's how", re.I),
    re.compile(r"this is because", re.I),
    re.compile(r"the reason is", re.I),
    re.compile(r"for example", re.I),
    re.compile(r"consider this", re.I),
    re.compile(r"imagine that", re.I),
    re.compile(r"think of it as", re.I),
    re.compile(r"first.*second.*third", re.I | re.S),
    re.compile(r"step \d+", re.I),
    re.compile(r"this means that", re.I),
    re.compile(r"in other words", re.I),
    re.compile(r"to understand this", re.I),
    re.compile(r"the key concept", re.I),
    re.compile(r"remember that", re.I),
]


class ModelCallBudget:
    """Request-scoped cap on evaluation-model calls.

    One instance belongs to one classification request; it is never shared
    between conversations.
    """

    def __init__(self, max_calls: int = 1):
        self.max_calls = max_calls
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_calls

    def spend(self) -> bool:
        """Take one call from the budget. Returns False when none are left."""
        if self.exhausted:
            return False
        self.used += 1
        return True


def classify_by_metadata(message: Message) -> Optional[bool]:
    """Definitive answer from metadata, or None when metadata is silent."""
    meta = message.metadata
    if meta is None:
        return None
    if meta.is_proof_checkpoint or meta.is_validation_feedback or meta.is_celebration:
        return False
    if meta.is_teaching_exchange is True:
        return True
    return None


def classify_by_rules(content: str) -> TeachingExchangeClassification:
    for pattern in EXCLUSION_PATTERNS:
        if pattern.search(content):
            return TeachingExchangeClassification(
                is_teaching=False,
                confidence="high",
                reason=f"Matched exclusion pattern '{pattern.pattern}'",
            )

    score = sum(1 for pattern in TEACHING_PATTERNS if pattern.search(content))
    if score >= 2:
        return TeachingExchangeClassification(
            is_teaching=True, confidence="high", reason=f"Matched {score} teaching patterns"
        )
    if score == 1:
        return TeachingExchangeClassification(
            is_teaching=True, confidence="low", reason="Matched 1 teaching pattern"
        )
    return TeachingExchangeClassification(
        is_teaching=False, confidence="low", reason="No teaching patterns matched"
    )


def classify_by_ai(
    content: str, call_ai: CallAI, budget: ModelCallBudget
) -> Optional[TeachingExchangeClassification]:
    """Ask the evaluation model. Returns None when over budget or on bad output."""
    if not budget.spend():
        log.info("Classifier model budget exhausted, keeping rule result")
        return None
    try:
        raw = call_ai(EXCHANGE_CLASSIFIER.format(content=content))
        parsed = ClassifierOutput.model_validate(parse_json_payload(raw))
    except (ValueError, ValidationError) as e:
        log.warning(f"Classifier model output rejected: {e}")
        return None
    except Exception as e:
        log.warning(f"Classifier model call failed: {e}")
        return None
    return TeachingExchangeClassification(
        is_teaching=parsed.is_teaching,
        confidence="high",
        reason=parsed.reason or "Model classification",
        used_ai=True,
    )


def classify_exchange(
    message: Message,
    call_ai: Optional[CallAI] = None,
    budget: Optional[ModelCallBudget] = None,
    enable_ai: Optional[bool] = None,
) -> TeachingExchangeClassification:
    """Run the three tiers and return the full classification record."""
    by_metadata = classify_by_metadata(message)
    if by_metadata is not None:
        return TeachingExchangeClassification(
            is_teaching=by_metadata, confidence="high", reason="Metadata flag"
        )

    rules = classify_by_rules(message.content)
    if rules.confidence == "high":
        return rules

    if enable_ai is None:
        enable_ai = settings.ENABLE_AI_CLASSIFIER
    if enable_ai and call_ai is not None:
        by_ai = classify_by_ai(message.content, call_ai, budget or ModelCallBudget())
        if by_ai is not None:
            return by_ai

    return rules


def is_teaching_exchange(
    message: Message,
    call_ai: Optional[CallAI] = None,
    budget: Optional[ModelCallBudget] = None,
    enable_ai: Optional[bool] = None,
) -> bool:
    """True if the assistant message is a teaching exchange."""
    return classify_exchange(message, call_ai, budget, enable_ai).is_teaching
