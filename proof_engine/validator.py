"""Understanding validator.

Scores a student's explain-back attempt as pass / partial / retry:

1. Insufficient-response screen: parroting, keyword stuffing, vague
   acknowledgment. Any hit forces ``retry`` with instructional guidance.
2. Comprehension assessment: key concepts, causal relationships, candidate
   misconceptions and a grade-adapted depth assessment.
3. Deterministic classification from the assessment.

The evaluation model is optional. Heuristics always run for stage 1 and
stand in for the model in stage 2 when it is missing, slow, or returns
output that does not match the schema. ``validate`` never raises.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from proof_engine.config import settings
from proof_engine.models import (
    ComprehensionOutput,
    InsufficientResponseOutput,
    Message,
    ValidationResult,
)
from proof_engine.prompts import COMPREHENSION, INSUFFICIENT_CHECK
from proof_engine.utils import format_teaching_text, parse_json_payload

log = logging.getLogger(__name__)

CallAI = Callable[[str], str]

_WORD = re.compile(r"[a-z0-9']+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_CLAUSE_SPLIT = re.compile(r"[,;:]|\bbut\b")
_LIST_SPLIT = re.compile(r"[,;/\n]|\band\b|\bor\b|&")

STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "if", "of", "to", "in", "on", "at",
    "by", "for", "with", "from", "into", "as", "is", "are", "was", "were",
    "be", "been", "being", "it", "its", "it's", "this", "that", "these",
    "those", "there", "their", "they", "them", "he", "she", "we", "you",
    "your", "i", "me", "my", "our", "us", "do", "does", "did", "not", "no",
    "so", "very", "just", "also", "can", "could", "would", "will", "should",
    "has", "have", "had", "what", "which", "who", "how", "why", "when",
    "where", "then", "than", "some", "any", "all", "each", "more", "most",
    "like", "about", "up", "out", "get", "gets", "got", "thing", "things",
    "don't", "doesn't", "isn't", "aren't", "really", "because", "own",
    "words", "explain", "means", "mean",
}

# Words that turn a list of terms into an explanation.
CONNECTING_WORDS = {
    "because", "so", "therefore", "which", "that", "when", "since", "if",
    "then", "causes", "cause", "means", "makes", "make", "leads", "lead",
    "results", "turns", "converts", "produces", "is", "are", "was", "were",
    "does", "do", "uses", "use", "helps", "needs", "gives", "takes",
    "creates", "by", "to", "into", "allows", "lets", "becomes", "thus",
}

CAUSAL_MARKERS = [
    re.compile(p, re.I)
    for p in (
        r"\bbecause\b", r"\bso that\b", r"\bso\b", r"\btherefore\b", r"\bthus\b",
        r"\bhence\b", r"\bwhich means\b", r"\bthis means\b", r"\bmeans that\b",
        r"\bcauses?\b", r"\bleads? to\b", r"\bresults? in\b", r"\bdue to\b",
        r"\bin order to\b", r"\bsince\b", r"\bturns? (?:\w+ )?into\b",
        r"\bconverts?\b", r"\bproduces?\b", r"\bmakes?\b", r"\ballows?\b",
        r"\bwhich\b", r"\bif\b.+\bthen\b", r"\bwhen\b", r"\bby\b \w+ing\b",
    )
]

VAGUE_PHRASES = [
    "that makes sense", "makes sense", "i understand", "i understand it",
    "i get it", "i got it", "got it", "i see", "i know", "understood",
    "okay", "ok", "yes", "yeah", "yep", "sure", "cool", "right", "alright",
    "sounds good", "i think so", "that's clear", "it's clear", "clear",
]
_VAGUE_FILLER = {
    "now", "so", "oh", "ah", "thanks", "thank", "you", "really", "totally",
    "i", "think", "it", "that", "this", "all", "well", "the", "concept",
    "perfectly", "completely", "fully", "great", "good", "nice", "perfect",
    "a", "lot", "much", "idea", "too",
}
_NEGATION = re.compile(r"\b(not|never|no|doesn't|don't|isn't|aren't|can't|cannot|won't)\b", re.I)
_DEPTH_ISSUE_WORDS = ("insufficient", "shallow", "surface", "needs more", "too brief", "minimal")

MIN_PARROT_CHARS = 20
PARROT_OVERLAP = 0.6
MISCONCEPTION_OVERLAP = 0.75

TIMEOUT_GUIDANCE = (
    "Let me think about that differently. Walk me through the idea step by step, "
    "including what happens and why it happens."
)
ERROR_GUIDANCE = (
    "Can you explain that in more detail? Describe what happens first, what it leads to, "
    "and why it matters."
)


@dataclass
class InsufficientCheck:
    is_parroting: bool = False
    is_keyword_stuffing: bool = False
    is_vague_acknowledgment: bool = False
    reason: str = ""

    @property
    def is_insufficient(self) -> bool:
        return self.is_parroting or self.is_keyword_stuffing or self.is_vague_acknowledgment


@dataclass
class Comprehension:
    key_concepts: list
    relationships: list
    misconceptions: list
    depth_assessment: str


def _words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def _stem(word: str) -> str:
    for suffix in ("ing", "es", "ed", "s"):
        if word.endswith(suffix) and len(word) - len(suffix) >= 4:
            return word[: -len(suffix)]
    return word


def _content_words(text: str) -> list[str]:
    return [w for w in _words(text) if w not in STOPWORDS and len(w) >= 3]


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


def _trigrams(words: list[str]) -> set:
    return {tuple(words[i : i + 3]) for i in range(len(words) - 2)}


# ---------------------------------------------------------------------------
# Stage 1 heuristics
# ---------------------------------------------------------------------------

def detect_parroting(student_response: str, teaching_text: str) -> bool:
    """Student text repeats the teaching text verbatim or near-verbatim."""
    response_words = _words(student_response)
    teaching_words = _words(teaching_text)
    if not response_words or not teaching_words:
        return False

    response_norm = " ".join(response_words)
    if len(response_norm) >= MIN_PARROT_CHARS and f" {response_norm} " in f" {' '.join(teaching_words)} ":
        return True

    if len(response_words) < 6:
        return False
    response_grams = _trigrams(response_words)
    overlap = len(response_grams & _trigrams(teaching_words)) / len(response_grams)
    return overlap >= PARROT_OVERLAP


def detect_keyword_stuffing(student_response: str) -> bool:
    """Short enumeration of terms with no language connecting them."""
    words = _words(student_response)
    if len(words) < 3 or any(w in CONNECTING_WORDS for w in words):
        return False

    items = [item.strip() for item in _LIST_SPLIT.split(student_response.lower()) if _words(item)]
    if len(items) >= 3 and len(words) <= 25 and all(len(_words(item)) <= 3 for item in items):
        return True

    # Short separated run of terms without any function words.
    return (
        len(items) >= 2
        and len(words) <= 8
        and not any(w in STOPWORDS for w in words)
    )


def detect_vague_acknowledgment(student_response: str) -> bool:
    """Empty affirmation ("I understand", "that makes sense") with no elaboration."""
    words = _words(student_response)
    if not words:
        return False
    padded = f" {' '.join(words)} "
    matched = False
    for phrase in sorted(VAGUE_PHRASES, key=len, reverse=True):
        needle = f" {phrase} "
        while needle in padded:
            padded = padded.replace(needle, " ", 1)
            matched = True
    if not matched:
        return False
    remaining = [w for w in padded.split() if w not in _VAGUE_FILLER]
    return len(remaining) < 3


def heuristic_insufficient_check(student_response: str, teaching_text: str) -> InsufficientCheck:
    check = InsufficientCheck(
        is_vague_acknowledgment=detect_vague_acknowledgment(student_response),
        is_keyword_stuffing=detect_keyword_stuffing(student_response),
        is_parroting=detect_parroting(student_response, teaching_text),
    )
    detected = [
        name
        for name, hit in (
            ("parroting", check.is_parroting),
            ("keyword stuffing", check.is_keyword_stuffing),
            ("vague acknowledgment", check.is_vague_acknowledgment),
        )
        if hit
    ]
    check.reason = f"Heuristic detection: {', '.join(detected)}" if detected else "Passed heuristic checks"
    return check


# ---------------------------------------------------------------------------
# Stage 2 heuristics
# ---------------------------------------------------------------------------

def extract_key_concepts(
    student_response: str, reference_text: str, concept: Optional[str] = None, limit: int = 8
) -> list[str]:
    """Content words the student shares with the teaching material."""
    found: list[str] = []
    response_words = _words(student_response)
    response_stems = {_stem(w) for w in response_words}

    if concept:
        concept_words = [w for w in _words(concept) if w not in STOPWORDS]
        if concept_words and all(_stem(w) in response_stems for w in concept_words):
            found.append(concept.strip())

    reference_stems = {_stem(w) for w in _content_words(reference_text)}
    for word in _content_words(student_response):
        if len(word) >= 4 and _stem(word) in reference_stems:
            found.append(word)

    seen: set = set()
    unique = []
    for item in found:
        key = _stem(item.lower())
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique[:limit]


def extract_relationships(student_response: str) -> list[str]:
    """Sentences that carry causal or purpose language."""
    relationships = []
    for sentence in _sentences(student_response):
        if len(_words(sentence)) < 4:
            continue
        if any(marker.search(sentence) for marker in CAUSAL_MARKERS):
            relationships.append(sentence)
    return relationships


def _misconceived(student_response: str, teaching_text: str) -> list[tuple[str, str]]:
    """(sentence, clause) pairs where a clause negates a teaching sentence."""
    teaching_sentences = [
        set(map(_stem, _content_words(s))) for s in _sentences(teaching_text) if not _NEGATION.search(s)
    ]
    found = []
    for sentence in _sentences(student_response):
        for clause in _CLAUSE_SPLIT.split(sentence):
            if not _NEGATION.search(clause):
                continue
            clause_stems = [_stem(w) for w in _content_words(clause)]
            if len(clause_stems) < 3:
                continue
            if any(
                sum(1 for s in clause_stems if s in reference) / len(clause_stems) >= MISCONCEPTION_OVERLAP
                for reference in teaching_sentences
            ):
                found.append((sentence, clause.strip()))
                break
    return found


def detect_misconceptions(student_response: str, teaching_text: str) -> list[str]:
    """Candidate misconceptions: a negated restatement of a teaching sentence."""
    return [f'Contradicts the lesson: "{clause}"' for _, clause in _misconceived(student_response, teaching_text)]


def assess_depth(grade_level: int, word_count: int, key_concepts: list, relationships: list) -> str:
    if grade_level <= 8:
        adequate = bool(relationships) and len(key_concepts) >= 1 and word_count >= 8
        expectation = "one idea explained with a reason or example"
    else:
        adequate = bool(relationships) and len(key_concepts) >= 2 and word_count >= 15
        expectation = "connected ideas with the reasoning behind them"
    if adequate:
        return f"Appropriate depth for grade {grade_level}: {expectation}."
    return f"Shallow for grade {grade_level}; needs more: {expectation}."


def heuristic_comprehension(
    student_response: str,
    teaching_text: str,
    prompt: str,
    grade_level: int,
    concept: Optional[str] = None,
) -> Comprehension:
    reference = f"{teaching_text}\n{prompt}"
    key_concepts = extract_key_concepts(student_response, reference, concept)
    misconceived = _misconceived(student_response, teaching_text)
    flagged = {sentence for sentence, _ in misconceived}
    # A causal sentence built on a misconception does not count as a relationship.
    relationships = [s for s in extract_relationships(student_response) if s not in flagged]
    misconceptions = [f'Contradicts the lesson: "{clause}"' for _, clause in misconceived]
    depth = assess_depth(grade_level, len(_words(student_response)), key_concepts, relationships)
    return Comprehension(key_concepts, relationships, misconceptions, depth)


# ---------------------------------------------------------------------------
# Guidance text
# ---------------------------------------------------------------------------

def insufficient_guidance(check: InsufficientCheck, concept: str) -> str:
    if check.is_parroting:
        return (
            f"It sounds like you repeated my explanation back. Describe {concept} the way "
            "you would tell a friend, with your own example instead of the words I used."
        )
    if check.is_keyword_stuffing:
        return (
            "You named some important terms, but I need to hear how they connect. "
            "Explain what each one does, using words like 'because' or 'which means'."
        )
    return (
        f"I need to hear the idea explained, not just acknowledged. Walk me through what "
        f"{concept} is and how it works, as if you were teaching it to someone new."
    )


def diagnostic_hint(check: InsufficientCheck, comprehension: Optional[Comprehension]) -> str:
    """One sentence naming what is missing from a retry attempt."""
    if check.is_parroting:
        return "This repeats the explanation without showing your own understanding."
    if check.is_keyword_stuffing:
        return "You listed terms, but didn't explain how they connect."
    if check.is_vague_acknowledgment:
        return "I need to hear the concept explained, not just acknowledged."
    if comprehension is not None and comprehension.misconceptions:
        return "The explanation includes an idea that works differently than described."
    return "The explanation is missing key parts of how this works."


def classify(
    check: InsufficientCheck, comprehension: Comprehension, concept: str
) -> ValidationResult:
    """Stage 3: deterministic decision from the assessment."""
    fields = dict(
        key_concepts=list(comprehension.key_concepts),
        relationships=list(comprehension.relationships),
        misconceptions=list(comprehension.misconceptions),
        depth_assessment=comprehension.depth_assessment or "No depth assessment",
        is_parroting=check.is_parroting,
        is_keyword_stuffing=check.is_keyword_stuffing,
        is_vague_acknowledgment=check.is_vague_acknowledgment,
    )
    concepts = comprehension.key_concepts
    relationships = comprehension.relationships
    misconceptions = comprehension.misconceptions

    if misconceptions and len(misconceptions) >= len(relationships):
        return ValidationResult(
            classification="retry",
            guidance=(
                f"Let me clarify {concept}, because part of your explanation works differently "
                "than described. Tell me again what happens and why, one step at a time."
            ),
            diagnostic_hint=diagnostic_hint(check, comprehension),
            **fields,
        )

    if not concepts and not relationships:
        return ValidationResult(
            classification="retry",
            guidance=(
                f"Let's build this up together. Start by saying what {concept} is, then explain "
                "one thing it does or causes, using a word like 'because'."
            ),
            diagnostic_hint=diagnostic_hint(check, comprehension),
            **fields,
        )

    if misconceptions:
        guidance = "One part of that works differently than described. Take another look at what happens and why."
    elif not concepts:
        guidance = "Name the main ideas we discussed and explain what each one does."
    elif not relationships:
        guidance = "Explain how these ideas connect, and why one leads to the other."
    elif any(word in comprehension.depth_assessment.lower() for word in _DEPTH_ISSUE_WORDS):
        guidance = "Explain more about how these ideas work together and why that happens."
    else:
        return ValidationResult(
            classification="pass",
            guidance="Excellent explanation! You really understand this.",
            **fields,
        )
    return ValidationResult(classification="partial", guidance=guidance, **fields)


class UnderstandingValidator:
    """Validates explain-back attempts; safe to share across conversations."""

    def __init__(self, call_ai: Optional[CallAI] = None, timeout: Optional[float] = None):
        self.call_ai = call_ai
        self.timeout = settings.VALIDATION_TIMEOUT_SECONDS if timeout is None else timeout

    def validate(
        self,
        student_response: str,
        teaching_context: Sequence[Message],
        prompt: str,
        grade_level: int,
        concept: Optional[str] = None,
    ) -> ValidationResult:
        student_response = student_response or ""
        try:
            if self.call_ai is None:
                return self._run_pipeline(student_response, teaching_context, prompt, grade_level, concept)
            return self._run_with_timeout(student_response, teaching_context, prompt, grade_level, concept)
        except Exception as e:
            log.exception(f"Validation pipeline error, using fallback: {e}")
            return self.fallback_result(ERROR_GUIDANCE, "Validation error")

    @staticmethod
    def fallback_result(guidance: str, depth: str) -> ValidationResult:
        return ValidationResult(
            classification="partial",
            key_concepts=[],
            relationships=[],
            misconceptions=[],
            depth_assessment=depth,
            guidance=guidance,
        )

    def _run_with_timeout(self, *args) -> ValidationResult:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self._run_pipeline, *args)
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            log.warning(f"Validation timed out after {self.timeout}s, using fallback")
            return self.fallback_result(TIMEOUT_GUIDANCE, "Validation timeout")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_pipeline(
        self,
        student_response: str,
        teaching_context: Sequence[Message],
        prompt: str,
        grade_level: int,
        concept: Optional[str],
    ) -> ValidationResult:
        teaching_text = format_teaching_text(teaching_context)
        concept_name = concept or "this idea"

        check = self.detect_insufficient_response(student_response, teaching_text)
        if check.is_insufficient:
            return ValidationResult(
                classification="retry",
                key_concepts=[],
                relationships=[],
                misconceptions=[],
                depth_assessment=f"Insufficient response detected ({check.reason})",
                guidance=insufficient_guidance(check, concept_name),
                is_parroting=check.is_parroting,
                is_keyword_stuffing=check.is_keyword_stuffing,
                is_vague_acknowledgment=check.is_vague_acknowledgment,
                diagnostic_hint=diagnostic_hint(check, None),
            )

        comprehension = self.assess_comprehension(
            student_response, teaching_text, prompt, grade_level, concept
        )
        return classify(check, comprehension, concept_name)

    def detect_insufficient_response(self, student_response: str, teaching_text: str) -> InsufficientCheck:
        check = heuristic_insufficient_check(student_response, teaching_text)
        if self.call_ai is None:
            return check
        try:
            raw = self.call_ai(
                INSUFFICIENT_CHECK.format(teaching_text=teaching_text, student_response=student_response)
            )
            verdict = InsufficientResponseOutput.model_validate(parse_json_payload(raw))
        except (ValueError, ValidationError) as e:
            log.warning(f"Insufficient-response output rejected, heuristics only: {e}")
            return check
        except Exception as e:
            log.warning(f"Insufficient-response model call failed, heuristics only: {e}")
            return check
        return InsufficientCheck(
            is_parroting=check.is_parroting or verdict.is_parroting,
            is_keyword_stuffing=check.is_keyword_stuffing or verdict.is_keyword_stuffing,
            is_vague_acknowledgment=check.is_vague_acknowledgment or verdict.is_vague_acknowledgment,
            reason=verdict.reason or check.reason,
        )

    def assess_comprehension(
        self,
        student_response: str,
        teaching_text: str,
        prompt: str,
        grade_level: int,
        concept: Optional[str] = None,
    ) -> Comprehension:
        if self.call_ai is not None:
            depth_expectation = (
                "basic concept connections and simple explanations"
                if grade_level <= 8
                else "deeper analysis with reasoning about why and how"
            )
            try:
                raw = self.call_ai(
                    COMPREHENSION.format(
                        teaching_text=teaching_text,
                        prompt=prompt,
                        student_response=student_response,
                        grade_level=grade_level,
                        depth_expectation=depth_expectation,
                    )
                )
                parsed = ComprehensionOutput.model_validate(parse_json_payload(raw))
                return Comprehension(
                    parsed.key_concepts, parsed.relationships, parsed.misconceptions, parsed.depth_assessment
                )
            except (ValueError, ValidationError) as e:
                log.warning(f"Comprehension output rejected, using heuristics: {e}")
            except Exception as e:
                log.warning(f"Comprehension model call failed, using heuristics: {e}")
        return heuristic_comprehension(student_response, teaching_text, prompt, grade_level, concept)
