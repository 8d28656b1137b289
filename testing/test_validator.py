"""Tests for the understanding validator."""

import json
import random
import time

from proof_engine.models import Message
from proof_engine.validator import (
    UnderstandingValidator,
    detect_keyword_stuffing,
    detect_misconceptions,
    detect_parroting,
    detect_vague_acknowledgment,
)

LESSON = [
    Message(
        role="assistant",
        content=(
            "Let me explain photosynthesis. Plants capture sunlight with chlorophyll in their "
            "leaves. For example, a sunflower turns toward the light to collect more energy."
        ),
    ),
    Message(
        role="assistant",
        content=(
            "Here's how it works: the plant takes in carbon dioxide through tiny pores and "
            "water through its roots. This means that the leaf has everything it needs to build sugar."
        ),
    ),
    Message(
        role="assistant",
        content=(
            "Remember that the energy from sunlight is stored in glucose. In other words, "
            "photosynthesis turns light energy into chemical energy that the plant uses to grow."
        ),
    ),
]
PROMPT = "In your own words, explain what photosynthesis means and give one example of it."
GOOD_ANSWER = (
    "Photosynthesis is how a plant makes its own food. The leaves catch sunlight and use it to "
    "combine water and carbon dioxide into sugar, because the plant needs that sugar as energy to grow."
)
BANNED = ("fail", "wrong", "bad")


def _validate(response, validator=None, grade=8, context=LESSON):
    validator = validator or UnderstandingValidator()
    return validator.validate(response, context, PROMPT, grade, "photosynthesis")


def _assert_substantive(result):
    assert len(result.guidance) > 30
    assert result.guidance.strip().lower() != "try again"
    assert not any(word in result.guidance.lower() for word in BANNED)


def test_detect_vague_acknowledgment():
    assert detect_vague_acknowledgment("I understand")
    assert detect_vague_acknowledgment("That makes sense, thanks!")
    assert detect_vague_acknowledgment("Ok got it")
    assert not detect_vague_acknowledgment("I understand that plants turn sunlight into sugar in their leaves")
    assert not detect_vague_acknowledgment("")


def test_detect_keyword_stuffing():
    assert detect_keyword_stuffing("chlorophyll, sunlight, glucose")
    assert detect_keyword_stuffing("sunlight chlorophyll, glucose energy")
    assert not detect_keyword_stuffing("Sunlight is turned into glucose by chlorophyll")
    assert not detect_keyword_stuffing("glucose")
    assert not detect_keyword_stuffing("Plants capture sunlight")
    assert not detect_keyword_stuffing("sunlight chlorophyll glucose energy")


def test_detect_parroting_verbatim_and_near_verbatim():
    teaching = LESSON[2].content

    assert detect_parroting("The energy from sunlight is stored in glucose.", teaching)
    assert detect_parroting(
        "photosynthesis turns light energy into chemical energy that the plant uses", teaching
    )
    assert not detect_parroting(GOOD_ANSWER, teaching)
    assert not detect_parroting("anything", "")


def test_vague_acknowledgment_forces_retry():
    result = _validate("I understand")

    assert result.classification == "retry"
    assert result.is_vague_acknowledgment
    assert result.diagnostic_hint
    _assert_substantive(result)


def test_keyword_stuffing_forces_retry():
    result = _validate("chlorophyll, sunlight, glucose")

    assert result.classification == "retry"
    assert result.is_keyword_stuffing
    assert "connect" in result.diagnostic_hint
    _assert_substantive(result)


def test_short_plain_sentence_is_not_keyword_stuffing():
    result = _validate("Leaves catch sunlight")

    assert not result.is_keyword_stuffing
    assert result.classification == "partial"


def test_parroting_forces_retry():
    result = _validate(
        "the energy from sunlight is stored in glucose. In other words, photosynthesis turns "
        "light energy into chemical energy that the plant uses to grow."
    )

    assert result.classification == "retry"
    assert result.is_parroting
    _assert_substantive(result)


def test_substantive_explanation_passes():
    result = _validate(GOOD_ANSWER)

    assert result.classification == "pass"
    assert "photosynthesis" in result.key_concepts
    assert result.relationships
    assert result.misconceptions == []
    assert not (result.is_parroting or result.is_keyword_stuffing or result.is_vague_acknowledgment)


def test_concepts_without_relationships_is_partial():
    result = _validate("Photosynthesis uses sunlight, water and carbon dioxide.")

    assert result.classification == "partial"
    assert result.key_concepts
    assert result.relationships == []
    assert "connect" in result.guidance


def test_high_school_needs_more_depth():
    result = _validate("Photosynthesis makes sugar.", grade=11)

    assert result.classification == "partial"
    assert result.depth_assessment.lower().startswith("shallow")


def test_off_topic_answer_is_retry():
    result = _validate("Pizza is my favorite food and I like soccer a lot.")

    assert result.classification == "retry"
    assert result.key_concepts == []
    _assert_substantive(result)


def test_dominant_misconception_is_retry():
    context = [Message(role="assistant", content="Plants need sunlight to make food.")]

    result = _validate(
        "Plants do not need sunlight to make food. They grow in the dark because soil feeds them.",
        context=context,
    )

    assert result.classification == "retry"
    assert len(result.misconceptions) == 1
    assert "differently" in result.diagnostic_hint


def test_detect_misconceptions_ignores_unrelated_negation():
    teaching = "Plants need sunlight to make food."

    assert detect_misconceptions("Plants do not need sunlight to make food.", teaching)
    assert detect_misconceptions("I'm not sure about soccer.", teaching) == []


def test_validation_totality_for_arbitrary_text():
    rng = random.Random(11)
    alphabet = "abcdefghij klmnop,.!?\n"
    samples = ["", " ", "x" * 20000, "because " * 500, "1234 5678"]
    samples += ["".join(rng.choice(alphabet) for _ in range(rng.randint(0, 300))) for _ in range(40)]
    validator = UnderstandingValidator()

    for text in samples:
        result = validator.validate(text, LESSON, PROMPT, 8)
        assert result.classification in ("pass", "partial", "retry")
        assert result.guidance
        assert result.depth_assessment
        assert isinstance(result.key_concepts, list)
        if result.is_parroting or result.is_keyword_stuffing or result.is_vague_acknowledgment:
            assert result.classification == "retry"


def test_no_teaching_context_still_classifies():
    result = UnderstandingValidator().validate(GOOD_ANSWER, [], PROMPT, 8)

    assert result.classification in ("pass", "partial", "retry")


class ScriptedModel:
    """Answers the insufficient-response and comprehension prompts."""

    def __init__(self, insufficient, comprehension):
        self.insufficient = insufficient
        self.comprehension = comprehension
        self.calls = 0

    def __call__(self, prompt):
        self.calls += 1
        if "insufficient explanation patterns" in prompt:
            return self.insufficient
        return self.comprehension


def test_model_assessment_drives_classification():
    model = ScriptedModel(
        json.dumps(
            {
                "is_insufficient": False,
                "is_parroting": False,
                "is_keyword_stuffing": False,
                "is_vague_acknowledgment": False,
                "reason": "",
            }
        ),
        json.dumps(
            {
                "key_concepts": ["photosynthesis", "glucose"],
                "relationships": ["light energy becomes chemical energy"],
                "misconceptions": [],
                "depth_assessment": "Appropriate for grade 8",
            }
        ),
    )

    result = _validate("Some explanation the model liked a lot.", UnderstandingValidator(call_ai=model))

    assert result.classification == "pass"
    assert result.key_concepts == ["photosynthesis", "glucose"]
    assert model.calls == 2


def test_model_insufficient_flag_is_combined_with_heuristics():
    model = ScriptedModel(
        json.dumps(
            {
                "is_insufficient": True,
                "is_parroting": True,
                "is_keyword_stuffing": False,
                "is_vague_acknowledgment": False,
                "reason": "Copied phrasing",
            }
        ),
        "{}",
    )

    result = _validate(GOOD_ANSWER, UnderstandingValidator(call_ai=model))

    assert result.classification == "retry"
    assert result.is_parroting


def test_malformed_model_output_uses_heuristics():
    model = ScriptedModel("not json", json.dumps({"key_concepts": "photosynthesis"}))

    result = _validate(GOOD_ANSWER, UnderstandingValidator(call_ai=model))

    assert result.classification == "pass"


def test_slow_model_times_out_to_partial():
    def slow_model(prompt):
        time.sleep(0.5)
        return "{}"

    started = time.monotonic()
    result = _validate(GOOD_ANSWER, UnderstandingValidator(call_ai=slow_model, timeout=0.05))

    assert time.monotonic() - started < 0.4
    assert result.classification == "partial"
    assert result.guidance
    assert result.depth_assessment == "Validation timeout"
