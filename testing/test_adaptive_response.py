"""Tests for adaptive responses after validation."""

import json

from proof_engine.adaptive_response import AdaptiveResponseGenerator, contains_banned_word, soften
from proof_engine.models import ConversationState, ValidationResult

BANNED = ("fail", "wrong", "bad")


def _state(**overrides):
    data = {
        "mode": "checkpoint",
        "is_in_checkpoint_mode": True,
        "current_checkpoint_concept": "photosynthesis",
        "teaching_exchange_count": 3,
    }
    data.update(overrides)
    return ConversationState(**data)


def _result(classification, **overrides):
    data = {
        "classification": classification,
        "key_concepts": ["sunlight", "sugar"],
        "relationships": ["sunlight makes sugar"],
        "misconceptions": [],
        "depth_assessment": "Appropriate depth",
        "guidance": "Explain how these ideas connect, and why one leads to the other.",
    }
    data.update(overrides)
    return ValidationResult(**data)


def _assert_clean(text):
    assert not any(word in text.lower() for word in BANNED)


def test_pass_celebrates_concept_and_progress():
    response = AdaptiveResponseGenerator().generate(
        _result("pass"), _state(concepts_proven_this_session=["gravity"])
    )

    assert "photosynthesis" in response.content
    assert "You've proven 2 concepts today." in response.content
    assert response.should_advance is True
    assert response.should_reteach is False
    assert response.metadata.is_celebration is True
    assert response.metadata.concept == "photosynthesis"


def test_pass_progress_counts_concept_once():
    response = AdaptiveResponseGenerator().generate(
        _result("pass"), _state(concepts_proven_this_session=["photosynthesis"])
    )

    assert "You've proven 1 concept today." in response.content


def test_partial_names_captured_and_missing():
    response = AdaptiveResponseGenerator().generate(_result("partial", relationships=[]), _state())

    assert "sunlight, sugar" in response.content
    assert "how those ideas connect" in response.content
    assert response.content.rstrip().endswith("?")
    assert response.should_advance is False
    assert response.should_reteach is False
    assert response.metadata.is_validation_feedback is True


def test_retry_reteaches_and_renews_explain_back():
    result = _result(
        "retry",
        key_concepts=[],
        relationships=[],
        is_vague_acknowledgment=True,
        diagnostic_hint="I need to hear the concept explained, not just acknowledged.",
    )

    response = AdaptiveResponseGenerator().generate(result, _state())

    assert "let's try again" in response.content.lower()
    assert "differently" in response.content
    assert "in your own words" in response.follow_up_prompt.lower()
    assert response.content.endswith(response.follow_up_prompt)
    assert response.should_reteach is True
    assert response.should_advance is False
    assert response.metadata.is_proof_checkpoint is True


def test_no_output_contains_discouraging_words():
    generator = AdaptiveResponseGenerator()
    for classification in ("pass", "partial", "retry"):
        result = _result(classification, guidance="That was wrong and bad, you failed.")
        response = generator.generate(result, _state(current_checkpoint_concept="bad habits"))
        _assert_clean(response.content)
        _assert_clean(response.follow_up_prompt or "")


def test_soften_replaces_whole_words():
    assert soften("That was wrong") == "That was off track"
    assert not contains_banned_word(soften("Failures happen, badly"))
    assert contains_banned_word("you failed")
    assert not contains_banned_word("a ball bounced")
    assert soften("Sinbad and the failure") == "Sinbad and the failure"


def test_model_text_used_when_clean():
    def model(prompt):
        return json.dumps(
            {
                "encouragement": "Nice thinking!",
                "targeted_hint": "Think about where the sugar goes.",
                "clarifying_question": "What does the plant do with it?",
            }
        )

    response = AdaptiveResponseGenerator(call_ai=model).generate(_result("partial"), _state())

    assert response.content == "Nice thinking! Think about where the sugar goes. What does the plant do with it?"


def test_pass_model_text_must_name_the_concept():
    def model(prompt):
        return json.dumps(
            {"celebration": "Nice work!", "progress_message": "x", "transition_message": "On we go."}
        )

    response = AdaptiveResponseGenerator(call_ai=model).generate(_result("pass"), _state())

    assert "photosynthesis" in response.content.lower()
    assert response.content.startswith("Excellent explanation!")


def test_partial_model_text_must_end_with_a_question():
    def model(prompt):
        return json.dumps(
            {
                "encouragement": "Nice thinking!",
                "targeted_hint": "Think about where the sugar goes.",
                "clarifying_question": "Tell me more about that.",
            }
        )

    response = AdaptiveResponseGenerator(call_ai=model).generate(_result("partial"), _state())

    assert response.content.startswith("You're on the right track!")
    assert response.content.rstrip().endswith("?")


def test_model_text_with_banned_word_is_rejected():
    def model(prompt):
        return json.dumps(
            {
                "supportive_opening": "That was wrong.",
                "reteaching_content": "Plants make sugar.",
                "new_explain_back_prompt": "In your own words, explain it.",
            }
        )

    response = AdaptiveResponseGenerator(call_ai=model).generate(_result("retry"), _state())

    assert "let's try again" in response.content.lower()
    _assert_clean(response.content)


def test_pass_model_text_keeps_progress_sentence():
    def model(prompt):
        return json.dumps(
            {
                "celebration": "Brilliant work on photosynthesis!",
                "progress_message": "whatever",
                "transition_message": "Let's keep going.",
            }
        )

    response = AdaptiveResponseGenerator(call_ai=model).generate(_result("pass"), _state())

    assert "You've proven 1 concept today." in response.content
    assert response.content.startswith("Brilliant work")


def test_concept_names_are_not_rewritten():
    concept = "Sinbad and the failure of the Roman Empire"
    generator = AdaptiveResponseGenerator()

    passed = generator.generate(_result("pass"), _state(current_checkpoint_concept=concept))
    retried = generator.generate(_result("retry"), _state(current_checkpoint_concept=concept))

    assert concept in passed.content
    assert concept in retried.follow_up_prompt
    assert not contains_banned_word(retried.content)


def test_concept_with_banned_word_is_named_generically():
    response = AdaptiveResponseGenerator().generate(
        _result("retry"), _state(current_checkpoint_concept="bad debt")
    )

    assert "this concept" in response.follow_up_prompt
    assert response.metadata.concept == "bad debt"
    assert not contains_banned_word(response.content)
