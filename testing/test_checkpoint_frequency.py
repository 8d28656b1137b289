"""Tests for adaptive checkpoint spacing."""

import random

from proof_engine.checkpoint_frequency import (
    calculate_next_checkpoint_target,
    should_trigger_checkpoint,
    update_checkpoint_target,
)
from proof_engine.models import ConversationState


class LowRandom:
    """Always picks the low end of the range."""

    def randint(self, low, high):
        return low


class HighRandom:
    def randint(self, low, high):
        return high


def _targets(history, n=200):
    rng = random.Random(42)
    return {calculate_next_checkpoint_target(history, rng) for _ in range(n)}


def test_target_range_for_confident_student():
    assert _targets(["pass", "pass"]) <= {2, 3}
    assert _targets(["retry", "pass", "pass"]) <= {2, 3}


def test_target_range_for_struggling_student():
    assert _targets(["retry"]) <= {4, 5}
    assert _targets(["pass", "partial", "retry"]) <= {4, 5}


def test_target_range_default():
    assert _targets([]) <= {3, 4}
    assert _targets(["partial", "pass"]) <= {3, 4}


def test_target_only_considers_last_three_results():
    # The early retry has dropped out of the window.
    assert _targets(["retry", "pass", "pass", "partial"]) <= {2, 3}


def test_target_always_within_bounds_for_random_histories():
    rng = random.Random(3)
    for _ in range(300):
        history = [rng.choice(["pass", "partial", "retry"]) for _ in range(rng.randint(0, 6))]
        assert 2 <= calculate_next_checkpoint_target(history, rng) <= 5


def test_introductory_guard_never_triggers():
    for count in (0, 1):
        state = ConversationState(teaching_exchange_count=count, last_three_validation_results=["pass", "pass"])
        decision = should_trigger_checkpoint(state, LowRandom())
        assert decision.trigger is False
        assert "Introductory" in decision.reason


def test_no_trigger_while_in_checkpoint_mode():
    state = ConversationState(teaching_exchange_count=9, is_in_checkpoint_mode=True)

    assert should_trigger_checkpoint(state, LowRandom()).trigger is False


def test_watermark_guard_blocks_retrigger_and_keeps_target():
    state = ConversationState(teaching_exchange_count=3, last_checkpoint_at_exchange=3, next_checkpoint_target=4)

    decision = should_trigger_checkpoint(state, LowRandom())

    assert decision.trigger is False
    assert decision.next_target == 4


def test_watermark_guard_holds_for_all_counts_up_to_watermark():
    for watermark in range(2, 8):
        for count in range(2, watermark + 1):
            state = ConversationState(teaching_exchange_count=count, last_checkpoint_at_exchange=watermark)
            assert should_trigger_checkpoint(state, LowRandom()).trigger is False


def test_triggers_when_count_reaches_target():
    state = ConversationState(teaching_exchange_count=3)

    decision = should_trigger_checkpoint(state, LowRandom())

    assert decision.trigger is True
    assert decision.next_target == 3


def test_no_trigger_below_target():
    state = ConversationState(teaching_exchange_count=3)

    decision = should_trigger_checkpoint(state, HighRandom())

    assert decision.trigger is False
    assert decision.next_target == 4


def test_update_checkpoint_target_uses_history():
    assert update_checkpoint_target(["retry"], LowRandom()) == 4
    assert update_checkpoint_target(["pass", "pass"], HighRandom()) == 3
