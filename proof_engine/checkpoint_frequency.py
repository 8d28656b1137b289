"""Checkpoint frequency calculator.

Adaptive spacing from the last three validation results:
- 2+ passes: every 2-3 teaching exchanges (confident student)
- 1+ retry: every 4-5 exchanges (struggling student)
- otherwise: every 3-4 exchanges
"""

from __future__ import annotations

import random
from typing import Optional, Sequence

from proof_engine.models import CheckpointDecision, ConversationState
from proof_engine.utils import random_int

INTRODUCTORY_EXCHANGES = 2


def calculate_next_checkpoint_target(
    history: Sequence[str], rng: Optional[random.Random] = None
) -> int:
    """Number of teaching exchanges before the next checkpoint, in [2, 5]."""
    recent = list(history)[-3:]
    passes = recent.count("pass")
    retries = recent.count("retry")

    if passes >= 2:
        return random_int(2, 3, rng)
    if retries >= 1:
        return random_int(4, 5, rng)
    return random_int(3, 4, rng)


def should_trigger_checkpoint(
    state: ConversationState, rng: Optional[random.Random] = None
) -> CheckpointDecision:
    count = state.teaching_exchange_count

    if count < INTRODUCTORY_EXCHANGES:
        return CheckpointDecision(
            trigger=False,
            next_target=calculate_next_checkpoint_target(state.last_three_validation_results, rng),
            reason=f"Introductory phase ({count} < {INTRODUCTORY_EXCHANGES} exchanges)",
        )

    if state.is_in_checkpoint_mode:
        return CheckpointDecision(
            trigger=False,
            next_target=calculate_next_checkpoint_target(state.last_three_validation_results, rng),
            reason="Already in checkpoint mode",
        )

    # Watermark: at least one new teaching exchange since the last trigger.
    # The current target is kept as is.
    watermark = state.last_checkpoint_at_exchange
    if watermark is not None and count <= watermark:
        return CheckpointDecision(
            trigger=False,
            next_target=state.next_checkpoint_target,
            reason=f"Guard: teaching exchange count ({count}) <= last checkpoint at ({watermark})",
        )

    target = calculate_next_checkpoint_target(state.last_three_validation_results, rng)
    if count >= target:
        return CheckpointDecision(
            trigger=True,
            next_target=target,
            reason=f"Teaching exchange count ({count}) >= target ({target})",
        )
    return CheckpointDecision(
        trigger=False,
        next_target=target,
        reason=f"Teaching exchange count ({count}) < target ({target})",
    )


def update_checkpoint_target(
    history: Sequence[str], rng: Optional[random.Random] = None
) -> int:
    """Recompute the target after a validation result has been recorded."""
    return calculate_next_checkpoint_target(history, rng)
