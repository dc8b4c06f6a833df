"""Per-session turn state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    IDLE ──> SENDING ──> AWAITING_INFERENCE ──> IDLE
               │
               └──> IDLE   (persist/create failure)

    Any busy state ──> IDLE  (cancel)
"""
from __future__ import annotations

from enum import Enum


class TurnState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_INFERENCE = "awaiting_inference"


VALID_TRANSITIONS: dict[TurnState, set[TurnState]] = {
    TurnState.IDLE: {
        TurnState.SENDING,
    },
    TurnState.SENDING: {
        TurnState.AWAITING_INFERENCE,
        TurnState.IDLE,
    },
    TurnState.AWAITING_INFERENCE: {
        TurnState.IDLE,
    },
}


def validate_transition(current: TurnState, target: TurnState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise ValueError(
            f"Invalid turn transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
