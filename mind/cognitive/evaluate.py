"""
Evaluate stage - lets behaviors emerge.
"""

from typing import TYPE_CHECKING, Any

from mind.emergence import EmergencePass

if TYPE_CHECKING:
    from mind.consciousness import ConsciousnessController


def evaluate(
    controller: "ConsciousnessController",
    state: dict[str, Any],
    now: float,
) -> EmergencePass:
    """Evaluate one emergence pass; it is recorded by the write-back stage."""
    return controller.emergence.evaluate(
        state,
        controller.memory,
        controller.personality.traits,
        now=now,
    )
