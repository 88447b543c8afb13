"""
Attend stage - chooses what the agent focuses on.
"""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from mind.attention import FocusResult
from mind.stimuli import Stimulus

if TYPE_CHECKING:
    from mind.consciousness import ConsciousnessController

logger = logging.getLogger(__name__)


def attend(
    controller: "ConsciousnessController",
    stimuli: Sequence[Stimulus],
    state: dict[str, Any],
    now: float,
) -> FocusResult:
    """
    Run the attention selector over this tick's stimuli.

    The selector itself is only updated by the write-back stage.

    Args:
        controller: The agent's consciousness controller.
        stimuli: Stimuli delivered since the previous tick.
        state: Agent state built for this tick.
        now: Current time in epoch milliseconds.

    Returns:
        The focus result; the focus may be unchanged from the previous tick.
    """
    result = controller.attention.select_focus(stimuli, state, controller.goals, now=now)
    if result.focus is not None:
        logger.debug(
            f"{controller.owner_id}: focused on {result.focus.stimulus.type} "
            f"(level={result.attention_level:.2f})"
        )
    return result
