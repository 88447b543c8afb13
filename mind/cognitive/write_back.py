"""
Write-back stage - commits the results of a tick to the agent's state.

Nothing computed by the earlier stages is applied before this stage, so a
tick cancelled ahead of it leaves focus, emergence history and awareness as
they were.
"""

import logging
from typing import TYPE_CHECKING

from mind.attention import FocusResult
from mind.emergence import EmergencePass

if TYPE_CHECKING:
    from mind.consciousness import ConsciousnessController

logger = logging.getLogger(__name__)


def write_back(
    controller: "ConsciousnessController",
    focus: FocusResult,
    evaluation: EmergencePass,
    awareness: float,
    now: float,
) -> int:
    """
    Commit a tick: focus, emergence, awareness, consolidation, thoughts and goals.

    Args:
        controller: The agent's consciousness controller.
        focus: Result of the attend stage.
        evaluation: Result of the evaluate stage.
        awareness: Awareness level computed for this tick.
        now: Current time in epoch milliseconds.

    Returns:
        Number of memories consolidated.
    """
    controller.attention.commit_focus(focus)
    controller.emergence.commit(evaluation)
    controller.awareness = awareness
    controller.last_update = now

    threshold = controller.config.consolidation_threshold
    consolidated = 0
    for record in controller.memory.working_memory:
        if record.importance > threshold and not record.consolidated:
            if controller.memory.consolidate(record):
                consolidated += 1

    thoughts = [
        {"type": "attended", "stimulus": item.stimulus.type, "weight": item.weight, "timestamp": now}
        for item in focus.attended
    ]
    thoughts.extend(
        {"type": "intention", "action": b.action, "weight": b.strength, "timestamp": now}
        for b in evaluation.behaviors
    )
    controller.active_thoughts = thoughts[: controller.config.working_memory_size]
    controller.thought_history.extend(thoughts)

    controller.refresh_goals(now)

    if consolidated:
        logger.debug(f"{controller.owner_id}: consolidated {consolidated} working memories")
    return consolidated
