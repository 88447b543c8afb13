"""
Recall stage - retrieves memories related to the current focus.

Recall goes through ``MemoryStore.query``, so every recalled memory counts
as accessed and is protected from the next forgetting pass.
"""

import logging
from typing import TYPE_CHECKING

from mind.attention import AttendedItem
from mind.memory import MemoryRecord, QueryCriteria

if TYPE_CHECKING:
    from mind.consciousness import ConsciousnessController

logger = logging.getLogger(__name__)


def build_query(focus: AttendedItem, limit: int) -> QueryCriteria | None:
    """
    Turn a focus into a memory query.

    A stimulus carrying a ``context`` mapping in its data is matched by
    context, otherwise by its type; text content falls back to a search.
    """
    stimulus = focus.stimulus
    context = stimulus.data.get("context")
    if isinstance(context, dict) and context:
        return QueryCriteria(context=dict(context), limit=limit)
    if stimulus.type:
        return QueryCriteria(type=stimulus.type, limit=limit)
    if isinstance(stimulus.content, str) and stimulus.content:
        return QueryCriteria(search=stimulus.content, limit=limit)
    return None


def recall(controller: "ConsciousnessController", focus: AttendedItem | None) -> list[MemoryRecord]:
    """
    Recall memories for the focus.

    Args:
        controller: The agent's consciousness controller.
        focus: Current focus, or None.

    Returns:
        Recalled memories, best first, at most ``recall_limit`` of them.
    """
    if focus is None:
        return []

    limit = controller.config.recall_limit
    query = build_query(focus, limit)
    if query is None:
        return []

    recalled = controller.memory.query(query)
    if not recalled and query.type is not None and isinstance(focus.stimulus.content, str):
        recalled = controller.memory.query(search=focus.stimulus.content, limit=limit)

    logger.debug(f"{controller.owner_id}: recalled {len(recalled)} memories for {focus.stimulus.type}")
    return recalled
