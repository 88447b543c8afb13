"""
Agent class for NPC simulations.

An agent bundles one consciousness controller with the inputs that other
systems maintain for it: personality, emotional state, relationships and an
inbox of stimuli delivered by the game world between ticks.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import numpy as np

from mind.consciousness import ConsciousnessController, TickResult
from mind.memory import MemoryRecord
from mind.personality import EmotionState, Personality, Relationship
from mind.stimuli import Stimulus

logger = logging.getLogger(__name__)


class Agent:
    """
    An NPC in the simulation.

    Each agent has:
    - A personality that defines its traits
    - A consciousness controller with its own memory, attention and emergence
    - Relationships towards other entities
    - An inbox of stimuli waiting for the next tick
    """

    def __init__(
        self,
        personality: Personality,
        controller: ConsciousnessController | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize an agent.

        Args:
            personality: The agent's personality.
            controller: Existing controller to wrap; created if omitted.
            rng: Random generator for the agent's emergence engine.
            clock: Returns the current time in epoch milliseconds.
        """
        self.personality = personality
        self.controller = controller or ConsciousnessController(
            personality.name, personality, rng=rng, clock=clock
        )
        self.relationships: dict[str, Relationship] = {}
        self.world_state: dict[str, Any] = {}
        self.last_result: TickResult | None = None

        self._inbox: list[Stimulus] = []
        self._inbox_lock = threading.Lock()

    @property
    def name(self) -> str:
        """Get the agent's name."""
        return self.personality.name

    @property
    def emotion(self) -> EmotionState:
        return self.controller.emotional_state

    @emotion.setter
    def emotion(self, value: EmotionState) -> None:
        self.controller.emotional_state = value

    @property
    def memory(self):
        return self.controller.memory

    def perceive(self, stimulus: Stimulus | Mapping[str, Any]) -> None:
        """Queue a stimulus for the next tick. Safe to call from any thread."""
        if not isinstance(stimulus, Stimulus):
            stimulus = Stimulus.from_dict(stimulus)
        with self._inbox_lock:
            self._inbox.append(stimulus)

    def remember(self, content: Any, type: str = "event", **fields: Any) -> str | None:
        """
        Record a memory through the controller.

        Returns:
            The new memory id, or None if the memory was rejected.
        """
        return self.controller.record_memory(MemoryRecord(content=content, type=type, **fields))

    def set_relationship(self, entity_id: str, relationship: Relationship) -> None:
        self.relationships[entity_id] = relationship

    def tick(self, now: float | None = None, cancel: threading.Event | None = None) -> TickResult | None:
        """
        Run one cognition tick over everything perceived since the last one.

        A cancelled tick puts its stimuli back into the inbox.
        """
        with self._inbox_lock:
            stimuli, self._inbox = self._inbox, []

        state = {
            **self.world_state,
            "relationships": dict(self.relationships),
        }
        result = self.controller.update(now=now, stimuli=stimuli, state=state, cancel=cancel)

        if result is None:
            with self._inbox_lock:
                self._inbox[:0] = stimuli
            return None

        self.last_result = result
        if result.behaviors:
            logger.info(f"{self.name}: {', '.join(b.action for b in result.behaviors)}")
        return result

    def get_state(self) -> dict[str, Any]:
        """Summary of the agent for collaborators and UIs."""
        result = self.last_result
        return {
            "name": self.name,
            "awareness": self.controller.awareness,
            "mood": self.emotion.mood,
            "focus": result.focus.stimulus.type if result and result.focus else None,
            "behaviors": [b.action for b in result.behaviors] if result else [],
            "goals": [g.type for g in self.controller.goals],
            "pending_stimuli": len(self._inbox),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert agent state to dictionary for serialization."""
        return {
            "personality": self.personality.to_dict(),
            "controller": self.controller.to_dict(),
            "relationships": {
                entity_id: {"trust": r.trust, "affection": r.affection, "respect": r.respect}
                for entity_id, r in self.relationships.items()
            },
            "world_state": dict(self.world_state),
            "inbox": [s.to_dict() for s in self._inbox],
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "Agent":
        """Create agent from dictionary."""
        personality = Personality.from_dict(data["personality"])
        controller = ConsciousnessController.from_dict(data["controller"], rng=rng, clock=clock)
        agent = cls(personality=personality, controller=controller)
        agent.relationships = {
            entity_id: Relationship(**values)
            for entity_id, values in (data.get("relationships") or {}).items()
        }
        agent.world_state = dict(data.get("world_state") or {})
        for stimulus in data.get("inbox") or []:
            agent.perceive(stimulus)
        return agent
