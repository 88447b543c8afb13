"""
Consciousness controller - runs one agent's cognition tick.

A tick moves through four stages (see ``mind.cognitive``): attend to the
incoming stimuli, recall memories related to the focus, evaluate what
behaviors emerge, and write the results back into working memory, thoughts
and goals. The controller also owns the agent's awareness level, goals and
beliefs, and is the entry point for recording new memories.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, fields
from typing import Any

import numpy as np

from config.settings import ConsciousnessConfig, get_settings
from mind.attention import AttendedItem, AttentionSelector
from mind.emergence import EmergenceEngine, EmergentBehavior
from mind.errors import InvalidMemoryError
from mind.memory import MemoryRecord, MemoryStore
from mind.personality import EmotionState, Personality
from mind.stimuli import Stimulus
from mind.utils import clamp01, now_ms

logger = logging.getLogger(__name__)


@dataclass
class Goal:
    """
    Something the agent is working towards.

    Attributes:
        type: Goal type ("survival", "knowledge", "social", ...). Stimuli and
            memories of the same type are considered relevant to the goal.
        description: Human readable description.
        priority: Importance of the goal in [0, 1].
        progress: Completion in [0, 1]; a goal at 1 is complete.
        target: Entity or object the goal concerns, if any.
        category: Broad grouping used to match stimuli.
        deadline: Epoch milliseconds after which the goal expires, if any.
    """

    type: str
    description: str = ""
    priority: float = 0.5
    progress: float = 0.0
    target: str | None = None
    category: str | None = None
    deadline: float | None = None

    @property
    def completed(self) -> bool:
        return self.progress >= 1.0

    def expired(self, now: float) -> bool:
        return self.deadline is not None and now > self.deadline

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Goal":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TickResult:
    """What happened during one tick."""

    focus: AttendedItem | None
    attended: list[AttendedItem]
    attention_level: float
    recalled: list[MemoryRecord]
    behaviors: list[EmergentBehavior]
    awareness: float
    consolidated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "focus": self.focus.to_dict() if self.focus else None,
            "attended": [item.to_dict() for item in self.attended],
            "attention_level": self.attention_level,
            "recalled": [m.id for m in self.recalled],
            "behaviors": [b.to_dict() for b in self.behaviors],
            "awareness": self.awareness,
            "consolidated": self.consolidated,
        }


class ConsciousnessController:
    """
    Per-agent orchestrator of memory, attention and emergence.

    Each agent owns exactly one controller, which in turn exclusively owns
    its memory store, attention selector and emergence engine. Ticks of
    different agents can therefore run in parallel.
    """

    def __init__(
        self,
        owner_id: str,
        personality: Personality,
        config: ConsciousnessConfig | None = None,
        memory: MemoryStore | None = None,
        attention: AttentionSelector | None = None,
        emergence: EmergenceEngine | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the controller.

        Args:
            owner_id: Identifier of the agent.
            personality: The agent's personality.
            config: Consciousness tunables; defaults to the global settings.
            memory: Memory store to use; a new one is created if omitted.
            attention: Attention selector to use; created if omitted.
            emergence: Emergence engine to use; created if omitted.
            rng: Random generator handed to a newly created emergence engine.
            clock: Returns the current time in epoch milliseconds.
        """
        self.owner_id = owner_id
        self.personality = personality
        self.config = config or get_settings().consciousness
        self._clock = clock or now_ms

        self.memory = memory or MemoryStore(owner_id, clock=self._clock)
        self.attention = attention or AttentionSelector(clock=self._clock)
        self.emergence = emergence or EmergenceEngine(rng=rng, clock=self._clock)
        self.attention.personalize_weights(personality.traits)

        self.awareness = 1.0
        self.last_update: float | None = None
        self.emotional_state = EmotionState()
        self.active_thoughts: list[dict[str, Any]] = []
        self.thought_history: deque[dict[str, Any]] = deque(maxlen=self.config.max_thoughts)
        self.goals: list[Goal] = self._initial_goals()
        self.beliefs: dict[str, float] = self._initial_beliefs()

    def _initial_goals(self) -> list[Goal]:
        goals = [Goal(type="survival", description="Stay safe and healthy", priority=1.0)]

        curiosity = self.personality.trait("curiosity", 0.0)
        if curiosity > 0.6:
            goals.append(Goal(type="knowledge", description="Learn new things", priority=curiosity))

        extraversion = self.personality.trait("extraversion", 0.0)
        if extraversion > 0.6:
            goals.append(
                Goal(
                    type="social",
                    description="Make friends and maintain relationships",
                    priority=extraversion,
                    category="social",
                )
            )
        return goals

    def _initial_beliefs(self) -> dict[str, float]:
        beliefs = {}
        if self.personality.trait("agreeableness", 0.0) > 0.7:
            beliefs["people_are_good"] = 0.8
        if self.personality.trait("curiosity", 0.0) > 0.7:
            beliefs["learning_is_important"] = 0.9
        if self.personality.trait("conscientiousness", 0.0) > 0.7:
            beliefs["safety_first"] = 0.85
        return beliefs

    # Tick

    def update(
        self,
        now: float | None = None,
        stimuli: Sequence[Stimulus] = (),
        state: Mapping[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> TickResult | None:
        """
        Run one cognition tick.

        Args:
            now: Current time in epoch milliseconds.
            stimuli: Stimuli delivered since the previous tick.
            state: Extra agent state from the world (threat, energy,
                nearby_entities, relationships, situation, ...).
            cancel: When set before the write-back stage, the tick stops
                there and commits nothing: focus, emergence history,
                awareness, working memory, thoughts and goals stay as they
                were. Recalled memories still count as accessed.

        Returns:
            The tick result, or None if the tick was cancelled.
        """
        from mind.cognitive import attend, evaluate, recall, write_back

        now = self._clock() if now is None else now
        delta = 0.0 if self.last_update is None else max(0.0, now - self.last_update)
        awareness = self._next_awareness(delta)

        tick_state = self.build_state({"awareness": awareness, **(state or {})})

        # 1. Attend
        focus = attend(self, stimuli, tick_state, now)
        if focus.focus is not None:
            tick_state.setdefault("focus_type", focus.focus.stimulus.type)

        # 2. Recall
        recalled = recall(self, focus.focus)

        # 3. Evaluate
        evaluation = evaluate(self, tick_state, now)

        if cancel is not None and cancel.is_set():
            logger.info(f"{self.owner_id}: tick cancelled before write-back")
            return None

        # 4. Write back
        consolidated = write_back(self, focus, evaluation, awareness, now)

        return TickResult(
            focus=focus.focus,
            attended=focus.attended,
            attention_level=focus.attention_level,
            recalled=recalled,
            behaviors=evaluation.behaviors,
            awareness=self.awareness,
            consolidated=consolidated,
        )

    tick = update

    def _next_awareness(self, delta: float) -> float:
        awareness = self.awareness - self.config.awareness_decay * delta
        if self.active_thoughts:
            awareness += self.config.awareness_recovery * delta
        return clamp01(awareness)

    def build_state(self, extra: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Agent state seen by attention and emergence, overlaid with ``extra``."""
        state: dict[str, Any] = {
            "awareness": self.awareness,
            "emotional_context": self.emotional_state.as_context(),
            "mood": self.emotional_state.mood,
            "emotional_energy": self.emotional_state.energy,
            "goals": list(self.goals),
        }
        state.update(extra or {})
        return state

    # Memories

    def record_memory(self, record: MemoryRecord | Mapping[str, Any]) -> str | None:
        """
        Record a new memory with the agent's current awareness and emotions.

        Importance is recomputed from the emotional impact, the goals the
        memory is relevant to and how novel the memory is.

        Returns:
            The new memory id, or None if the record was rejected.
        """
        if not isinstance(record, MemoryRecord):
            try:
                record = MemoryRecord.from_dict(record)
            except (InvalidMemoryError, TypeError, ValueError) as e:
                logger.warning(f"{self.owner_id}: rejected memory: {e}")
                return None

        record.awareness = self.awareness
        if record.emotional_context is None and self.emotional_state.values:
            record.emotional_context = dict(self.emotional_state.values)
        record.importance = self.memory_importance(record)

        return self.memory.store(record)

    def memory_importance(self, record: MemoryRecord) -> float:
        """0.5 + |impact|*0.3 + relevant goal priorities*0.2 + novelty*0.2, clamped."""
        importance = 0.5
        if record.emotional_impact:
            importance += abs(record.emotional_impact) * 0.3
        for goal in self.goals:
            if self._is_relevant_to_goal(record, goal):
                importance += goal.priority * 0.2
        importance += self._novelty(record) * 0.2
        return clamp01(importance)

    def _is_relevant_to_goal(self, record: MemoryRecord, goal: Goal) -> bool:
        if record.type == goal.type:
            return True
        if goal.target is not None and record.target == goal.target:
            return True
        return goal.category is not None and record.context.get("category") == goal.category

    def _novelty(self, record: MemoryRecord) -> float:
        return 1.0 / (1 + len(self.memory.peek(type=record.type)))

    # Goals

    def add_goal(self, goal: Goal) -> None:
        self.goals.append(goal)
        self.refresh_goals(self._clock())

    def advance_goal(self, goal_type: str, amount: float) -> Goal | None:
        """
        Move the highest-priority goal of ``goal_type`` forward by ``amount``.

        Completed goals are dropped on the next refresh.
        """
        for goal in self.goals:
            if goal.type == goal_type:
                goal.progress = clamp01(goal.progress + amount)
                return goal
        return None

    def refresh_goals(self, now: float) -> None:
        """Drop completed and expired goals, sort by priority and keep the top ones."""
        remaining = []
        for goal in self.goals:
            if goal.completed:
                logger.info(f"{self.owner_id}: completed goal {goal.type}")
            elif goal.expired(now):
                logger.info(f"{self.owner_id}: goal {goal.type} expired")
            else:
                remaining.append(goal)
        remaining.sort(key=lambda g: g.priority, reverse=True)
        self.goals = remaining[: self.config.max_goals]

    # Introspection and serialization

    def get_stats(self) -> dict[str, Any]:
        return {
            "awareness": self.awareness,
            "goals": [g.type for g in self.goals],
            "active_thoughts": len(self.active_thoughts),
            "memory": self.memory.get_stats(),
            "attention": self.attention.get_stats(),
            "emergence": self.emergence.get_stats(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "owner_id": self.owner_id,
            "personality": self.personality.to_dict(),
            "awareness": self.awareness,
            "last_update": self.last_update,
            "emotional_state": self.emotional_state.to_dict(),
            "goals": [g.to_dict() for g in self.goals],
            "beliefs": dict(self.beliefs),
            "memory": self.memory.to_dict(),
            "attention": self.attention.to_dict(),
            "emergence": self.emergence.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        config: ConsciousnessConfig | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "ConsciousnessController":
        """Restore a controller from ``to_dict`` output."""
        clock = clock or now_ms
        personality = Personality.from_dict(data["personality"])
        memory = MemoryStore.from_dict(data["memory"], clock=clock) if data.get("memory") else None
        attention = AttentionSelector.from_dict(data["attention"], clock=clock) if data.get("attention") else None

        controller = cls(
            owner_id=data["owner_id"],
            personality=personality,
            config=config,
            memory=memory,
            attention=attention,
            rng=rng,
            clock=clock,
        )
        if data.get("emergence"):
            controller.emergence.load_state(data["emergence"])

        controller.awareness = data.get("awareness", 1.0)
        controller.last_update = data.get("last_update")
        controller.emotional_state = EmotionState.from_dict(data.get("emotional_state") or {})
        if "goals" in data:
            controller.goals = [Goal.from_dict(g) for g in data["goals"]]
        controller.beliefs = dict(data.get("beliefs") or controller.beliefs)
        return controller
