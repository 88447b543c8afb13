"""
Attention for NPC agents.

This module decides what an agent notices. Every stimulus gets a salience
score from five features (novelty, relevance, urgency, emotional intensity
and social importance); salient stimuli are then ranked with a small
multi-head attention pass, and the winner only takes over the agent's focus
when it clearly beats the decaying strength of the current focus.
"""

import logging
import math
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from config.settings import AttentionConfig, get_settings
from mind.memory import MemoryRecord
from mind.stimuli import Stimulus
from mind.utils import clamp01, field_of, mean_abs, now_ms

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "novelty": 0.3,
    "relevance": 0.25,
    "urgency": 0.2,
    "emotional": 0.15,
    "social": 0.1,
}

URGENCY_MARKERS = {
    "threat": 1.0,
    "danger": 0.9,
    "warning": 0.7,
    "opportunity": 0.6,
    "request": 0.5,
    "information": 0.2,
}
DEFAULT_URGENCY = 0.3


@dataclass
class AttendedItem:
    """A stimulus together with the attention weight it received."""

    stimulus: Stimulus
    weight: float
    focused_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stimulus": self.stimulus.to_dict(),
            "weight": self.weight,
            "focused_at": self.focused_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AttendedItem":
        return cls(
            stimulus=Stimulus.from_dict(data["stimulus"]),
            weight=data.get("weight", 0.0),
            focused_at=data.get("focused_at"),
        )


@dataclass
class FocusResult:
    """
    Outcome of one focus pass.

    ``switched_to`` holds the newly taken focus (before decay) when the pass
    switched focus; ``commit_focus`` applies the result to the selector.
    """

    focus: AttendedItem | None
    attended: list[AttendedItem]
    attention_level: float
    switched_to: AttendedItem | None = None


def stimulus_similarity(stim1: Stimulus, stim2: Stimulus) -> float:
    """Similarity of two stimuli from their type, source, target and category."""
    similarity = 0.0
    if stim1.type == stim2.type:
        similarity += 0.3
    if stim1.source is not None and stim1.source == stim2.source:
        similarity += 0.2
    if stim1.target is not None and stim1.target == stim2.target:
        similarity += 0.2
    if stim1.category is not None and stim1.category == stim2.category:
        similarity += 0.3
    return similarity


def softmax(scores: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    shifted = np.exp(scores - scores.max(axis=-1, keepdims=True))
    return shifted / shifted.sum(axis=-1, keepdims=True)


def _lookup_relationship(relationships: Any, entity_id: str) -> Any:
    if relationships is None:
        return None
    if callable(relationships):
        return relationships(entity_id)
    if isinstance(relationships, Mapping):
        return relationships.get(entity_id)
    return None


class AttentionSelector:
    """
    Per-agent attention state and selection.

    Holds the current focus, a bounded buffer of recently attended items
    (used for novelty and the attention level), a bounded focus history and
    personality-adjusted feature weights.
    """

    def __init__(
        self,
        config: AttentionConfig | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the selector.

        Args:
            config: Attention tunables; defaults to the global settings.
            clock: Returns the current time in epoch milliseconds.
        """
        self.config = config or get_settings().attention
        self._clock = clock or now_ms

        self.current_focus: AttendedItem | None = None
        self.attention_buffer: deque[AttendedItem] = deque(maxlen=self.config.context_window)
        self.focus_history: deque[AttendedItem] = deque(maxlen=self.config.focus_history_size)
        self.personal_weights: dict[str, float] = dict(DEFAULT_WEIGHTS)
        self.distraction_resistance = 0.5

    # Salience features

    def salience(self, stimulus: Stimulus, context: Mapping[str, Any] | None = None) -> float:
        """Weighted sum of the five salience features, clamped to [0, 1]."""
        context = context or {}
        weights = self.personal_weights
        score = (
            weights["novelty"] * self.novelty(stimulus)
            + weights["relevance"] * self.relevance(stimulus, context)
            + weights["urgency"] * self.urgency(stimulus)
            + weights["emotional"] * self.emotional_intensity(stimulus)
            + weights["social"] * self.social_importance(stimulus, context)
        )
        return clamp01(score)

    def novelty(self, stimulus: Stimulus, context: Mapping[str, Any] | None = None) -> float:
        """1 minus the highest similarity to anything recently attended."""
        if not self.attention_buffer:
            return 0.5
        max_similarity = max(
            stimulus_similarity(stimulus, past.stimulus) for past in self.attention_buffer
        )
        return 1.0 - max_similarity

    def relevance(self, stimulus: Stimulus, context: Mapping[str, Any]) -> float:
        """Best partial match of the stimulus against the active goals."""
        goals = context.get("goals") or []
        if not goals:
            return 0.3

        best = 0.0
        for goal in goals:
            relevance = 0.0
            if stimulus.type == field_of(goal, "type"):
                relevance += 0.5
            if stimulus.target is not None and stimulus.target == field_of(goal, "target"):
                relevance += 0.3
            if stimulus.category is not None and stimulus.category == field_of(goal, "category"):
                relevance += 0.2
            best = max(best, relevance)
        return best

    def urgency(self, stimulus: Stimulus, context: Mapping[str, Any] | None = None) -> float:
        return URGENCY_MARKERS.get(stimulus.urgency or "", DEFAULT_URGENCY)

    def emotional_intensity(self, stimulus: Stimulus, context: Mapping[str, Any] | None = None) -> float:
        return mean_abs(stimulus.emotional)

    def social_importance(self, stimulus: Stimulus, context: Mapping[str, Any]) -> float:
        """Mean of trust, affection and respect towards the stimulus source."""
        if not stimulus.source:
            return 0.0
        relationship = _lookup_relationship(context.get("relationships"), stimulus.source)
        if relationship is None:
            return 0.3
        return (
            field_of(relationship, "trust", 0.0)
            + field_of(relationship, "affection", 0.0)
            + field_of(relationship, "respect", 0.0)
        ) / 3

    # Ranking

    def _head_metric(self, head: int) -> Callable[[Stimulus, Mapping[str, Any]], float] | None:
        metrics = (self.relevance, self.novelty, self.emotional_intensity, self.urgency)
        if head < len(metrics):
            return metrics[head]
        return None

    def multi_head_attention(
        self,
        inputs: Sequence[Stimulus],
        context: Mapping[str, Any] | None = None,
    ) -> list[AttendedItem]:
        """
        Rank stimuli with multi-head attention.

        Head ``h`` scores every input with one sub-metric (relevance,
        novelty, emotional intensity, urgency; heads beyond the fourth score
        uniformly), scaled by 1/sqrt(H). Each head is softmaxed and the final
        weight is the mean across heads.

        Returns:
            Attended items sorted by weight, highest first.
        """
        if not inputs:
            return []
        context = context or {}
        heads = max(1, self.config.attention_heads)
        scale = 1 / math.sqrt(heads)

        scores = np.ones((heads, len(inputs)))
        for h in range(heads):
            metric = self._head_metric(h)
            if metric is not None:
                scores[h] = [metric(stimulus, context) for stimulus in inputs]

        weights = softmax(scores * scale).mean(axis=0)
        order = np.argsort(-weights, kind="stable")
        return [AttendedItem(stimulus=inputs[i], weight=float(weights[i])) for i in order]

    # Focus

    def focus(
        self,
        stimuli: Sequence[Stimulus],
        state: Mapping[str, Any] | None = None,
        goals: Sequence[Any] | None = None,
        now: float | None = None,
    ) -> FocusResult:
        """
        Focus attention on the most salient stimuli.

        Args:
            stimuli: Candidate stimuli.
            state: Agent state; a ``relationships`` entry (mapping or callable
                from entity id to trust/affection/respect) feeds the social
                feature.
            goals: Active goals, used for relevance.
            now: Current time in epoch milliseconds.

        Returns:
            The (possibly unchanged) focus, the attended items within the
            attention span and the resulting attention level.
        """
        result = self.select_focus(stimuli, state, goals, now=now)
        self.commit_focus(result)
        return result

    def select_focus(
        self,
        stimuli: Sequence[Stimulus],
        state: Mapping[str, Any] | None = None,
        goals: Sequence[Any] | None = None,
        now: float | None = None,
    ) -> FocusResult:
        """Compute a focus pass without changing the selector."""
        now = self._clock() if now is None else now
        context = {**(state or {}), "goals": list(goals or []), "previous_focus": self.current_focus}

        salient = [s for s in stimuli if self.salience(s, context) > self.config.salience_threshold]
        attended = self.multi_head_attention(salient, context)
        focused = attended[: self.config.attention_span]

        switched_to = None
        focus = self.current_focus
        if focused and self.should_switch_focus(focused[0].weight, now):
            switched_to = replace(focused[0], focused_at=now)
            focus = switched_to

        if focus is not None and self._strength_of(focus, now) < self.config.salience_threshold * 0.5:
            focus = None

        recent = (list(self.attention_buffer) + focused)[-self.config.attention_span:]
        level = sum(item.weight for item in recent) / len(recent) if recent else 0.0

        return FocusResult(focus=focus, attended=focused, attention_level=level, switched_to=switched_to)

    def commit_focus(self, result: FocusResult) -> None:
        """Apply a pass computed by ``select_focus``."""
        if result.switched_to is not None:
            if self.current_focus is not None:
                logger.debug(
                    f"Focus switched from {self.current_focus.stimulus.type} "
                    f"to {result.switched_to.stimulus.type}"
                )
            self.focus_history.append(result.switched_to)
        elif self.current_focus is not None and result.focus is None:
            logger.debug(f"Focus on {self.current_focus.stimulus.type} faded")

        self.current_focus = result.focus
        self.attention_buffer.extend(result.attended)

    def attend(
        self,
        memories: Sequence[MemoryRecord],
        state: Mapping[str, Any] | None = None,
        goals: Sequence[Any] | None = None,
    ) -> list[MemoryRecord]:
        """
        Rank memories by attention without changing the focus.

        Memories are treated as low-urgency stimuli from the agent itself.
        """
        stimuli = [
            Stimulus(
                type=memory.type or "memory",
                source=memory.source or "self",
                target=memory.target,
                category=memory.category.value if memory.category else None,
                urgency="information",
                emotional=dict(memory.emotional_context or {}),
                content=memory.content,
                timestamp=memory.timestamp,
                data={"memory_id": memory.id},
            )
            for memory in memories
        ]
        context = {**(state or {}), "goals": list(goals or [])}
        salient = [s for s in stimuli if self.salience(s, context) > self.config.salience_threshold]
        by_id = {memory.id: memory for memory in memories}
        ranked = self.multi_head_attention(salient, context)[: self.config.attention_span]
        return [by_id[item.stimulus.data["memory_id"]] for item in ranked]

    def focus_strength(self, now: float | None = None) -> float:
        """Weight of the current focus, decayed exponentially since it was taken."""
        if self.current_focus is None:
            return 0.0
        now = self._clock() if now is None else now
        return self._strength_of(self.current_focus, now)

    def _strength_of(self, item: AttendedItem, now: float) -> float:
        focused_at = item.focused_at if item.focused_at is not None else now
        duration = max(0.0, now - focused_at)
        return item.weight * math.exp(-self.config.focus_decay_rate * duration / 1000)

    def should_switch_focus(self, weight: float, now: float | None = None) -> bool:
        """
        Whether a candidate with ``weight`` may take over the focus.

        The candidate has to beat the current focus strength scaled by
        ``1 + distraction_resistance``.
        """
        if self.current_focus is None:
            return True
        threshold = self.focus_strength(now) * (1 + self.distraction_resistance)
        return weight > threshold

    def attention_level(self) -> float:
        """Mean weight of the most recent attended items."""
        if not self.attention_buffer:
            return 0.0
        recent = list(self.attention_buffer)[-self.config.attention_span:]
        return sum(item.weight for item in recent) / len(recent)

    def personalize_weights(self, personality: Mapping[str, float] | Any) -> None:
        """
        Adjust feature weights from personality traits.

        Curious agents weigh novelty more, neurotic agents urgency and
        extraverted agents social importance. Weights are recomputed from
        the defaults and renormalized to sum to 1.
        """
        weights = dict(DEFAULT_WEIGHTS)
        if (field_of(personality, "curiosity") or 0.0) > 0.7:
            weights["novelty"] *= 1.3
        if (field_of(personality, "neuroticism") or 0.0) > 0.7:
            weights["urgency"] *= 1.4
        if (field_of(personality, "extraversion") or 0.0) > 0.7:
            weights["social"] *= 1.3

        total = sum(weights.values())
        self.personal_weights = {key: value / total for key, value in weights.items()}

        conscientiousness = field_of(personality, "conscientiousness")
        self.distraction_resistance = clamp01(0.5 if conscientiousness is None else conscientiousness)

    def get_stats(self, now: float | None = None) -> dict[str, Any]:
        """Attention statistics."""
        now = self._clock() if now is None else now
        focus_duration = 0.0
        if self.current_focus is not None and self.current_focus.focused_at is not None:
            focus_duration = now - self.current_focus.focused_at
        return {
            "current_focus": self.current_focus.stimulus.type if self.current_focus else "none",
            "attention_span_used": len(self.attention_buffer),
            "focus_duration": focus_duration,
            "distraction_resistance": self.distraction_resistance,
            "focus_history": len(self.focus_history),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization (last 10 buffer items, last 5 focuses)."""
        return {
            "current_focus": self.current_focus.to_dict() if self.current_focus else None,
            "attention_buffer": [item.to_dict() for item in list(self.attention_buffer)[-10:]],
            "focus_history": [item.to_dict() for item in list(self.focus_history)[-5:]],
            "distraction_resistance": self.distraction_resistance,
            "personal_weights": dict(self.personal_weights),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        config: AttentionConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "AttentionSelector":
        """Create a selector from ``to_dict`` output."""
        selector = cls(config=config, clock=clock)
        if data.get("current_focus"):
            selector.current_focus = AttendedItem.from_dict(data["current_focus"])
        selector.attention_buffer.extend(
            AttendedItem.from_dict(item) for item in data.get("attention_buffer", [])
        )
        selector.focus_history.extend(
            AttendedItem.from_dict(item) for item in data.get("focus_history", [])
        )
        selector.distraction_resistance = data.get("distraction_resistance", 0.5)
        selector.personal_weights = dict(data.get("personal_weights") or DEFAULT_WEIGHTS)
        return selector
