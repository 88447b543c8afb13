"""
Emergent behavior for NPC agents.

Behaviors are not authored directly. Each tick the engine assembles a
context from the agent's state, memories and personality, fires the rules
of the shared rule library, and looks for patterns in what fired: single
rules, known pairwise synergies and longer chains of rules whose outcomes
set each other off. Patterns are tracked per agent, so the first occurrence
of a combination is treated as novel and repeated ones turn into habits.
Strong patterns become behaviors, and behaviors can in turn combine into
meta-emergent behaviors.
"""

import logging
import math
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any
from uuid import uuid4

import numpy as np

from config.settings import EmergenceConfig, get_settings
from mind.errors import RuleEvaluationError
from mind.memory import MemoryCategory, MemoryStore
from mind.rules import (
    BEHAVIOR_COMBINATIONS,
    BEHAVIOR_RULES,
    RULE_SYNERGIES,
    BehaviorRule,
    rules_connected,
)
from mind.utils import DAY_MS, field_of, now_ms, numeric_values

logger = logging.getLogger(__name__)

KIND_MEMORY_TYPES = ("kindness", "help", "gift", "favor")

CREATION_TYPES = ("art", "story", "song", "invention")
FAVOR_TYPES = ("gift", "help", "information", "protection")
SURPRISE_TYPES = ("dance", "joke", "magic_trick", "unexpected_gift")


class PatternKind(str, Enum):
    SINGLE = "single"
    INTERACTION = "interaction"
    COMPLEX = "complex"
    NOVEL = "novel"
    HABIT_FORMING = "habit_forming"


@dataclass(frozen=True)
class EmergenceContext:
    """Everything the rule conditions and outcome weights can look at."""

    personality: Mapping[str, float]
    needs: Mapping[str, float]
    awareness: float = 1.0
    threat: float = 0.0
    emotional_extreme: float = 0.0
    mood: str = "neutral"
    social_context: bool = False
    recent_kindness: float = 0.0
    last_helper: str | None = None
    novelty: float = 0.5
    active_goal: Any = None
    goal_progress: float = 0.0
    conflicting_goals: int = 0
    similar_past_situation: str | None = None
    past_outcome: str | None = None
    traumatic_memory_triggered: bool = False
    incomplete_pattern: bool = False
    emotional_energy: float = 0.5
    timestamp: float = 0.0

    def trait(self, name: str, default: float = 0.5) -> float:
        value = self.personality.get(name)
        return default if value is None else float(value)


@dataclass
class RuleActivation:
    rule: BehaviorRule
    strength: float


@dataclass
class EmergentPattern:
    """A combination of fired rules and the outcomes it suggests."""

    kind: PatternKind
    rule_ids: tuple[str, ...]
    strength: float
    outcomes: tuple[str, ...]
    discovery_count: int = 1
    first_seen: float = 0.0

    @property
    def key(self) -> str:
        return pattern_key(self.kind, self.rule_ids)


def pattern_key(kind: PatternKind | str, rule_ids: Sequence[str]) -> str:
    """Canonical registry key: kind followed by the sorted rule ids."""
    kind_value = kind.value if isinstance(kind, PatternKind) else kind
    return f"{kind_value}_{'_'.join(sorted(rule_ids))}"


class PatternRegistry:
    """
    Per-agent record of every rule combination seen so far.

    Patterns are kept in an append-only list with a key -> position index.
    """

    def __init__(self, habit_interval: int = 10, creativity: float = 0.6):
        self.habit_interval = habit_interval
        self.creativity = creativity
        self._patterns: list[EmergentPattern] = []
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def get(self, key: str) -> EmergentPattern | None:
        position = self._index.get(key)
        return None if position is None else self._patterns[position]

    def observe(self, pattern: EmergentPattern, now: float) -> EmergentPattern | None:
        """
        Record one occurrence of ``pattern``.

        Returns:
            A ``novel`` variant on the first occurrence, a ``habit_forming``
            variant on every ``habit_interval``-th occurrence, else None.
        """
        variant = self.variant(pattern, now)
        self.record(pattern, now)
        return variant

    def variant(self, pattern: EmergentPattern, now: float) -> EmergentPattern | None:
        """The variant the next occurrence of ``pattern`` yields, without recording it."""
        known = self.get(pattern.key)
        if known is None:
            return replace(
                pattern,
                kind=PatternKind.NOVEL,
                strength=pattern.strength * self.creativity,
                outcomes=(*pattern.outcomes, "surprising_behavior"),
                first_seen=now,
            )

        count = known.discovery_count + 1
        if count % self.habit_interval == 0:
            return replace(
                pattern,
                kind=PatternKind.HABIT_FORMING,
                strength=pattern.strength * 0.8,
                outcomes=(*pattern.outcomes, "habit_formation"),
                discovery_count=count,
                first_seen=known.first_seen,
            )
        return None

    def record(self, pattern: EmergentPattern, now: float) -> None:
        position = self._index.get(pattern.key)
        if position is None:
            self._index[pattern.key] = len(self._patterns)
            self._patterns.append(replace(pattern, discovery_count=1, first_seen=now))
        else:
            self._patterns[position].discovery_count += 1

    def counts_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for pattern in self._patterns:
            counts[pattern.kind.value] = counts.get(pattern.kind.value, 0) + pattern.discovery_count
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "habit_interval": self.habit_interval,
            "patterns": [
                {**asdict(p), "kind": p.kind.value, "rule_ids": list(p.rule_ids), "outcomes": list(p.outcomes)}
                for p in self._patterns
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], creativity: float = 0.6) -> "PatternRegistry":
        registry = cls(habit_interval=data.get("habit_interval", 10), creativity=creativity)
        for item in data.get("patterns", []):
            pattern = EmergentPattern(
                kind=PatternKind(item["kind"]),
                rule_ids=tuple(item["rule_ids"]),
                strength=item["strength"],
                outcomes=tuple(item["outcomes"]),
                discovery_count=item.get("discovery_count", 1),
                first_seen=item.get("first_seen", 0.0),
            )
            registry._index[pattern.key] = len(registry._patterns)
            registry._patterns.append(pattern)
        return registry


@dataclass
class EmergentBehavior:
    """An action synthesized by the engine, handed to dialogue/animation."""

    id: str
    action: str
    strength: float
    type: str = "emergent"
    pattern: str | None = None
    rule_ids: tuple[str, ...] = ()
    parameters: dict[str, Any] = field(default_factory=dict)
    creative: bool = False
    novelty: float | None = None
    predicted_consequences: tuple[str, ...] = ()
    source_behaviors: tuple[str, ...] = ()
    steps: tuple[str, ...] = ()
    description: str | None = None
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("rule_ids", "predicted_consequences", "source_behaviors", "steps"):
            data[key] = list(data[key])
        return data


@dataclass
class EmergencePass:
    """One evaluated, not yet recorded, emergence pass."""

    fired: frozenset[str]
    patterns: list[EmergentPattern]
    behaviors: list[EmergentBehavior]
    timestamp: float


class EmergenceEngine:
    """
    Per-agent emergence engine over the shared, read-only rule library.

    The engine owns its pattern registry, behavior history and active set;
    only the rule and interaction tables are shared between agents.
    """

    def __init__(
        self,
        config: EmergenceConfig | None = None,
        rules: Sequence[BehaviorRule] = BEHAVIOR_RULES,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Emergence tunables; defaults to the global settings.
            rules: Rule table to evaluate.
            rng: Source of variety for outcome choice and behavior parameters.
            clock: Returns the current time in epoch milliseconds.
        """
        self.config = config or get_settings().emergence
        self.rules = tuple(rules)
        self.rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock or now_ms

        self.registry = PatternRegistry(
            habit_interval=self.config.habit_interval,
            creativity=self.config.creativity_factor,
        )

        self.history: deque[EmergentBehavior] = deque(maxlen=self.config.history_size)
        self.active: dict[str, EmergentBehavior] = {}
        self.pattern_buffer: deque[frozenset[str]] = deque(maxlen=self.config.pattern_buffer_size)

    def check_emergence(
        self,
        state: Mapping[str, Any] | None,
        memory: MemoryStore | None,
        personality: Mapping[str, float] | None,
        now: float | None = None,
    ) -> list[EmergentBehavior]:
        """
        Run one emergence pass.

        Args:
            state: Agent state (threat, energy, emotional_context, goals,
                nearby_entities, situation, ...). Missing fields default.
            memory: The agent's memory store, read without side effects.
            personality: Trait name to value in [0, 1].
            now: Current time in epoch milliseconds.

        Returns:
            Emitted behaviors, including meta-emergent ones. May be empty.
        """
        emergence_pass = self.evaluate(state, memory, personality, now=now)
        self.commit(emergence_pass)
        return emergence_pass.behaviors

    def evaluate(
        self,
        state: Mapping[str, Any] | None,
        memory: MemoryStore | None,
        personality: Mapping[str, float] | None,
        now: float | None = None,
    ) -> EmergencePass:
        """
        Compute an emergence pass without recording it.

        The registry, history, active set and pattern buffer are left alone
        until the pass is handed to ``commit``. Only the random generator
        advances.
        """
        now = self._clock() if now is None else now
        context = self.build_context(state, memory, personality, now=now)

        activations = self.evaluate_rules(context)
        patterns = self._find_patterns(activations)
        variants = [v for p in patterns if (v := self.registry.variant(p, now)) is not None]

        behaviors: list[EmergentBehavior] = []
        for pattern in patterns + variants:
            if pattern.strength > self.config.emergence_threshold:
                behavior = self.generate_behavior(pattern, context, now=now)
                if behavior is not None:
                    behaviors.append(behavior)

        behaviors.extend(self.check_meta_emergence(behaviors, now=now))

        if behaviors:
            logger.debug(f"Emerged {[b.action for b in behaviors]} from {len(activations)} rules")
        return EmergencePass(
            fired=frozenset(a.rule.id for a in activations),
            patterns=patterns,
            behaviors=behaviors,
            timestamp=now,
        )

    def commit(self, emergence_pass: EmergencePass) -> None:
        """Record a pass: pattern buffer, registry counts, history and active set."""
        self.pattern_buffer.append(emergence_pass.fired)
        for pattern in emergence_pass.patterns:
            self.registry.record(pattern, emergence_pass.timestamp)
        self._update_history(emergence_pass.behaviors, emergence_pass.timestamp)

    # Context

    def build_context(
        self,
        state: Mapping[str, Any] | None,
        memory: MemoryStore | None,
        personality: Mapping[str, float] | None,
        now: float | None = None,
    ) -> EmergenceContext:
        """Assemble the rule context. Pure with respect to its inputs; never raises."""
        now = self._clock() if now is None else now
        state = state or {}
        personality = dict(personality or {})

        threat = _number(state.get("threat"), 0.0)
        emotional_context = state.get("emotional_context") or {}
        goals = list(state.get("goals") or [])
        active_goal = goals[0] if goals else None
        situation = state.get("situation") or {}

        kindness, helper = self._recent_kindness(state, memory, now)
        similar = self._find_similar_situation(situation, memory)

        return EmergenceContext(
            personality=personality,
            needs={
                "energy": _number(state.get("energy"), 1.0),
                "social": _number(state.get("social_need"), 0.5),
                "safety": 1.0 - threat,
                "growth": _number(state.get("growth_need"), 0.5),
            },
            awareness=_number(state.get("awareness"), 1.0),
            threat=threat,
            emotional_extreme=max((abs(v) for v in numeric_values(emotional_context)), default=0.0),
            mood=_mood(state, emotional_context),
            social_context=bool(state.get("nearby_entities")),
            recent_kindness=kindness,
            last_helper=helper,
            novelty=self._novelty(state, memory),
            active_goal=active_goal,
            goal_progress=_number(field_of(active_goal, "progress"), 0.0),
            conflicting_goals=len(goals) // 2 if len(goals) >= 2 else 0,
            similar_past_situation=similar.id if similar is not None else None,
            past_outcome=similar.context.get("outcome") if similar is not None else None,
            traumatic_memory_triggered=self._trauma_triggered(situation, memory),
            incomplete_pattern=self._incomplete_pattern(),
            emotional_energy=_number(state.get("emotional_energy"), 0.5),
            timestamp=now,
        )

    def _recent_kindness(
        self, state: Mapping[str, Any], memory: MemoryStore | None, now: float
    ) -> tuple[float, str | None]:
        if state.get("recent_kindness") is not None:
            return _number(state["recent_kindness"], 0.0), state.get("last_helper")
        if memory is None:
            return 0.0, None
        recent = [
            m for m in memory.peek(time_range=(now - DAY_MS, now))
            if m.type in KIND_MEMORY_TYPES
        ]
        if not recent:
            return 0.0, None
        helper = next((m.source for m in recent if m.source), None)
        return 0.7, helper

    def _novelty(self, state: Mapping[str, Any], memory: MemoryStore | None) -> float:
        if state.get("novelty") is not None:
            return _number(state["novelty"], 0.5)
        focus_type = state.get("focus_type")
        if memory is None or not focus_type:
            return 0.5
        return 1.0 / (1 + len(memory.peek(type=focus_type)))

    def _find_similar_situation(self, situation: Mapping[str, Any], memory: MemoryStore | None):
        if memory is None or not situation:
            return None
        for candidate in memory.peek(context=dict(situation)):
            if candidate.context.get("outcome"):
                return candidate
        return None

    def _trauma_triggered(self, situation: Mapping[str, Any], memory: MemoryStore | None) -> bool:
        if memory is None or not situation:
            return False
        for candidate in memory.peek(context=dict(situation), category=MemoryCategory.EMOTIONAL):
            if (candidate.emotional_impact or 0.0) <= -0.7 and candidate.importance >= 0.7:
                return True
        return False

    def _incomplete_pattern(self) -> bool:
        """A known synergy whose partner rule was missing from the last firing."""
        if not self.pattern_buffer:
            return False
        last = self.pattern_buffer[-1]
        for pair in RULE_SYNERGIES:
            present = pair & last
            if len(present) == 1 and pattern_key(PatternKind.INTERACTION, tuple(pair)) in self.registry:
                return True
        return False

    # Rules and patterns

    def evaluate_rules(self, context: EmergenceContext) -> list[RuleActivation]:
        """Fire every rule whose condition holds. A failing rule is skipped."""
        activations = []
        for rule in self.rules:
            try:
                fired = rule.matches(context)
            except RuleEvaluationError as e:
                logger.warning(f"{e}; treating as not fired")
                continue
            if fired:
                activations.append(RuleActivation(rule=rule, strength=rule.weight))
        return activations

    def detect_patterns(
        self, activations: Sequence[RuleActivation], now: float | None = None
    ) -> list[EmergentPattern]:
        """
        Find single, interaction and complex patterns, plus novel/habit variants.

        Every base pattern is recorded in the registry; the variants it
        yields are appended after the base patterns.
        """
        now = self._clock() if now is None else now
        patterns = self._find_patterns(activations)
        variants = [v for p in patterns if (v := self.registry.observe(p, now)) is not None]
        return patterns + variants

    def _find_patterns(self, activations: Sequence[RuleActivation]) -> list[EmergentPattern]:
        patterns = [
            EmergentPattern(
                kind=PatternKind.SINGLE,
                rule_ids=(a.rule.id,),
                strength=a.strength,
                outcomes=a.rule.outcomes,
            )
            for a in activations
        ]

        for i, first in enumerate(activations):
            for second in activations[i + 1:]:
                synergy = RULE_SYNERGIES.get(frozenset({first.rule.id, second.rule.id}))
                if synergy is not None:
                    patterns.append(
                        EmergentPattern(
                            kind=PatternKind.INTERACTION,
                            rule_ids=(first.rule.id, second.rule.id),
                            strength=synergy.strength,
                            outcomes=synergy.outcomes,
                        )
                    )

        if self.config.rule_interaction_depth >= 3:
            patterns.extend(self._detect_complex_patterns(activations))
        return patterns

    def _detect_complex_patterns(self, activations: Sequence[RuleActivation]) -> list[EmergentPattern]:
        patterns = []
        for chain in self._find_rule_chains(activations):
            if len(chain) >= 3:
                patterns.append(
                    EmergentPattern(
                        kind=PatternKind.COMPLEX,
                        rule_ids=tuple(a.rule.id for a in chain),
                        strength=_geometric_mean([a.strength for a in chain]),
                        outcomes=_chain_outcomes(chain),
                    )
                )
        return patterns

    def _find_rule_chains(self, activations: Sequence[RuleActivation]) -> list[list[RuleActivation]]:
        chains = []
        used: set[str] = set()
        for start in activations:
            if start.rule.id in used:
                continue
            chain = [start]
            used.add(start.rule.id)
            current = start
            while True:
                following = next(
                    (
                        a for a in activations
                        if a.rule.id not in used and rules_connected(current.rule, a.rule)
                    ),
                    None,
                )
                if following is None:
                    break
                chain.append(following)
                used.add(following.rule.id)
                current = following
            if len(chain) > 1:
                chains.append(chain)
        return chains

    # Behaviors

    def generate_behavior(
        self, pattern: EmergentPattern, context: EmergenceContext, now: float | None = None
    ) -> EmergentBehavior | None:
        """Turn a pattern into a behavior, or None if the outcome is vetoed."""
        now = self._clock() if now is None else now
        action = self.select_outcome(pattern.outcomes, context)

        behavior = EmergentBehavior(
            id=f"emergence_{int(now)}_{uuid4().hex[:9]}",
            action=action,
            strength=pattern.strength,
            pattern=pattern.kind.value,
            rule_ids=pattern.rule_ids,
            timestamp=now,
        )
        if pattern.kind == PatternKind.NOVEL:
            behavior.creative = True
            behavior.novelty = float(self.rng.random() * self.config.creativity_factor)

        behavior.parameters = self._behavior_parameters(action, context)
        behavior.predicted_consequences = ("state_change", "memory_formation")

        if self._should_suppress(behavior, context):
            logger.debug(f"Suppressed {behavior.action} (threat={context.threat})")
            return None
        return behavior

    def outcome_weight(self, outcome: str, context: EmergenceContext) -> float:
        """Contextual preference for an outcome (0.5 for unlisted outcomes)."""
        social = 1.0 if context.social_context else 0.0
        weights: dict[str, Callable[[], float]] = {
            "flee": lambda: context.threat * 2,
            "hide": lambda: context.threat * 1.5,
            "defend": lambda: context.threat * context.trait("courage"),
            "return_favor": lambda: context.recent_kindness * context.trait("agreeableness"),
            "express_gratitude": lambda: context.recent_kindness * 1.2,
            "strengthen_bond": lambda: social * 1.1,
            "create_something": lambda: context.trait("creativity") * context.emotional_energy,
            "innovate": lambda: context.trait("creativity") * context.novelty,
            "surprising_behavior": lambda: context.trait("openness") * self.config.creativity_factor,
        }
        weight = weights.get(outcome)
        return weight() if weight is not None else 0.5

    def select_outcome(self, outcomes: Sequence[str], context: EmergenceContext) -> str:
        """
        Pick the best-weighted outcome; sometimes pick among the top three instead.

        The chance of a less optimal pick is ``creativity_factor * 0.5``.
        """
        ranked = sorted(outcomes, key=lambda o: self.outcome_weight(o, context), reverse=True)
        if self.rng.random() < self.config.creativity_factor * 0.5:
            return ranked[int(self.rng.integers(0, min(3, len(ranked))))]
        return ranked[0]

    def _behavior_parameters(self, action: str, context: EmergenceContext) -> dict[str, Any]:
        params: dict[str, Any] = {
            "intensity": float(self.rng.uniform(0.5, 1.0)),
            "duration": float(self.rng.uniform(1000, 6000)),
            "target": None,
        }
        if action == "flee":
            params["direction"] = float(self.rng.uniform(0, 2 * math.pi))
            params["speed"] = 0.8 + context.threat * 0.2
        elif action == "create_something":
            params["creation_type"] = str(self.rng.choice(CREATION_TYPES))
            params["inspiration"] = context.mood
        elif action == "return_favor":
            params["target"] = context.last_helper
            params["favor_type"] = str(self.rng.choice(FAVOR_TYPES))
        elif action == "surprising_behavior":
            params["surprise_type"] = str(self.rng.choice(SURPRISE_TYPES))
        return params

    def _should_suppress(self, behavior: EmergentBehavior, context: EmergenceContext) -> bool:
        return behavior.action == "flee" and not context.threat

    def check_meta_emergence(
        self, behaviors: Sequence[EmergentBehavior], now: float | None = None
    ) -> list[EmergentBehavior]:
        """Combine behaviors into meta-emergent behaviors and behavioral sequences."""
        now = self._clock() if now is None else now
        meta: list[EmergentBehavior] = []
        if len(behaviors) < 2:
            return meta

        for i, first in enumerate(behaviors):
            for second in behaviors[i + 1:]:
                combo = BEHAVIOR_COMBINATIONS.get(frozenset({first.action, second.action}))
                if combo is not None:
                    meta.append(
                        EmergentBehavior(
                            id=f"meta_{int(now)}_{uuid4().hex[:9]}",
                            action=combo.action,
                            strength=(first.strength + second.strength) / 2,
                            type="meta_emergent",
                            description=combo.description,
                            source_behaviors=(first.id, second.id),
                            timestamp=now,
                        )
                    )

        if len(behaviors) >= 3 and all(b.strength > 0.6 for b in behaviors):
            meta.append(
                EmergentBehavior(
                    id=f"sequence_{int(now)}_{uuid4().hex[:9]}",
                    action="complex_plan",
                    strength=sum(b.strength for b in behaviors) / len(behaviors),
                    type="behavioral_sequence",
                    steps=tuple(b.action for b in behaviors),
                    source_behaviors=tuple(b.id for b in behaviors),
                    timestamp=now,
                )
            )
        return meta

    # Bookkeeping

    def _update_history(self, behaviors: Sequence[EmergentBehavior], now: float) -> None:
        for behavior in behaviors:
            self.history.append(behavior)
            self.active[behavior.id] = behavior

        expired = [
            behavior_id for behavior_id, behavior in self.active.items()
            if now - behavior.timestamp > self.config.active_ttl_ms
        ]
        for behavior_id in expired:
            del self.active[behavior_id]

    def get_stats(self) -> dict[str, Any]:
        """Emergence statistics."""
        return {
            "total_emergences": len(self.history),
            "active_emergences": len(self.active),
            "unique_patterns": len(self.registry),
            "pattern_counts": self.registry.counts_by_kind(),
            "recent_emergences": [b.action for b in list(self.history)[-10:]],
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize the per-agent pattern registry and recent history."""
        return {
            "registry": self.registry.to_dict(),
            "history": [b.to_dict() for b in list(self.history)[-10:]],
        }

    def load_state(self, data: Mapping[str, Any]) -> None:
        """Restore the pattern registry saved by ``to_dict``."""
        if "registry" in data:
            self.registry = PatternRegistry.from_dict(
                data["registry"], creativity=self.config.creativity_factor
            )


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _mood(state: Mapping[str, Any], emotional_context: Mapping[str, Any]) -> str:
    mood = emotional_context.get("current_mood") or state.get("mood")
    return mood if isinstance(mood, str) and mood else "neutral"


def _geometric_mean(values: Sequence[float]) -> float:
    return float(np.prod(values) ** (1 / len(values)))


def _chain_outcomes(chain: Sequence[RuleActivation]) -> tuple[str, ...]:
    outcomes: dict[str, None] = {}
    for activation in chain:
        outcomes.update(dict.fromkeys(activation.rule.outcomes))
    if len(chain) >= 3:
        outcomes["complex_behavior"] = None
        if any("creative" in a.rule.id for a in chain):
            outcomes["novel_solution"] = None
        if any("social" in a.rule.id for a in chain):
            outcomes["social_innovation"] = None
    return tuple(outcomes)
