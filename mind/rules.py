"""
Behavior rule library.

Rule conditions are plain data: small predicate trees over named context
fields, interpreted by ``evaluate_condition``. The rule table and the
interaction tables below are immutable and shared by every agent.
"""

import operator
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from mind.errors import RuleEvaluationError
from mind.utils import field_of


class Op(str, Enum):
    """Comparison applied by a predicate."""

    LT = "lt"
    GT = "gt"
    EQ = "eq"
    NE = "ne"
    TRUTHY = "truthy"
    ABS_GT = "abs_gt"


_COMPARATORS: dict[Op, Callable[[Any, Any], bool]] = {
    Op.LT: operator.lt,
    Op.GT: operator.gt,
    Op.EQ: operator.eq,
    Op.NE: operator.ne,
    Op.ABS_GT: lambda left, right: abs(left) > right,
}


@dataclass(frozen=True)
class Predicate:
    """Compare the context value at a dotted ``path`` with ``value``."""

    path: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    conditions: tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: tuple["Condition", ...]


Condition = Union[Predicate, AllOf, AnyOf]


def resolve_path(context: Any, path: str) -> Any:
    """Follow a dotted path through mappings and attributes; None if absent."""
    value = context
    for part in path.split("."):
        value = field_of(value, part)
        if value is None:
            return None
    return value


def evaluate_condition(condition: Condition, context: Any) -> bool:
    """
    Interpret a condition against a context.

    A missing value makes a comparison false (but satisfies ``NE``). Type
    mismatches, e.g. ordering a string against a number, raise.
    """
    if isinstance(condition, AllOf):
        return all(evaluate_condition(c, context) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate_condition(c, context) for c in condition.conditions)
    if not isinstance(condition, Predicate):
        raise TypeError(f"Unknown condition type: {type(condition).__name__}")

    value = resolve_path(context, condition.path)
    if condition.op == Op.TRUTHY:
        return bool(value)
    if value is None:
        return condition.op == Op.NE and condition.value is not None
    return bool(_COMPARATORS[condition.op](value, condition.value))


@dataclass(frozen=True)
class BehaviorRule:
    """An immutable rule: when ``condition`` holds, ``outcomes`` become candidates."""

    id: str
    category: str
    condition: Condition
    weight: float
    outcomes: tuple[str, ...]

    def matches(self, context: Any) -> bool:
        """
        Whether the rule fires for ``context``.

        Raises:
            RuleEvaluationError: If the condition cannot be evaluated.
        """
        try:
            return evaluate_condition(self.condition, context)
        except Exception as e:
            raise RuleEvaluationError(self.id, e) from e


def _p(path: str, op: Op, value: Any = None) -> Predicate:
    return Predicate(path, op, value)


BEHAVIOR_RULES: tuple[BehaviorRule, ...] = (
    # Survival
    BehaviorRule(
        id="self_preservation",
        category="survival",
        condition=AnyOf((_p("awareness", Op.LT, 0.3), _p("threat", Op.GT, 0.5))),
        weight=0.9,
        outcomes=("flee", "hide", "defend"),
    ),
    BehaviorRule(
        id="resource_seeking",
        category="survival",
        condition=AnyOf((_p("needs.energy", Op.LT, 0.3), _p("needs.social", Op.LT, 0.3))),
        weight=0.7,
        outcomes=("search", "ask_for_help", "trade"),
    ),
    # Social
    BehaviorRule(
        id="reciprocity",
        category="social",
        condition=_p("recent_kindness", Op.GT, 0.5),
        weight=0.8,
        outcomes=("return_favor", "express_gratitude", "strengthen_bond"),
    ),
    BehaviorRule(
        id="social_mirroring",
        category="social",
        condition=AllOf((
            _p("social_context", Op.TRUTHY),
            _p("personality.agreeableness", Op.GT, 0.6),
        )),
        weight=0.6,
        outcomes=("mirror_emotion", "align_behavior", "show_empathy"),
    ),
    # Emotional
    BehaviorRule(
        id="emotional_regulation",
        category="emotional",
        condition=_p("emotional_extreme", Op.ABS_GT, 0.8),
        weight=0.7,
        outcomes=("seek_comfort", "isolate", "express_emotion"),
    ),
    BehaviorRule(
        id="mood_congruent_behavior",
        category="emotional",
        condition=_p("mood", Op.NE, "neutral"),
        weight=0.5,
        outcomes=("act_on_mood", "seek_mood_change", "spread_mood"),
    ),
    # Cognitive
    BehaviorRule(
        id="curiosity_driven",
        category="cognitive",
        condition=AllOf((_p("personality.curiosity", Op.GT, 0.7), _p("novelty", Op.GT, 0.5))),
        weight=0.6,
        outcomes=("investigate", "ask_questions", "experiment"),
    ),
    BehaviorRule(
        id="pattern_completion",
        category="cognitive",
        condition=_p("incomplete_pattern", Op.TRUTHY),
        weight=0.7,
        outcomes=("complete_pattern", "break_pattern", "create_variation"),
    ),
    # Goals
    BehaviorRule(
        id="goal_pursuit",
        category="goal",
        condition=AllOf((_p("active_goal", Op.TRUTHY), _p("goal_progress", Op.LT, 0.8))),
        weight=0.8,
        outcomes=("take_action", "plan_steps", "seek_resources"),
    ),
    BehaviorRule(
        id="goal_conflict_resolution",
        category="goal",
        condition=_p("conflicting_goals", Op.GT, 1),
        weight=0.6,
        outcomes=("prioritize", "compromise", "abandon_goal"),
    ),
    # Memory
    BehaviorRule(
        id="learned_behavior",
        category="memory",
        condition=AllOf((
            _p("similar_past_situation", Op.TRUTHY),
            _p("past_outcome", Op.EQ, "positive"),
        )),
        weight=0.7,
        outcomes=("repeat_success", "adapt_strategy", "teach_others"),
    ),
    BehaviorRule(
        id="trauma_avoidance",
        category="memory",
        condition=_p("traumatic_memory_triggered", Op.TRUTHY),
        weight=0.9,
        outcomes=("avoid", "freeze", "seek_safety"),
    ),
    # Creative
    BehaviorRule(
        id="creative_expression",
        category="creative",
        condition=AllOf((
            _p("personality.creativity", Op.GT, 0.7),
            _p("emotional_energy", Op.GT, 0.5),
        )),
        weight=0.5,
        outcomes=("create_something", "innovate", "combine_ideas"),
    ),
    BehaviorRule(
        id="playful_behavior",
        category="creative",
        condition=AllOf((_p("mood", Op.EQ, "joyful"), _p("social_context", Op.TRUTHY))),
        weight=0.4,
        outcomes=("play", "joke", "surprise_others"),
    ),
)


@dataclass(frozen=True)
class Synergy:
    strength: float
    outcomes: tuple[str, ...]


# Pairwise rule interactions, keyed by unordered rule-id pair
RULE_SYNERGIES: dict[frozenset[str], Synergy] = {
    frozenset({"curiosity_driven", "creative_expression"}): Synergy(
        0.9, ("innovative_exploration", "creative_discovery")
    ),
    frozenset({"emotional_regulation", "social_mirroring"}): Synergy(
        0.8, ("empathetic_support", "emotional_contagion")
    ),
    frozenset({"goal_pursuit", "resource_seeking"}): Synergy(
        0.85, ("strategic_acquisition", "collaborative_achievement")
    ),
    frozenset({"learned_behavior", "pattern_completion"}): Synergy(
        0.75, ("optimized_behavior", "habit_formation")
    ),
}

# Outcome of one rule -> rules that outcome can set off
OUTCOME_TRIGGERS: dict[str, tuple[str, ...]] = {
    "search": ("resource_seeking", "curiosity_driven"),
    "express_emotion": ("emotional_regulation", "social_mirroring"),
    "take_action": ("goal_pursuit", "learned_behavior"),
}


@dataclass(frozen=True)
class BehaviorCombination:
    action: str
    description: str


# Behavior pairs that combine into a meta-emergent behavior, keyed by unordered action pair
BEHAVIOR_COMBINATIONS: dict[frozenset[str], BehaviorCombination] = {
    frozenset({"create_something", "express_emotion"}): BehaviorCombination(
        "artistic_expression", "Express emotions through creation"
    ),
    frozenset({"play", "surprising_behavior"}): BehaviorCombination(
        "playful_prank", "Surprise others playfully"
    ),
    frozenset({"investigate", "ask_questions"}): BehaviorCombination(
        "deep_inquiry", "Pursue understanding deeply"
    ),
}


def rules_connected(first: BehaviorRule, second: BehaviorRule) -> bool:
    """Whether an outcome of ``first`` can set off ``second``."""
    return any(second.id in OUTCOME_TRIGGERS.get(outcome, ()) for outcome in first.outcomes)


def get_rule(rule_id: str, rules: tuple[BehaviorRule, ...] = BEHAVIOR_RULES) -> BehaviorRule | None:
    for rule in rules:
        if rule.id == rule_id:
            return rule
    return None
