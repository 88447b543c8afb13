"""Tests for rules and the emergence engine."""

import logging

import numpy as np
import pytest

from config.settings import EmergenceConfig
from mind.emergence import (
    EmergenceContext,
    EmergenceEngine,
    EmergentBehavior,
    EmergentPattern,
    PatternKind,
    PatternRegistry,
    RuleActivation,
)
from mind.errors import RuleEvaluationError
from mind.memory import MemoryRecord
from mind.rules import (
    BEHAVIOR_RULES,
    AllOf,
    AnyOf,
    BehaviorRule,
    Op,
    Predicate,
    evaluate_condition,
    get_rule,
    rules_connected,
)
from mind.utils import DAY_MS

CURIOSITY_OUTCOMES = {"investigate", "ask_questions", "experiment"}


def activation(rule_id):
    rule = get_rule(rule_id)
    return RuleActivation(rule=rule, strength=rule.weight)


class TestRules:
    """Tests for the rule library and the condition interpreter."""

    def test_rule_table(self):
        """Test that the library has fourteen rules over seven categories."""
        assert len(BEHAVIOR_RULES) == 14
        assert len({rule.category for rule in BEHAVIOR_RULES}) == 7
        assert len({rule.id for rule in BEHAVIOR_RULES}) == 14

    def test_predicates(self):
        """Test the comparison operators and dotted paths."""
        context = {"a": {"b": 0.7}, "mood": "joyful", "flag": True, "extreme": -0.9}

        assert evaluate_condition(Predicate("a.b", Op.GT, 0.5), context)
        assert not evaluate_condition(Predicate("a.b", Op.LT, 0.5), context)
        assert evaluate_condition(Predicate("mood", Op.EQ, "joyful"), context)
        assert evaluate_condition(Predicate("extreme", Op.ABS_GT, 0.8), context)
        assert evaluate_condition(
            AllOf((Predicate("flag", Op.TRUTHY), AnyOf((Predicate("a.b", Op.LT, 0), Predicate("mood", Op.NE, "sad"))))),
            context,
        )

    def test_missing_values(self):
        """Test that a missing value fails a comparison but satisfies NE."""
        assert not evaluate_condition(Predicate("missing", Op.GT, 0.5), {})
        assert not evaluate_condition(Predicate("missing", Op.TRUTHY), {})
        assert evaluate_condition(Predicate("missing", Op.NE, "neutral"), {})

    def test_type_mismatch_raises(self):
        """Test that a rule whose condition cannot be evaluated raises."""
        rule = BehaviorRule("broken", "test", Predicate("mood", Op.GT, 0.5), 0.5, ("x",))

        with pytest.raises(RuleEvaluationError) as exc_info:
            rule.matches({"mood": "joyful"})
        assert exc_info.value.rule_id == "broken"


class TestContext:
    """Tests for context assembly."""

    def test_defaults_without_inputs(self, engine):
        """Test that a context is built from nothing."""
        context = engine.build_context(None, None, None)

        assert context.threat == 0.0
        assert context.needs["energy"] == 1.0
        assert context.needs["safety"] == 1.0
        assert context.mood == "neutral"
        assert context.novelty == 0.5
        assert context.active_goal is None
        assert not context.social_context

    def test_malformed_state_defaults(self, engine):
        """Test that wrongly typed fields fall back to defaults."""
        context = engine.build_context({"threat": "high", "energy": None, "goals": None}, None, {})

        assert context.threat == 0.0
        assert context.needs["energy"] == 1.0

    def test_state_fields(self, engine):
        """Test fields taken from the state."""
        context = engine.build_context(
            {
                "threat": 0.6,
                "emotional_context": {"anger": -0.9, "current_mood": "angry"},
                "nearby_entities": ["ann"],
                "goals": [{"type": "trade", "progress": 0.4}, {"type": "rest"}],
            },
            None,
            {"curiosity": 0.8},
        )

        assert context.needs["safety"] == pytest.approx(0.4)
        assert context.emotional_extreme == pytest.approx(0.9)
        assert context.mood == "angry"
        assert context.social_context
        assert context.goal_progress == pytest.approx(0.4)
        assert context.conflicting_goals == 1
        assert context.trait("curiosity") == 0.8

    def test_recent_kindness_from_memory(self, engine, memory_store, clock):
        """Test that a recent help memory raises kindness and names the helper."""
        memory_store.store(MemoryRecord(content="Ann helped me", type="help", source="ann"))

        context = engine.build_context({}, memory_store, {}, now=clock.now)

        assert context.recent_kindness == 0.7
        assert context.last_helper == "ann"

    def test_old_kindness_is_ignored(self, engine, memory_store, clock):
        """Test that kindness older than a day does not count."""
        memory_store.store(MemoryRecord(content="Ann helped me", type="help", source="ann"))

        context = engine.build_context({}, memory_store, {}, now=clock.now + 2 * DAY_MS)

        assert context.recent_kindness == 0.0

    def test_similar_situation_and_trauma(self, engine, memory_store, clock):
        """Test memory-derived situation fields."""
        memory_store.store(MemoryRecord(content="Good deal", context={"place": "market", "outcome": "positive"}))
        memory_store.store(
            MemoryRecord(
                content="Ambushed",
                type="attack",
                category="emotional",
                context={"place": "forest"},
                emotional_impact=-0.9,
                importance=0.9,
            )
        )

        market = engine.build_context({"situation": {"place": "market"}}, memory_store, {}, now=clock.now)
        forest = engine.build_context({"situation": {"place": "forest"}}, memory_store, {}, now=clock.now)

        assert market.past_outcome == "positive"
        assert market.similar_past_situation is not None
        assert not market.traumatic_memory_triggered
        assert forest.traumatic_memory_triggered

    def test_context_building_does_not_touch_memories(self, engine, memory_store, clock):
        """Test that reading memories for the context leaves access counts alone."""
        memory_id = memory_store.store(MemoryRecord(content="Ann helped me", type="help", source="ann"))

        engine.build_context({"focus_type": "help"}, memory_store, {}, now=clock.now)

        assert memory_store.get(memory_id).access_count == 0

    def test_novelty_from_focus_type(self, engine, memory_store, clock):
        """Test that a familiar kind of focus is less novel."""
        memory_store.store(MemoryRecord(content="a", type="song"))
        memory_store.store(MemoryRecord(content="b", type="song"))

        context = engine.build_context({"focus_type": "song"}, memory_store, {}, now=clock.now)

        assert context.novelty == pytest.approx(1 / 3)


class TestEvaluation:
    """Tests for rule evaluation."""

    def test_evaluation_is_deterministic(self, engine):
        """Test that a fixed context always fires the same rules."""
        context = engine.build_context({"threat": 0.7, "nearby_entities": ["ann"]}, None, {"agreeableness": 0.9})

        first = [a.rule.id for a in engine.evaluate_rules(context)]
        second = [a.rule.id for a in engine.evaluate_rules(context)]

        assert first == second
        assert first == ["self_preservation", "social_mirroring"]

    def test_failing_rule_is_skipped(self, rng, clock, caplog):
        """Test that a raising condition is logged and treated as not fired."""
        broken = BehaviorRule("broken", "test", Predicate("mood", Op.GT, 0.5), 0.9, ("x",))
        engine = EmergenceEngine(
            config=EmergenceConfig(),
            rules=(broken, get_rule("curiosity_driven")),
            rng=rng,
            clock=clock,
        )
        context = engine.build_context({"novelty": 0.9}, None, {"curiosity": 0.9})

        with caplog.at_level(logging.WARNING, logger="mind.emergence"):
            fired = engine.evaluate_rules(context)

        assert [a.rule.id for a in fired] == ["curiosity_driven"]
        assert "broken" in caplog.text


class TestPatterns:
    """Tests for pattern detection and novelty tracking."""

    def test_interaction_pattern(self, engine):
        """Test that a known synergy pair forms an interaction pattern."""
        patterns = engine.detect_patterns([activation("curiosity_driven"), activation("creative_expression")])

        interactions = [p for p in patterns if p.kind == PatternKind.INTERACTION]
        assert len(interactions) == 1
        assert interactions[0].strength == 0.9
        assert "creative_discovery" in interactions[0].outcomes

    def forage(self):
        rule = BehaviorRule("forage", "survival", Predicate("needs.energy", Op.LT, 0.3), 0.8, ("search", "rest"))
        return RuleActivation(rule=rule, strength=rule.weight)

    def test_complex_chain(self, engine):
        """Test that rules whose outcomes trigger each other form a chain."""
        chain = [self.forage(), activation("resource_seeking"), activation("curiosity_driven")]

        patterns = engine.detect_patterns(chain)

        complex_patterns = [p for p in patterns if p.kind == PatternKind.COMPLEX]
        assert len(complex_patterns) == 1
        pattern = complex_patterns[0]
        assert pattern.rule_ids == ("forage", "resource_seeking", "curiosity_driven")
        assert pattern.strength == pytest.approx((0.8 * 0.7 * 0.6) ** (1 / 3))
        assert "complex_behavior" in pattern.outcomes
        assert "investigate" in pattern.outcomes

    def test_two_rule_links_do_not_chain(self, engine):
        """Test that a single trigger link is not a complex pattern."""
        fired = [activation("resource_seeking"), activation("curiosity_driven"), activation("pattern_completion")]

        assert not [p for p in engine.detect_patterns(fired) if p.kind == PatternKind.COMPLEX]
        assert rules_connected(get_rule("resource_seeking"), get_rule("curiosity_driven"))
        assert not rules_connected(get_rule("curiosity_driven"), get_rule("pattern_completion"))

    def test_shallow_depth_skips_chains(self, rng, clock):
        """Test that chains are only searched at interaction depth three."""
        engine = EmergenceEngine(config=EmergenceConfig(rule_interaction_depth=2), rng=rng, clock=clock)
        chain = [self.forage(), activation("resource_seeking"), activation("curiosity_driven")]

        assert not [p for p in engine.detect_patterns(chain) if p.kind == PatternKind.COMPLEX]

    def test_novel_then_habit(self, engine):
        """Test that the first occurrence is novel and the tenth forms a habit."""
        fired = [activation("curiosity_driven")]

        kinds = [{p.kind for p in engine.detect_patterns(fired)} for _ in range(10)]

        assert PatternKind.NOVEL in kinds[0]
        assert all(PatternKind.NOVEL not in k for k in kinds[1:])
        assert all(PatternKind.HABIT_FORMING not in k for k in kinds[:9])
        assert PatternKind.HABIT_FORMING in kinds[9]

    def test_registry_variants(self):
        """Test the strength and outcomes of novel and habit variants."""
        registry = PatternRegistry(habit_interval=2, creativity=0.5)
        pattern = EmergentPattern(PatternKind.SINGLE, ("reciprocity",), 0.8, ("return_favor",))

        novel = registry.observe(pattern, now=1.0)
        habit = registry.observe(pattern, now=2.0)

        assert novel.kind == PatternKind.NOVEL
        assert novel.strength == pytest.approx(0.4)
        assert novel.outcomes[-1] == "surprising_behavior"
        assert habit.kind == PatternKind.HABIT_FORMING
        assert habit.strength == pytest.approx(0.64)
        assert habit.outcomes[-1] == "habit_formation"
        assert registry.get(pattern.key).discovery_count == 2

    def test_registries_are_per_engine(self, clock):
        """Test that two agents track novelty independently."""
        first = EmergenceEngine(config=EmergenceConfig(), rng=np.random.default_rng(1), clock=clock)
        second = EmergenceEngine(config=EmergenceConfig(), rng=np.random.default_rng(2), clock=clock)

        first.detect_patterns([activation("reciprocity")])
        patterns = second.detect_patterns([activation("reciprocity")])

        assert PatternKind.NOVEL in {p.kind for p in patterns}


class TestBehaviors:
    """Tests for behavior generation."""

    def test_curiosity_scenario(self, engine, clock):
        """Test that a curious agent facing something new investigates."""
        context = engine.build_context({"novelty": 0.9, "threat": 0}, None, {"curiosity": 0.9})
        fired = [a.rule.id for a in engine.evaluate_rules(context)]

        behaviors = engine.check_emergence({"novelty": 0.9, "threat": 0}, None, {"curiosity": 0.9}, now=clock.now)

        assert "curiosity_driven" in fired
        assert "self_preservation" not in fired
        assert len(behaviors) == 1
        assert behaviors[0].action in CURIOSITY_OUTCOMES
        assert behaviors[0].pattern == "single"
        assert behaviors[0].predicted_consequences == ("state_change", "memory_formation")

    def test_single_pattern_in_scenario(self, engine):
        """Test that the scenario yields exactly one single-rule pattern."""
        context = engine.build_context({"novelty": 0.9, "threat": 0}, None, {"curiosity": 0.9})

        patterns = engine.detect_patterns(engine.evaluate_rules(context))

        assert len([p for p in patterns if p.kind == PatternKind.SINGLE]) == 1

    @pytest.mark.parametrize("seed", range(20))
    def test_never_flee_without_threat(self, seed, clock):
        """Test that flee is suppressed whenever threat is zero."""
        engine = EmergenceEngine(config=EmergenceConfig(), rng=np.random.default_rng(seed), clock=clock)

        for _ in range(3):
            behaviors = engine.check_emergence({"awareness": 0.1, "threat": 0}, None, {}, now=clock.now)
            assert "flee" not in {b.action for b in behaviors}

    def test_flee_under_threat(self, clock):
        """Test that a strong threat makes agents flee with a speed and direction."""
        fled = []
        for seed in range(20):
            engine = EmergenceEngine(config=EmergenceConfig(), rng=np.random.default_rng(seed), clock=clock)
            behaviors = engine.check_emergence({"threat": 0.9}, None, {}, now=clock.now)
            fled.extend(b for b in behaviors if b.action == "flee")

        assert fled
        assert fled[0].parameters["speed"] == pytest.approx(0.98)
        assert 0 <= fled[0].parameters["direction"] <= 2 * np.pi

    def test_outcome_weights(self, engine):
        """Test contextual outcome preferences."""
        context = EmergenceContext(
            personality={"agreeableness": 0.5, "creativity": 0.8},
            needs={},
            threat=0.5,
            recent_kindness=0.7,
            emotional_energy=0.5,
        )

        assert engine.outcome_weight("flee", context) == pytest.approx(1.0)
        assert engine.outcome_weight("defend", context) == pytest.approx(0.25)
        assert engine.outcome_weight("return_favor", context) == pytest.approx(0.35)
        assert engine.outcome_weight("create_something", context) == pytest.approx(0.4)
        assert engine.outcome_weight("wander", context) == 0.5

    def test_return_favor_targets_helper(self, engine, clock):
        """Test that returning a favor is aimed at whoever helped."""
        context = EmergenceContext(personality={}, needs={}, recent_kindness=0.7, last_helper="ann")
        pattern = EmergentPattern(PatternKind.SINGLE, ("reciprocity",), 0.8, ("return_favor",))

        behavior = engine.generate_behavior(pattern, context, now=clock.now)

        assert behavior.action == "return_favor"
        assert behavior.parameters["target"] == "ann"
        assert behavior.parameters["favor_type"] in {"gift", "help", "information", "protection"}
        assert 0.5 <= behavior.parameters["intensity"] <= 1.0
        assert 1000 <= behavior.parameters["duration"] <= 6000

    def test_reciprocity_from_memory(self, engine, memory_store, clock):
        """Test that remembered help leads to reciprocal behavior."""
        memory_store.store(MemoryRecord(content="Ann gave me bread", type="gift", source="ann"))

        behaviors = engine.check_emergence({}, memory_store, {"agreeableness": 0.9}, now=clock.now)

        actions = {b.action for b in behaviors}
        assert actions & {"return_favor", "express_gratitude", "strengthen_bond"}


class TestMetaEmergence:
    """Tests for meta-emergent behaviors."""

    def behavior(self, action, strength=0.7):
        return EmergentBehavior(id=f"b_{action}", action=action, strength=strength)

    def test_combination(self, engine):
        """Test that a known pair of actions combines, in either order."""
        meta = engine.check_meta_emergence([self.behavior("ask_questions"), self.behavior("investigate", 0.9)])

        assert [m.action for m in meta] == ["deep_inquiry"]
        assert meta[0].type == "meta_emergent"
        assert meta[0].strength == pytest.approx(0.8)

    def test_behavioral_sequence(self, engine):
        """Test that three strong behaviors form a plan."""
        meta = engine.check_meta_emergence([self.behavior("a"), self.behavior("b"), self.behavior("c")])

        assert [m.type for m in meta] == ["behavioral_sequence"]
        assert meta[0].steps == ("a", "b", "c")

    def test_no_sequence_with_weak_behavior(self, engine):
        """Test that one weak behavior prevents a plan."""
        meta = engine.check_meta_emergence([self.behavior("a"), self.behavior("b"), self.behavior("c", 0.5)])

        assert meta == []


class TestBookkeeping:
    """Tests for history and statistics."""

    def test_active_behaviors_expire(self, engine, clock):
        """Test that behaviors leave the active set after the TTL but stay in history."""
        engine.check_emergence({"novelty": 0.9}, None, {"curiosity": 0.9}, now=clock.now)
        assert len(engine.active) == 1

        engine.check_emergence({}, None, {}, now=clock.now + 61_000)

        assert engine.active == {}
        assert len(engine.history) == 1

    def test_get_stats(self, engine, clock):
        """Test emergence statistics."""
        engine.check_emergence({"novelty": 0.9}, None, {"curiosity": 0.9}, now=clock.now)

        stats = engine.get_stats()

        assert stats["total_emergences"] == 1
        assert stats["unique_patterns"] == 1
        assert stats["recent_emergences"][0] in CURIOSITY_OUTCOMES

    def test_registry_survives_serialization(self, engine, clock):
        """Test that a restored engine still knows its patterns."""
        engine.detect_patterns([activation("reciprocity")])
        restored = EmergenceEngine(config=EmergenceConfig(), rng=np.random.default_rng(0), clock=clock)

        restored.load_state(engine.to_dict())
        patterns = restored.detect_patterns([activation("reciprocity")])

        assert PatternKind.NOVEL not in {p.kind for p in patterns}

    def test_evaluate_records_nothing_until_commit(self, engine, clock):
        """Test that an evaluated pass is only recorded when committed."""
        emergence_pass = engine.evaluate({"novelty": 0.9}, None, {"curiosity": 0.9}, now=clock.now)

        assert emergence_pass.behaviors
        assert emergence_pass.fired == frozenset({"curiosity_driven"})
        assert len(engine.registry) == 0
        assert len(engine.history) == 0
        assert engine.active == {}
        assert len(engine.pattern_buffer) == 0

        engine.commit(emergence_pass)

        assert len(engine.registry) == 1
        assert list(engine.history) == emergence_pass.behaviors
        assert list(engine.pattern_buffer) == [frozenset({"curiosity_driven"})]

    def test_uncommitted_pass_stays_novel(self, engine, clock):
        """Test that discarding a pass does not use up a first occurrence."""
        engine.evaluate({"novelty": 0.9}, None, {"curiosity": 0.9}, now=clock.now)

        patterns = engine.detect_patterns([activation("curiosity_driven")], now=clock.now)

        assert PatternKind.NOVEL in {p.kind for p in patterns}
