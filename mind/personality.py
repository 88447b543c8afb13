"""
Personality, emotion and relationship inputs for an agent.

These are produced by collaborators outside the cognition core (trait
generation, emotion decay, the social graph). The core only reads them.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from mind.utils import clamp01


@dataclass
class Personality:
    """
    Core personality of an agent.

    Attributes:
        name: Display name of the agent (unique within a simulation).
        traits: Trait name to value in [0, 1]. Commonly used traits are
            curiosity, creativity, openness, agreeableness, extraversion,
            conscientiousness, neuroticism and courage.
        description: Free-form description for dialogue collaborators.
    """

    name: str
    traits: dict[str, float] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        self.traits = {key: clamp01(value) for key, value in self.traits.items()}

    def trait(self, name: str, default: float = 0.5) -> float:
        """Value of a trait, or ``default`` when the trait is unknown."""
        return self.traits.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Personality":
        return cls(
            name=data["name"],
            traits=dict(data.get("traits") or {}),
            description=data.get("description", ""),
        )


@dataclass
class EmotionState:
    """
    Current emotions of an agent.

    ``values`` maps emotion names to signed intensities in [-1, 1]; ``mood``
    is the label the emotion system derived from them.
    """

    values: dict[str, float] = field(default_factory=dict)
    mood: str = "neutral"
    energy: float = 0.5

    def as_context(self) -> dict[str, Any]:
        """Flat mapping used as the emotional context of memories and rules."""
        return {**self.values, "current_mood": self.mood}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmotionState":
        return cls(
            values=dict(data.get("values") or {}),
            mood=data.get("mood", "neutral"),
            energy=data.get("energy", 0.5),
        )


@dataclass
class Relationship:
    """How an agent feels about another entity; every field in [-1, 1]."""

    trust: float = 0.0
    affection: float = 0.0
    respect: float = 0.0

    def __post_init__(self) -> None:
        self.trust = max(-1.0, min(1.0, self.trust))
        self.affection = max(-1.0, min(1.0, self.affection))
        self.respect = max(-1.0, min(1.0, self.respect))


class RelationshipLookup(Protocol):
    """Anything that answers "how do I feel about this entity?"."""

    def __call__(self, entity_id: str) -> Relationship | None: ...
