"""Stimuli delivered to an agent by the game world."""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class Stimulus:
    """
    Something an agent can notice.

    Attributes:
        type: Kind of stimulus ("sound", "greeting", "attack", ...).
        source: Entity that produced the stimulus.
        target: Entity or object the stimulus concerns.
        category: Broad grouping used to match goals ("social", "survival", ...).
        urgency: Urgency marker ("threat", "danger", "warning", "opportunity",
            "request", "information").
        emotional: Emotion name to signed intensity carried by the stimulus.
        content: Free-form payload.
        timestamp: When the stimulus happened, in epoch milliseconds.
        data: Extra fields for collaborators.
    """

    type: str
    source: str | None = None
    target: str | None = None
    category: str | None = None
    urgency: str | None = None
    emotional: dict[str, float] = field(default_factory=dict)
    content: Any = None
    timestamp: float | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Stimulus":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
