"""Small numeric helpers shared by the cognition modules."""

import time
from collections.abc import Mapping
from typing import Any

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
WEEK_MS = 7 * DAY_MS


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def numeric_values(data: Mapping[str, Any] | None) -> list[float]:
    """Numeric (non-bool) values of a mapping."""
    if not data:
        return []
    return [
        float(v) for v in data.values()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]


def mean_abs(data: Mapping[str, Any] | None) -> float:
    """Mean absolute value over the numeric fields of a mapping (0 when none)."""
    values = numeric_values(data)
    if not values:
        return 0.0
    return sum(abs(v) for v in values) / len(values)


def field_of(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an attribute-bearing object."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)
