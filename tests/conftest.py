"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import (  # noqa: E402
    AttentionConfig,
    ConsciousnessConfig,
    EmergenceConfig,
    MemoryConfig,
)
from mind.attention import AttentionSelector  # noqa: E402
from mind.emergence import EmergenceEngine  # noqa: E402
from mind.memory import MemoryStore  # noqa: E402

START_MS = 1_700_000_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start: float = START_MS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    """A fixed clock that only moves when advanced."""
    return FakeClock()


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def memory_store(clock):
    """An empty memory store with default tunables."""
    return MemoryStore("tester", config=MemoryConfig(), clock=clock)


@pytest.fixture
def selector(clock):
    """An attention selector with default tunables."""
    return AttentionSelector(config=AttentionConfig(), clock=clock)


@pytest.fixture
def engine(rng, clock):
    """An emergence engine with a seeded random generator."""
    return EmergenceEngine(config=EmergenceConfig(), rng=rng, clock=clock)


@pytest.fixture
def consciousness_config():
    return ConsciousnessConfig()
