"""Cognition core for adaptive NPCs."""

from mind.agent import Agent
from mind.attention import AttentionSelector
from mind.consciousness import ConsciousnessController, Goal, TickResult
from mind.emergence import EmergenceEngine, EmergentBehavior
from mind.memory import MemoryCategory, MemoryRecord, MemoryStore
from mind.personality import EmotionState, Personality, Relationship
from mind.simulation import SimulationManager, SimulationState
from mind.stimuli import Stimulus

__all__ = [
    "Agent",
    "AttentionSelector",
    "ConsciousnessController",
    "EmergenceEngine",
    "EmergentBehavior",
    "EmotionState",
    "Goal",
    "MemoryCategory",
    "MemoryRecord",
    "MemoryStore",
    "Personality",
    "Relationship",
    "SimulationManager",
    "SimulationState",
    "Stimulus",
    "TickResult",
]
