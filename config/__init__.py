"""Configuration for the NPC cognition core."""

from config.settings import (
    AttentionConfig,
    ConsciousnessConfig,
    EmergenceConfig,
    MemoryConfig,
    Settings,
    SimulationConfig,
    configure_logging,
    get_settings,
)

__all__ = [
    "AttentionConfig",
    "ConsciousnessConfig",
    "EmergenceConfig",
    "MemoryConfig",
    "Settings",
    "SimulationConfig",
    "configure_logging",
    "get_settings",
]
