"""
Settings for the NPC cognition core.

Tunables for the memory store, attention selector, emergence engine and
consciousness controller are loaded from environment variables (prefix
``NPC_``) or a local ``.env`` file. Nested sections use ``__`` as the
delimiter, e.g. ``NPC_MEMORY__FORGETTING_RATE=0.002``.
"""

import logging.config
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MemoryConfig(BaseModel):
    """Memory store tunables."""

    max_memories: int = 10000
    consolidation_threshold: float = 0.7  # Importance needed to queue for consolidation
    forgetting_rate: float = 0.001
    association_strength: float = 0.3  # Similarity needed to link two memories
    compression_enabled: bool = True
    compression_similarity: float = 0.8
    compression_min_group: int = 3
    emotional_boost: float = 1.5
    working_memory_size: int = 20
    grace_period_ms: float = 60_000.0
    forget_threshold: float = 0.1


class AttentionConfig(BaseModel):
    """Attention selector tunables."""

    attention_span: int = 7
    focus_decay_rate: float = 0.1
    salience_threshold: float = 0.3
    context_window: int = 20
    attention_heads: int = 4
    focus_history_size: int = 50


class EmergenceConfig(BaseModel):
    """Emergence engine tunables."""

    emergence_threshold: float = 0.5
    creativity_factor: float = 0.6
    rule_interaction_depth: int = 3
    history_size: int = 100
    active_ttl_ms: float = 60_000.0
    habit_interval: int = 10
    pattern_buffer_size: int = 50


class ConsciousnessConfig(BaseModel):
    """Per-tick controller tunables."""

    awareness_decay: float = 0.0001  # Per millisecond
    awareness_recovery: float = 0.001  # Per millisecond, only with active thoughts
    consolidation_threshold: float = 0.7
    working_memory_size: int = 128
    max_goals: int = 5
    recall_limit: int = 10
    max_thoughts: int = 100


class SimulationConfig(BaseModel):
    """World tick tunables."""

    max_workers: int = 4
    speed: float = 1.0  # Steps per second
    ms_per_step: float = 1000.0  # Game milliseconds per step
    maintenance_interval: int = 10  # Steps between forgetting/consolidation sweeps


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NPC_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    attention: AttentionConfig = Field(default_factory=AttentionConfig)
    emergence: EmergenceConfig = Field(default_factory=EmergenceConfig)
    consciousness: ConsciousnessConfig = Field(default_factory=ConsciousnessConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)


@lru_cache
def get_settings() -> Settings:
    """Get the global settings instance."""
    return Settings()


# Logging configuration
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "mind": {
            "handlers": ["console"],
            "level": "DEBUG",
            "propagate": False,
        },
    },
}


def configure_logging(level: str | None = None) -> None:
    """Apply the logging configuration, optionally overriding the mind level."""
    config = {**LOGGING, "loggers": {k: dict(v) for k, v in LOGGING["loggers"].items()}}
    config["loggers"]["mind"]["level"] = level or get_settings().log_level
    logging.config.dictConfig(config)
