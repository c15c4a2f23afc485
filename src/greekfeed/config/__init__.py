"""
Greekfeed Configuration Module

Nested dataclass configuration loaded from YAML with environment overrides.
"""

from greekfeed.config.engine_config import (
    EngineConfig,
    FeedConfig,
    LoggingConfig,
    MarketHoursConfig,
    NormalizerConfig,
    PricingConfig,
    ProjectionConfig,
    RegistryConfig,
    StorageConfig,
    load_engine_config,
)

__all__ = [
    "EngineConfig",
    "FeedConfig",
    "LoggingConfig",
    "MarketHoursConfig",
    "NormalizerConfig",
    "PricingConfig",
    "ProjectionConfig",
    "RegistryConfig",
    "StorageConfig",
    "load_engine_config",
]
