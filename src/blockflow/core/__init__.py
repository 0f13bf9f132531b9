"""Engine configuration."""

from .config import (
    CacheSettings,
    EngineConfig,
    EngineSettings,
    LoggingSettings,
    clear_config_cache,
    load_config,
)

__all__ = [
    "CacheSettings",
    "EngineConfig",
    "EngineSettings",
    "LoggingSettings",
    "clear_config_cache",
    "load_config",
]
