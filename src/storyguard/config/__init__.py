"""Configuration models and loaders."""

from .config import (
    Config,
    DedupSettings,
    MonitoringConfig,
    RecencyThreshold,
    RedisConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "Config",
    "DedupSettings",
    "MonitoringConfig",
    "RecencyThreshold",
    "RedisConfig",
    "find_config_file",
    "load_config",
]
