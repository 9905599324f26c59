"""
Configuration management for StoryGuard using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storyguard.errors import ConfigurationError

# --- Setup Logging ---
log = logging.getLogger(__name__)

HOUR = 60 * 60
DAY = 24 * HOUR

# --- Nested Configuration Models ---


class RedisConfig(BaseModel):
    """Connection settings for the shared recency store."""

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL.")
    namespace: str = Field(default="", description="Optional prefix isolating all keys of one deployment.")
    socket_timeout: float = Field(default=5.0, gt=0, description="Socket read/write timeout in seconds.")
    socket_connect_timeout: float = Field(default=5.0, gt=0, description="Connect timeout in seconds.")
    operation_timeout: float = Field(
        default=2.0, gt=0, description="Upper bound for a single cache round trip before degrading."
    )

    @field_validator("namespace")
    @classmethod
    def strip_namespace(cls, v: str) -> str:
        return v.strip().rstrip(":")


class RecencyThreshold(BaseModel):
    """Similarity threshold applied to cached entries younger than ``max_age_hours``."""

    max_age_hours: float = Field(gt=0)
    threshold: float = Field(ge=0.0, le=1.0)


class DedupSettings(BaseModel):
    """Thresholds and TTLs of the deduplication engine."""

    similarity_threshold: float = Field(
        default=0.6, ge=0.0, le=1.0, description="Minimum term overlap for a semantic duplicate."
    )
    top_term_count: int = Field(default=8, ge=1, description="Significant terms kept per semantic fingerprint.")
    content_ttl_seconds: float = Field(default=3 * DAY, gt=0, description="TTL of content fingerprints.")
    source_ttl_seconds: float = Field(default=3 * DAY, gt=0, description="TTL of per-source URL sets.")
    global_ttl_seconds: Optional[float] = Field(
        default=30 * DAY, description="TTL of the cross-module article set. None keeps it forever."
    )
    semantic_lookback_entries: int = Field(default=500, ge=1, description="Semantic entries compared per check.")
    semantic_lookback_seconds: float = Field(default=48 * HOUR, gt=0, description="Semantic lookback horizon.")
    topic_window_capacity: int = Field(default=10, ge=1, description="Entries kept in the recent topics window.")
    topic_window_max_age_seconds: float = Field(default=24 * HOUR, gt=0, description="Age cap of topic entries.")
    crosspost_min_interval_seconds: float = Field(
        default=6 * HOUR, gt=0, description="Minimum spacing between relays to one destination."
    )
    exclusive_commit: bool = Field(
        default=False, description="Claim content fingerprints with SET NX so one worker wins a race."
    )
    recency_thresholds: List[RecencyThreshold] = Field(
        default_factory=list, description="Optional age-scaled similarity thresholds, youngest band first."
    )

    @field_validator("global_ttl_seconds")
    @classmethod
    def validate_global_ttl(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("global_ttl_seconds must be positive or null")
        return v

    @field_validator("recency_thresholds")
    @classmethod
    def sort_bands(cls, v: List[RecencyThreshold]) -> List[RecencyThreshold]:
        return sorted(v, key=lambda band: band.max_age_hours)

    @model_validator(mode="after")
    def validate_horizons(self) -> DedupSettings:
        if self.global_ttl_seconds is not None and self.global_ttl_seconds < self.content_ttl_seconds:
            raise ValueError("global_ttl_seconds must not be shorter than content_ttl_seconds")
        return self

    def threshold_for_age(self, age_seconds: float) -> float:
        """Similarity threshold for a cached entry of the given age."""
        for band in self.recency_thresholds:
            if age_seconds < band.max_age_hours * HOUR:
                return band.threshold
        return self.similarity_threshold


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: Optional[int] = Field(default=None, description="Port for the metrics exporter. None disables.")

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


def _default_source_priority() -> Dict[str, int]:
    return {
        "CoinDesk": 1,
        "TheBlock": 1,
        "Decrypt": 2,
        "BitcoinMagazine": 2,
        "CryptoPotato": 3,
        "NewsAPI": 3,
    }


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "StoryGuard"
    redis: RedisConfig = Field(default_factory=RedisConfig)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    source_priority: Dict[str, int] = Field(
        default_factory=_default_source_priority,
        description="Lower number wins when picking a cluster representative.",
    )

    model_config = SettingsConfigDict(env_prefix="STORYGUARD_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    paths_to_check = [
        current_dir / "storyguard.yaml",
        current_dir / "storyguard.yml",
        current_dir / "config.yaml",
    ]
    for path in paths_to_check:
        if path.exists():
            return path
    return None


def load_config(path: Path | str | None = None) -> Config:
    """
    Load and validate configuration, failing fast on invalid values.

    Args:
        path: YAML file to load. When omitted, a config file in the working
              directory is used if present, otherwise defaults and environment.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    config_path = Path(path) if path else find_config_file()
    try:
        if config_path is not None:
            log.info("Loading configuration from: %s", config_path)
            return Config.from_yaml(config_path)
        return Config()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration from {config_path}: {e}") from e
