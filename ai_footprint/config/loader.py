"""
Configuration management and loading.

Handles tracker settings loaded from a YAML file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_footprint.core.impact import DEFAULT_DAILY_GOAL_GRAMS
from ai_footprint.storage.db import DEFAULT_DB_PATH

DEFAULT_CONFIG_PATH = "ai_footprint.yaml"

MIN_POLL_INTERVAL_SECONDS = 10.0
MAX_POLL_INTERVAL_SECONDS = 30.0

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageConfig:
    """Where the ledger is persisted."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate database path is set."""
        if not self.db_path or not self.db_path.strip():
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class GoalConfig:
    """Daily carbon goal."""
    daily_carbon_grams: float = DEFAULT_DAILY_GOAL_GRAMS

    def __post_init__(self):
        """Validate goal is positive."""
        if self.daily_carbon_grams <= 0:
            raise ValueError("daily_carbon_grams must be > 0")


@dataclass(frozen=True)
class ViewerConfig:
    """Refresh settings for polling viewers."""
    poll_interval_seconds: float = 15.0

    def __post_init__(self):
        """Validate poll interval is within the supported range."""
        if not MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS:
            raise ValueError(
                f"poll_interval_seconds must be between {MIN_POLL_INTERVAL_SECONDS:g} "
                f"and {MAX_POLL_INTERVAL_SECONDS:g}"
            )


@dataclass(frozen=True)
class IngestionConfig:
    """Page observation settings."""
    settle_seconds: float = 2.0
    queue_size: int = 1000
    min_text_length: int = 3

    def __post_init__(self):
        """Validate ingestion values."""
        if self.settle_seconds < 0:
            raise ValueError("settle_seconds cannot be negative")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        if self.min_text_length < 0:
            raise ValueError("min_text_length cannot be negative")


@dataclass(frozen=True)
class LoggingConfig:
    """Log verbosity."""
    level: str = "INFO"

    def __post_init__(self):
        """Validate log level name."""
        if self.level not in LOG_LEVELS:
            raise ValueError(f"level must be one of: {list(LOG_LEVELS)}")

    @property
    def level_number(self) -> int:
        return logging.getLevelName(self.level)


@dataclass(frozen=True)
class TrackerConfig:
    """Complete tracker configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    goals: GoalConfig = field(default_factory=GoalConfig)
    viewer: ViewerConfig = field(default_factory=ViewerConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Allowed keys and expected types per section
_SECTION_SCHEMA = {
    "storage": {"db_path": str},
    "goals": {"daily_carbon_grams": (int, float)},
    "viewer": {"poll_interval_seconds": (int, float)},
    "ingestion": {
        "settle_seconds": (int, float),
        "queue_size": int,
        "min_text_length": int,
    },
    "logging": {"level": str},
}

_SECTION_TYPES = {
    "storage": StorageConfig,
    "goals": GoalConfig,
    "viewer": ViewerConfig,
    "ingestion": IngestionConfig,
    "logging": LoggingConfig,
}


def load_tracker_config(path: Optional[str] = None) -> TrackerConfig:
    """Load and validate tracker configuration from a YAML file.

    Strict validation rejects unknown keys and wrong types so a typo
    never silently falls back to a default.

    Args:
        path: Path to YAML configuration file. When omitted, the default
            file is used if it exists, otherwise built-in defaults.

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        if not Path(DEFAULT_CONFIG_PATH).exists():
            return TrackerConfig()
        path = DEFAULT_CONFIG_PATH

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return TrackerConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_SCHEMA)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(name, raw_config[name])
        for name in _SECTION_SCHEMA
        if name in raw_config
    }
    return TrackerConfig(**sections)


def _parse_section(name: str, data: Any):
    """Parse and validate one configuration section.

    Args:
        name: Section name
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return _SECTION_TYPES[name]()
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    schema: Dict[str, Any] = _SECTION_SCHEMA[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        expected = schema[key]
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"'{key}' in {name} has invalid type {type(value).__name__}")

    if name == "logging" and "level" in data:
        data = {**data, "level": data["level"].upper()}

    return _SECTION_TYPES[name](**data)
