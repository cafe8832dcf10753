"""Intent Engine Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    INTENT_ENGINE_CONFIG_PATH: Path to config file (default: intent-engine.yaml in cwd)
    INTENT_ENGINE_DB_PATH: Override storage database path from config
    INTENT_ENGINE_LOG_LEVEL: Override logging level

Configuration Schema:
    storage:
        backend: str - "sqlite" | "memory" | "null" (default: "sqlite")
        path: str - SQLite state database (default: ~/.intent_engine/state.db)
    preferences:
        ttl_days, min_observations, decay_per_day, max_strength,
        min_active_strength, bonus_observations, cleanup_interval_hours
    outcomes:
        ttl_days: int - Outcome retention (default: 30)
        max_outcomes: int - Index size cap (default: 100)
    gate:
        max_action_age_seconds, token_validity_seconds, max_processed_cache
    signals:
        new_create, transform_reference, transform_verbs: list[str] - Extra
        regex patterns added to the built-in lexicon (default: empty)
    logging:
        level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from intent_engine.signals import SignalLexicon

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "intent-engine.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "storage": {
        "backend": "sqlite",
        "path": None,  # Use storage.DEFAULT_DB_PATH
    },
    "preferences": {
        "ttl_days": 21,
        "min_observations": 3,
        "decay_per_day": 0.05,
        "max_strength": 0.85,
        "min_active_strength": 0.3,
        "bonus_observations": 10,
        "cleanup_interval_hours": 24,
    },
    "outcomes": {
        "ttl_days": 30,
        "max_outcomes": 100,
    },
    "gate": {
        "max_action_age_seconds": 5.0,
        "token_validity_seconds": 30.0,
        "max_processed_cache": 1000,
    },
    "signals": {
        "new_create": [],
        "transform_reference": [],
        "transform_verbs": [],
    },
    "logging": {
        "level": "INFO",
    },
}


@dataclass(frozen=True)
class PreferenceSettings:
    """Tunables for preference strength and retention."""

    ttl_days: float = 21
    min_observations: int = 3
    decay_per_day: float = 0.05
    max_strength: float = 0.85
    min_active_strength: float = 0.3
    bonus_observations: int = 10
    cleanup_interval_hours: float = 24

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_days * 86400

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval_hours * 3600


@dataclass(frozen=True)
class OutcomeSettings:
    """Tunables for the outcome ledger."""

    ttl_days: float = 30
    max_outcomes: int = 100

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_days * 86400


@dataclass(frozen=True)
class GateSettings:
    """Tunables for the execution gate."""

    max_action_age_seconds: float = 5.0
    token_validity_seconds: float = 30.0
    max_processed_cache: int = 1000


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return data


def load_config(
    config_path: str | None = None,
    base_dir: Path | None = None,
) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (config_path, INTENT_ENGINE_CONFIG_PATH, or
       intent-engine.yaml in base_dir)
    3. Environment variable overrides

    Args:
        config_path: Explicit config file path (overrides INTENT_ENGINE_CONFIG_PATH)
        base_dir: Directory for the default config file and relative paths

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file exists but is invalid YAML
    """
    if base_dir is None:
        base_dir = Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("INTENT_ENGINE_CONFIG_PATH")

    if file_path:
        resolved = Path(file_path)
        if not resolved.is_absolute():
            resolved = (base_dir / resolved).resolve()
        if resolved.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved))
                logger.info(f"Loaded configuration from: {resolved}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except OSError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        default_path = base_dir / DEFAULT_CONFIG_FILENAME
        if default_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_path))
                logger.info(f"Loaded configuration from: {default_path}")
            except (yaml.YAMLError, ConfigurationError) as e:
                logger.warning(f"Invalid default config (ignoring): {e}")
            except OSError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    db_override = os.environ.get("INTENT_ENGINE_DB_PATH")
    if db_override:
        config["storage"]["path"] = db_override
        logger.info(f"Storage path override from env: {db_override}")

    level_override = os.environ.get("INTENT_ENGINE_LOG_LEVEL")
    if level_override:
        config["logging"]["level"] = level_override.upper()

    return config


def _settings_from(section: dict[str, Any], cls: type) -> Any:
    fields = cls.__dataclass_fields__
    unknown = set(section) - set(fields)
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} keys: {sorted(unknown)}. "
            f"Available: {sorted(fields)}"
        )
    return cls(**section)


def get_preference_settings(config: dict[str, Any]) -> PreferenceSettings:
    """Build PreferenceSettings from the 'preferences' section."""
    return _settings_from(config.get("preferences", {}), PreferenceSettings)


def get_outcome_settings(config: dict[str, Any]) -> OutcomeSettings:
    """Build OutcomeSettings from the 'outcomes' section."""
    return _settings_from(config.get("outcomes", {}), OutcomeSettings)


def get_gate_settings(config: dict[str, Any]) -> GateSettings:
    """Build GateSettings from the 'gate' section."""
    return _settings_from(config.get("gate", {}), GateSettings)


def get_storage_path(config: dict[str, Any]) -> Path | None:
    """Return the configured state database path, if any."""
    path_str = config.get("storage", {}).get("path")
    return Path(path_str).expanduser() if path_str else None


def get_signal_lexicon(config: dict[str, Any]) -> SignalLexicon:
    """Build the signal lexicon from the 'signals' section.

    Patterns listed there extend the built-in sets; they never replace them.
    """
    section = config.get("signals") or {}
    allowed = {"new_create", "transform_reference", "transform_verbs"}
    unknown = set(section) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown signals keys: {sorted(unknown)}. Available: {sorted(allowed)}"
        )
    for key, patterns in section.items():
        if not isinstance(patterns, list):
            raise ConfigurationError(f"signals.{key} must be a list of patterns")
    try:
        return SignalLexicon.from_dict(section)
    except re.error as e:
        raise ConfigurationError(f"Invalid signal pattern: {e}")
