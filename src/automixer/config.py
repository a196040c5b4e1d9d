"""
Configuration management for automixer.

Loads and validates TOML config against strict bounds.
All tunable parameters are bounded and validated at startup.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
import copy
import toml
import logging

from .types import DecisionType, TransitionType

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when config validation fails."""
    pass


class Config:
    """Configuration loader and validator."""

    PARAM_BOUNDS = {
        "decision": {
            "policy": None,
            "default_transition": None,
            "tree_path": None,
        },
        "player": {
            "schedule_ahead_time": (0.0, 5.0),
            "load_ahead_time": (0.0, 30.0),
        },
        "transitions": {
            "offset_bars": (0, 8),
            "fade_in_bars": (1, 16),
            "crossfade_bars": (1, 16),
            "beat_repeat_times": (1, 16),
            "echo_break_bars": (0, 8),
            "power_down_bars": (1, 16),
            "power_down_break_bars": (0, 8),
            "effects_bars": (1, 16),
        },
        "analysis": {
            "hop_size": (256, 2048),
            "buf_size": (512, 8192),
            "min_beats": (2, 64),
        },
        "history": {
            "db_path": None,
        },
    }

    DEFAULT_CONFIG = {
        "config_version": "1.0",
        "decision": {
            "policy": "decision_tree",
            "default_transition": "beatmatch",
            "tree_path": "",
        },
        "player": {
            "schedule_ahead_time": 0.5,
            "load_ahead_time": 2.0,
        },
        "transitions": {
            "offset_bars": 1,
            "fade_in_bars": 2,
            "crossfade_bars": 3,
            "beat_repeat_times": 3,
            "echo_break_bars": 1,
            "power_down_bars": 2,
            "power_down_break_bars": 0,
            "effects_bars": 2,
        },
        "analysis": {
            "hop_size": 512,
            "buf_size": 1024,
            "min_beats": 2,
        },
        "history": {
            "db_path": "",
        },
    }

    def __init__(self, config_dict: Dict[str, Any]):
        """Initialize config from dictionary."""
        self.data = config_dict
        self._validate()

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load config from TOML file.

        Args:
            config_path: Path to automixer.toml. If None, uses AUTOMIXER_CONFIG_PATH env var
                        or defaults to configs/automixer.toml.

        Returns:
            Config instance.

        Raises:
            ConfigError: If config is invalid or unreadable.
        """
        if config_path is None:
            config_path = os.getenv("AUTOMIXER_CONFIG_PATH", "configs/automixer.toml")

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}. Using defaults.")
            return cls.defaults()

        try:
            config_dict = toml.load(config_path)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}")
        logger.info(f"Loaded config from {config_path}")
        return cls(config_dict)

    @classmethod
    def defaults(cls) -> "Config":
        return cls(copy.deepcopy(cls.DEFAULT_CONFIG))

    def _validate(self) -> None:
        """
        Validate all config parameters against bounds, filling in defaults.

        Raises:
            ConfigError: If any parameter is out of bounds or names an unknown choice.
        """
        for section, params in self.PARAM_BOUNDS.items():
            if section not in self.data:
                logger.debug(f"Missing config section: {section}. Using defaults.")
                self.data[section] = copy.deepcopy(self.DEFAULT_CONFIG[section])
                continue

            section_data = self.data[section]

            for param, bounds in params.items():
                if param not in section_data:
                    default_val = self.DEFAULT_CONFIG[section].get(param)
                    logger.debug(f"Missing param {section}.{param}. Using default: {default_val}")
                    section_data[param] = default_val
                    continue

                value = section_data[param]

                if bounds is None:
                    continue

                min_val, max_val = bounds
                if not isinstance(value, (int, float)) or not (min_val <= value <= max_val):
                    raise ConfigError(
                        f"Parameter {section}.{param}={value} out of bounds "
                        f"[{min_val}, {max_val}]"
                    )

        try:
            DecisionType.parse(self.data["decision"]["policy"])
            TransitionType.parse(self.data["decision"]["default_transition"])
        except (ValueError, IndexError) as e:
            raise ConfigError(f"Invalid decision settings: {e}")

        logger.debug("✅ Config validation passed")

    @property
    def decision_type(self) -> DecisionType:
        return DecisionType.parse(self.data["decision"]["policy"])

    @property
    def default_transition(self) -> TransitionType:
        return TransitionType.parse(self.data["decision"]["default_transition"])

    def get(self, section: str, param: str, default: Any = None) -> Any:
        """Get a config parameter safely."""
        return self.data.get(section, {}).get(param, default)

    def __getitem__(self, section: str) -> Dict[str, Any]:
        """Allow dict-like access: config["transitions"]"""
        return self.data.get(section, {})

    def __repr__(self) -> str:
        version = self.data.get('config_version', 'unknown')
        return f"Config(version={version})"
