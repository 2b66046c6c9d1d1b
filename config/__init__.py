"""
Configuration Module for Identity Extraction System.

Settings live in ``settings.yaml`` next to this file. Thresholds, timeouts
and retry counts are policy knobs: components read them through
``get_config`` with a default, and explicit constructor arguments win
over configuration.

The manager is a process-wide singleton. Loaded values are range-checked
so a bad edit fails at startup instead of halfway through a scan.
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from src.utils.exceptions import ConfigurationError
from src.utils.helpers import merge_dicts

DEFAULT_SETTINGS = Path(__file__).parent / "settings.yaml"

# Keys whose values must lie in [0, 1]
UNIT_INTERVAL_KEYS = (
    "ocr.low_confidence_floor",
    "classifier.min_score",
    "classifier.anchor_weight",
    "classifier.field_weight",
    "input.boundary.min_area_ratio",
    "postprocessing.confidence_threshold",
    "postprocessing.degraded_penalty",
    "postprocessing.fallback_penalty",
)

# Keys whose values must be strictly positive
POSITIVE_KEYS = (
    "ocr.timeout_seconds",
    "extraction.label_max_distance",
    "session.history_size",
)


class ConfigurationManager:
    """
    Singleton access to the system settings.

    Attributes:
        config_path (Path): Settings file in use.

    Example:
        >>> config = ConfigurationManager()
        >>> config.get("ocr.timeout_seconds")
        10.0
        >>> config.override({"ocr": {"engine": "easyocr"}})
    """

    _instance: Optional['ConfigurationManager'] = None
    _config: Dict[str, Any] = {}

    def __new__(cls, config_path: Optional[str] = None) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Load settings on first construction; later calls are no-ops.

        Args:
            config_path: Settings file. Defaults to config/settings.yaml.

        Raises:
            FileNotFoundError: If the settings file does not exist.
            ConfigurationError: If a policy value is out of range.
        """
        if self._initialized:
            return

        self.config_path = Path(config_path) if config_path else DEFAULT_SETTINGS
        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._config = yaml.safe_load(f) or {}

        self._resolve_paths()
        self._validate()

    def _resolve_paths(self) -> None:
        """Make ``paths.*`` entries absolute, relative to the settings file."""
        base_dir = self.config_path.parent
        for key, value in (self._config.get('paths') or {}).items():
            if value and not Path(value).is_absolute():
                self._config['paths'][key] = str((base_dir / value).resolve())

    def _validate(self) -> None:
        for key in UNIT_INTERVAL_KEYS:
            value = self.get(key)
            if value is not None and not 0.0 <= float(value) <= 1.0:
                raise ConfigurationError(key, value, "must be between 0 and 1")

        for key in POSITIVE_KEYS:
            value = self.get(key)
            if value is not None and float(value) <= 0:
                raise ConfigurationError(key, value, "must be positive")

        retries = self.get("ocr.max_retries")
        if retries is not None and int(retries) < 0:
            raise ConfigurationError("ocr.max_retries", retries, "must be >= 0")

        low, high = self.get("input.aspect_ratio.min"), self.get("input.aspect_ratio.max")
        if low is not None and high is not None and float(low) >= float(high):
            raise ConfigurationError("input.aspect_ratio", [low, high], "min must be below max")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a value by dotted key.

        Example:
            >>> config.get("ocr.max_retries")
            2
            >>> config.get("no.such.key", "fallback")
            'fallback'
        """
        value = self._config
        try:
            for part in key.split('.'):
                value = value[part]
        except (KeyError, TypeError):
            return default
        return value

    def get_all(self) -> Dict[str, Any]:
        """Deep copy of every setting."""
        return deepcopy(self._config)

    def override(self, values: Dict[str, Any]) -> None:
        """
        Merge values over the loaded settings.

        Used by the command line (--engine) and by tests that need a
        different policy without editing settings.yaml.

        Raises:
            ConfigurationError: If an overridden value is out of range.
        """
        previous = self._config
        self._config = merge_dicts(self._config, values)
        try:
            self._validate()
        except ConfigurationError:
            self._config = previous
            raise

    def reload(self) -> None:
        """Re-read the settings file, discarding overrides."""
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next construction reloads from disk."""
        cls._instance = None


def get_config(key: str, default: Any = None) -> Any:
    """
    Shortcut for ``ConfigurationManager().get``.

    Example:
        >>> get_config("classifier.min_score", 0.5)
        0.5
    """
    return ConfigurationManager().get(key, default)


__all__ = ['ConfigurationManager', 'get_config']
