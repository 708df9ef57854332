"""Configuration loader with strict validation."""

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"

# (section, key) -> accepted types
_REQUIRED_KEYS: Dict[Tuple[str, str], Tuple[type, ...]] = {
    ("engine", "path"): (str, list),
    ("engine", "identifier"): (str,),
    ("engine", "handshake_timeout_s"): (int, float),
    ("engine", "read_poll_s"): (int, float),
    ("engine", "shutdown_timeout_s"): (int, float),
    ("engine", "trace_io"): (bool,),
    ("engine", "options"): (dict,),
    ("analysis", "default_depth"): (int,),
    ("analysis", "default_lines"): (int,),
    ("analysis", "timeout_ms"): (int,),
    ("analysis", "max_lines"): (int,),
    ("logging", "console"): (dict,),
    ("logging", "file"): (dict,),
}

_POSITIVE_KEYS = [
    ("engine", "handshake_timeout_s"),
    ("engine", "read_poll_s"),
    ("engine", "shutdown_timeout_s"),
    ("analysis", "default_depth"),
    ("analysis", "default_lines"),
    ("analysis", "timeout_ms"),
    ("analysis", "max_lines"),
]


class ConfigLoader:
    """Loads config.json and validates every value the application relies on.

    Missing or mistyped values raise ValueError instead of being silently
    replaced by defaults in the components that read them.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """Initialize the loader.

        Args:
            config_path: Path to a configuration file. Defaults to the bundled config.json.
        """
        self.config_path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Load, merge and validate the configuration.

        Args:
            overrides: Optional nested dictionary merged over the file contents
                (e.g. {"engine": {"path": "/usr/bin/stockfish"}}).

        Returns:
            Validated configuration dictionary.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ValueError: If the file is not valid JSON or a value is missing or invalid.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self.config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ValueError(f"Configuration root must be an object in {self.config_path}")

        if overrides:
            config = merge_config(config, overrides)

        validate_config(config)
        return config


def merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge overrides into a copy of base.

    Args:
        base: Base configuration.
        overrides: Values replacing those in base. Nested dicts are merged key by key.

    Returns:
        Merged configuration (base is not modified).
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """Validate a configuration dictionary.

    Args:
        config: Configuration to validate.

    Raises:
        ValueError: Naming the first missing or invalid key.
    """
    for (section, key), types in _REQUIRED_KEYS.items():
        section_config = config.get(section)
        if not isinstance(section_config, dict):
            raise ValueError(f"Section '{section}' is required in config.json")
        if key not in section_config:
            raise ValueError(f"{key} is required in config.json under {section}")
        value = section_config[key]
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in types:
            raise ValueError(f"{key} under {section} has invalid type bool")
        if not isinstance(value, types):
            expected = " or ".join(t.__name__ for t in types)
            raise ValueError(f"{key} under {section} must be {expected}, got {type(value).__name__}")

    for section, key in _POSITIVE_KEYS:
        if config[section][key] <= 0:
            raise ValueError(f"{key} under {section} must be positive")

    engine_path = config["engine"]["path"]
    if isinstance(engine_path, list):
        if not engine_path or not all(isinstance(part, str) for part in engine_path):
            raise ValueError("path under engine must be a non-empty list of strings")
    elif not engine_path.strip():
        raise ValueError("path under engine must not be empty")

    analysis = config["analysis"]
    if analysis["default_lines"] > analysis["max_lines"]:
        raise ValueError("default_lines under analysis must not exceed max_lines")
