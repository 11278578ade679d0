"""
Configuration loader for Botrelay.

Loads and merges configuration from multiple sources:
1. Default values
2. Global config (~/.botrelay/config.yaml)
3. Explicit config file (--config)
4. Environment variables (BOTRELAY_*)
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from botrelay.config.merger import (
    deep_merge,
    get_nested_value,
    resolve_key_path,
    set_nested_value,
)
from botrelay.config.schema import Config
from botrelay.storage.paths import get_global_config_path

ENV_PREFIX = "BOTRELAY_"

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed configuration dictionary ({} for a missing or empty file).

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return content


def expand_placeholders(value: Any) -> Any:
    """
    Replace ${VAR} placeholders in strings with environment values.

    Unset variables expand to an empty string. Lists and dicts are
    processed recursively.
    """
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [expand_placeholders(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_placeholders(item) for key, item in value.items()}
    return value


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    BOTRELAY_AGENT_MAX_ROUNDS=3 sets agent.max_rounds;
    BOTRELAY_PLATFORMS_TELEGRAM_BOT_TOKEN=... sets platforms.telegram.bot_token.

    Args:
        config: Configuration dictionary to modify.

    Returns:
        Configuration with environment overrides applied.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == "BOTRELAY_HOME":
            continue

        parts = key[len(ENV_PREFIX) :].lower().split("_")
        config_key = resolve_key_path(config, parts)

        # Known string and list fields keep their type (tokens can be all digits)
        existing = get_nested_value(config, config_key)
        if isinstance(existing, str):
            parsed: Any = value
        elif isinstance(existing, list):
            parsed = [item.strip() for item in value.split(",") if item.strip()]
        else:
            parsed = _parse_env_value(value)

        config = set_nested_value(config, config_key, parsed)

    return config


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to the appropriate type.

    Returns:
        Parsed value (bool, int, float, list or string).
    """
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if re.match(r"^-?\d+$", value):
        return int(value)
    if re.match(r"^-?\d+\.\d+$", value):
        return float(value)
    if "," in value:
        return [item.strip() for item in value.split(",")]
    return value


def load_config(config_path: Path | None = None, skip_env: bool = False) -> Config:
    """
    Load and merge configuration from all sources.

    Args:
        config_path: Explicit config file merged over the global one.
        skip_env: Skip environment variable overrides.

    Returns:
        Merged and validated Config object.

    Raises:
        ConfigurationError: If configuration is invalid or the explicit
            config file does not exist.
    """
    config_dict = Config().model_dump()

    global_path = get_global_config_path()
    if global_path.exists():
        config_dict = deep_merge(config_dict, load_yaml_file(global_path))

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        config_dict = deep_merge(config_dict, load_yaml_file(config_path))

    if not skip_env:
        config_dict = apply_env_overrides(config_dict)

    config_dict = expand_placeholders(config_dict)

    try:
        return Config.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_config_sources(config_path: Path | None = None) -> dict[str, Path | None]:
    """
    Get paths to the configuration files that would be loaded.

    Returns:
        Dictionary mapping source names to paths (None if not found).
    """
    global_path = get_global_config_path()
    return {
        "global": global_path if global_path.exists() else None,
        "explicit": config_path if config_path and config_path.exists() else None,
    }
