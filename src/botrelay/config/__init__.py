"""Configuration loading for Botrelay."""

from botrelay.config.loader import ConfigurationError, get_config_sources, load_config
from botrelay.config.schema import Config

__all__ = [
    "Config",
    "ConfigurationError",
    "get_config_sources",
    "load_config",
]
