"""Configuration module for groupguard."""

from groupguard.config.loader import get_config_path, load_config, save_config
from groupguard.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
