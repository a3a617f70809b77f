"""
Configuration module - TOML/YAML loader with environment substitution
"""

from .loader import ConfigLoader, get_config, reset_config

__all__ = ["ConfigLoader", "get_config", "reset_config"]
