"""
Configuration management for gotichat.
"""

from gotichat.config.config_loader import ConfigError, ConfigLoader, config_loader

__all__ = ["ConfigError", "ConfigLoader", "config_loader"]
