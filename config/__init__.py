"""
Configuration management for docindex

Handles defaults, properties files, and environment overrides.
"""

from .loader import AppConfig, ConfigurationLoader
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING

__all__ = ["AppConfig", "ConfigurationLoader", "DEFAULT_SETTINGS", "ENV_VAR_MAPPING"]
