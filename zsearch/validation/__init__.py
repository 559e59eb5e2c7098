"""
zsearch validation module.

This module provides configuration loading and validation.
"""

from zsearch.validation.config import Config, ConfigError, ZSearchConfig

__all__ = ["Config", "ConfigError", "ZSearchConfig"]
