"""Configuration module: exports Settings and load_config."""

from iqrchat.config.loader import load_config
from iqrchat.config.settings import Settings

__all__ = ["Settings", "load_config"]
