"""Configuration module."""

from .parser import ConfigSource, PipelineConfig, load_config, load_config_simple
from .settings import Settings, get_settings

__all__ = [
    "ConfigSource",
    "PipelineConfig",
    "Settings",
    "get_settings",
    "load_config",
    "load_config_simple",
]
