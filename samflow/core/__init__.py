"""Samflow core configuration."""

from samflow.core.config import SamflowConfig, get_config, reset_config, set_config

__all__ = ["SamflowConfig", "get_config", "set_config", "reset_config"]
