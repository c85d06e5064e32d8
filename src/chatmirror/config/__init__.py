"""Configuration management."""

from chatmirror.config.loader import load_config, save_config
from chatmirror.config.schema import Config, SyncOptions

__all__ = ["Config", "SyncOptions", "load_config", "save_config"]
