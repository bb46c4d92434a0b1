"""Configuration system."""

from signal_feed.config.loader import load_config
from signal_feed.config.schema import AppConfig, ClassifierConfig

__all__ = ["AppConfig", "ClassifierConfig", "load_config"]
