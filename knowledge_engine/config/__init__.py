"""Configuration: environment settings and YAML defaults."""

from knowledge_engine.config.loader import get_rate_limits, get_retry_policy, load_config
from knowledge_engine.config.settings import Settings

__all__ = ["Settings", "get_rate_limits", "get_retry_policy", "load_config"]
