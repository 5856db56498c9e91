"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. ``config/config.yaml`` -- static defaults checked into the repo,
     including per-provider rate limits and the retry policy.
  2. ``.env`` file           -- local developer overrides (not committed).
  3. Environment variables   -- set at deploy time.

:func:`load_config` reads the YAML file first, then deep-merges the
environment-based values from :class:`Settings` on top (currently
``EMBEDDING_DIMENSION``, which overrides ``embedding.dimension`` when
non-zero).  The ``rate_limits``, ``retry`` and ``embedding`` sections are
turned into typed values by :func:`get_rate_limits`,
:func:`get_retry_policy` and :func:`get_embedding_dimension` once, at
startup.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from knowledge_engine.config.settings import Settings
from knowledge_engine.models.providers import DEFAULT_PROVIDER_LIMITS, ProviderRateLimits
from knowledge_engine.utils.errors import ConfigurationError
from knowledge_engine.utils.retry import RetryPolicy


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file yields
            an empty base layer.
        settings: Pre-built settings; constructed from the environment when
            omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML is malformed or not a mapping.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides: dict = {}
    if settings.embedding_dimension:
        env_overrides["embedding"] = {"dimension": settings.embedding_dimension}

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def get_rate_limits(config: dict) -> dict[str, ProviderRateLimits]:
    """Build one :class:`ProviderRateLimits` per provider.

    Values under ``rate_limits.<provider>`` override the built-in defaults
    field by field; providers absent from the YAML keep their defaults.
    """
    section = config.get("rate_limits") or {}
    limits = dict(DEFAULT_PROVIDER_LIMITS)
    for provider, values in section.items():
        base = limits.get(provider)
        merged = base.model_dump() if base is not None else {}
        merged.update(values or {})
        merged["provider"] = provider
        try:
            limits[provider] = ProviderRateLimits(**merged)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid rate limits for {provider!r}: {exc}") from exc
    return limits


def get_retry_policy(config: dict) -> RetryPolicy:
    """Build the embedding :class:`RetryPolicy` from the ``retry`` section."""
    section = config.get("retry") or {}
    try:
        return RetryPolicy(**section)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid retry configuration: {exc}") from exc


def get_embedding_dimension(config: dict) -> int:
    """Return ``embedding.dimension``; 0 means the model's native width."""
    section = config.get("embedding") or {}
    value = section.get("dimension", 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(
            f"embedding.dimension must be a non-negative integer, got {value!r}"
        )
    return value


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
