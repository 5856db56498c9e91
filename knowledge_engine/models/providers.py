"""Provider configuration models.

:class:`ProviderRateLimits` is built once at startup from configuration and
injected into the limiter for that provider; request handling never reads
rate limits from the environment.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ProviderRateLimits(BaseModel):
    """Rate-limit knobs for one model provider."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(description="Provider name, e.g. 'openai' or 'anthropic'.")
    max_concurrent_requests: int = Field(default=30, ge=1)
    requests_per_minute: int = Field(default=60, ge=1)
    tokens_per_minute: int | None = Field(
        default=None,
        ge=1,
        description="Token ceiling per minute, when the provider enforces one.",
    )


# Defaults per provider, used when config.yaml does not override them.
DEFAULT_PROVIDER_LIMITS: dict[str, ProviderRateLimits] = {
    "openai": ProviderRateLimits(
        provider="openai",
        max_concurrent_requests=30,
        requests_per_minute=60,
        tokens_per_minute=150_000,
    ),
    "anthropic": ProviderRateLimits(
        provider="anthropic",
        max_concurrent_requests=20,
        requests_per_minute=50,
        tokens_per_minute=100_000,
    ),
    "ollama": ProviderRateLimits(
        provider="ollama",
        max_concurrent_requests=4,
        requests_per_minute=600,
    ),
}
