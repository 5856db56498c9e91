"""Application settings loaded from environment variables via pydantic-settings.

Settings are read from two sources, in priority order:

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123`` (always win).
  2. A ``.env`` file in the working directory (local development).

Field ``ctx_knowledge_enabled`` maps to env var ``CTX_KNOWLEDGE_ENABLED``
and so on; pydantic-settings matches case-insensitively.  Defaults apply
when neither source sets a value.

Per-provider rate limits and retry parameters are structured values and
live in ``config/config.yaml`` instead (see :mod:`knowledge_engine.config.loader`).
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge engine settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Model Providers ===
    # Empty string = "not configured"; main.py skips providers with empty keys.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_embedding_model: str = ""  # Defaults to text-embedding-3-small
    # Vector width; 0 = the configured model's native width.  Overrides
    # ``embedding.dimension`` in config.yaml when set.
    embedding_dimension: int = Field(default=0, ge=0)
    openai_text_model: str = ""  # Defaults to gpt-4o-mini
    anthropic_api_key: str = ""
    anthropic_text_model: str = ""  # Defaults to claude-3-5-haiku-latest
    ollama_base_url: str = "http://localhost:11434"
    # Force a provider ("openai" or "ollama"); empty = pick by configured keys.
    embedding_provider: str = ""
    text_provider: str = ""

    # === Ingestion ===
    ctx_knowledge_enabled: bool = False
    max_input_tokens: int = Field(default=4000, ge=64)
    chunk_overlap_ratio: float = Field(default=0.15, ge=0.0, lt=0.5)
    contextual_reserve_tokens: int = Field(default=500, ge=0)
    embedding_batch_size: int = Field(default=64, ge=1)
    duplicate_ingestion_policy: Literal["wait", "reject"] = "wait"

    # === Storage ===
    database_path: str = "data/knowledge.db"

    # === Docs Loading ===
    knowledge_path: str = "./docs"
    load_docs_on_startup: bool = False

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_providers(self) -> list[str]:
        """Return the provider names that have credentials (or a URL) configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers

    @property
    def chunk_token_budget(self) -> int:
        """Token budget per chunk, leaving room for the context prefix if enabled."""
        if self.ctx_knowledge_enabled:
            return max(self.max_input_tokens - self.contextual_reserve_tokens, 64)
        return self.max_input_tokens
