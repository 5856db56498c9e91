"""Ollama LLM provider adapter.

Runs contextual enrichment against a local Ollama server through its
OpenAI-protocol ``/v1`` endpoint, fully offline.

Setup: install Ollama, ``ollama pull llama3.1``, and set
``OLLAMA_BASE_URL=http://localhost:11434``.
"""

from __future__ import annotations

import openai

from knowledge_engine.config.settings import Settings
from knowledge_engine.providers.llm.openai_provider import OpenAICompatibleChat

_DEFAULT_MODEL = "llama3.1"


class OllamaLLMProvider(OpenAICompatibleChat):
    """Chat completions from a local Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        super().__init__(
            client=openai.AsyncOpenAI(
                base_url=f"{self._base_url}/v1",
                # The SDK requires a non-empty key; Ollama ignores it.
                api_key="ollama",
                max_retries=0,
            ),
            model=_DEFAULT_MODEL,
            provider_name="ollama",
        )

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama base URL is configured."""
        return bool(self._base_url)
