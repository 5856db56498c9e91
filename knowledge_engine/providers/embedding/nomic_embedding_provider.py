"""Local embeddings with ``nomic-embed-text`` served by Ollama.

Ollama exposes the OpenAI embeddings protocol under ``/v1``, so this
provider reuses :class:`OpenAICompatibleEmbedder` with a placeholder key.
Vectors are 768-wide.
"""

from __future__ import annotations

import openai

from knowledge_engine.config.settings import Settings
from knowledge_engine.providers.embedding.openai_embedding_provider import OpenAICompatibleEmbedder


class NomicEmbeddingProvider(OpenAICompatibleEmbedder):
    """``nomic-embed-text`` via a local or remote Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        super().__init__(
            client=openai.AsyncOpenAI(
                base_url=f"{self._base_url}/v1",
                api_key="ollama",
                max_retries=0,
            ),
            model="nomic-embed-text",
            dimension=768,
            provider_name="nomic_embedding",
            max_inputs_per_request=512,
        )

    def is_available(self) -> bool:
        return bool(self._base_url)
