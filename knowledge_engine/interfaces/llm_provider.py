"""Abstract base class for LLM service providers.

Defines the contract for the text-generation backend used by the contextual
enricher.  Implementations wrap the Anthropic Messages API or OpenAI chat
completions; the enricher stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider, OllamaLLMProvider
# Located in: knowledge_engine/providers/llm/
class ILLMProvider(ABC):
    """Contract for text-generation services."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        cache_document: str | None = None,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The prompt containing the actual request.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.
        cache_document:
            Optional large document shared by many consecutive calls.
            Providers that support prompt caching send it as an ephemeral
            cached block so repeat calls only pay for the varying
            ``user_prompt``; other providers inline it into the system
            prompt.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        knowledge_engine.utils.errors.LLMError
            If the API call fails or returns no text.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"anthropic"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured."""
