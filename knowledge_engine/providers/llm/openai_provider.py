"""Chat-completion adapters for APIs that speak the OpenAI protocol.

:class:`OpenAICompatibleChat` implements :meth:`ILLMProvider.complete` for
any chat-completions endpoint.  None of these backends accepts an explicit
cache marker, so ``cache_document`` is placed at the start of the system
message; OpenAI caches long identical prefixes automatically and the other
hosts simply see it as context.

:class:`OpenAILLMProvider` targets OpenAI or a compatible host (TogetherAI,
Fireworks, Groq) set through ``openai_base_url``.
"""

from __future__ import annotations

import openai
import structlog

from knowledge_engine.config.settings import Settings
from knowledge_engine.interfaces.llm_provider import ILLMProvider
from knowledge_engine.providers.embedding.openai_embedding_provider import translate_openai_error
from knowledge_engine.utils.errors import ConfigurationError, LLMError

logger = structlog.get_logger(logger_name=__name__)


def with_cached_document(system_prompt: str, cache_document: str | None) -> str:
    """Prefix *system_prompt* with the shared document, if one is given."""
    if cache_document is None:
        return system_prompt
    return f"<document>\n{cache_document}\n</document>\n\n{system_prompt}"


class OpenAICompatibleChat(ILLMProvider):
    """Shared ``chat.completions`` call with error translation.

    ``client`` is ``None`` when the backend has no credentials.
    """

    def __init__(self, client: openai.AsyncOpenAI | None, model: str, provider_name: str) -> None:
        self._client = client
        self._text_model = model
        self._provider_name = provider_name

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        cache_document: str | None = None,
    ) -> str:
        if self._client is None:
            raise ConfigurationError(
                message="No API key configured for text generation",
                provider_name=self._provider_name,
            )
        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=[
                    {"role": "system", "content": with_cached_document(system_prompt, cache_document)},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as exc:
            raise translate_openai_error(exc, self._provider_name) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"Chat completion failed: {exc}",
                provider_name=self._provider_name,
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(message="Model returned an empty response", provider_name=self._provider_name)

        usage = response.usage
        logger.debug(
            "chat_completion_complete",
            provider=self._provider_name,
            model=self._text_model,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )
        return content

    def get_provider_name(self) -> str:
        return self._provider_name


class OpenAILLMProvider(OpenAICompatibleChat):
    """OpenAI chat completions; ``gpt-4o-mini`` unless ``OPENAI_TEXT_MODEL`` is set."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        client = None
        if self._api_key:
            client_kwargs: dict = {
                "api_key": self._api_key,
                "timeout": openai.Timeout(60.0, connect=5.0),
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)

        super().__init__(
            client=client,
            model=settings.openai_text_model or "gpt-4o-mini",
            provider_name="openai-compatible" if settings.openai_base_url else "openai",
        )

    def is_available(self) -> bool:
        return bool(self._api_key)
