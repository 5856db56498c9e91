"""Contextual enrichment of chunks before embedding.

A chunk pulled out of a long document often loses the context that makes it
findable ("the company's revenue grew 3%" -- which company?).  The enricher
asks a text-generation model for one or two sentences situating each chunk
within the whole document and prefixes that context to the chunk text that
gets embedded.

Cost control: the full document is passed as ``cache_document`` so providers
that support prompt caching (Anthropic) send it once as an ephemeral cached
block and subsequent per-chunk calls only pay for the chunk itself.

Failure policy: a failed call for one chunk never aborts the document.  That
chunk falls back to its plain text; the error is logged and recorded on the
returned :class:`EnrichedChunk`.
"""

from __future__ import annotations

import asyncio

import structlog
from pydantic import BaseModel, ConfigDict

from knowledge_engine.interfaces.llm_provider import ILLMProvider
from knowledge_engine.models.knowledge import TextChunk
from knowledge_engine.utils.concurrency import throttled_gather
from knowledge_engine.utils.errors import KnowledgeEngineError
from knowledge_engine.utils.rate_limiter import ProviderRateLimiter, limited_call
from knowledge_engine.utils.retry import RetryPolicy, retry_async

logger = structlog.get_logger(logger_name=__name__)

_SYSTEM_PROMPT = (
    "You situate excerpts within the document they come from so they can be "
    "found by search. Reply with one or two short sentences of context only. "
    "Do not repeat the excerpt and do not add commentary."
)

_USER_PROMPT_TEMPLATE = (
    "Here is an excerpt from the document above:\n"
    "<chunk>\n{chunk}\n</chunk>\n\n"
    "Give a short, succinct context that situates this excerpt within the "
    "overall document, to improve search retrieval of the excerpt."
)

_DEFAULT_MAX_CONTEXT_TOKENS = 256
_DEFAULT_MAX_DOCUMENT_CHARS = 400_000


class EnrichedChunk(BaseModel):
    """A chunk ready for embedding, with the context that was prefixed (if any)."""

    model_config = ConfigDict(frozen=True)

    position: int
    original_text: str
    text: str
    context: str | None = None
    error: str | None = None

    @property
    def enriched(self) -> bool:
        return self.context is not None


class ContextualEnricher:
    """Prefixes each chunk with an LLM-generated situating context.

    Parameters
    ----------
    llm:
        Text-generation backend.
    limiter:
        Shared limiter for *llm*'s provider.
    retry_policy:
        Backoff for rate-limit responses and timeouts; after exhaustion the
        chunk falls back to plain text.
    max_context_tokens:
        Output budget for each context blurb.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        limiter: ProviderRateLimiter,
        retry_policy: RetryPolicy | None = None,
        max_context_tokens: int = _DEFAULT_MAX_CONTEXT_TOKENS,
        max_document_chars: int = _DEFAULT_MAX_DOCUMENT_CHARS,
    ) -> None:
        self._llm = llm
        self._limiter = limiter
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_context_tokens = max_context_tokens
        self._max_document_chars = max_document_chars
        self._fanout = asyncio.Semaphore(limiter.limits.max_concurrent_requests)

    async def enrich(self, document_text: str, chunks: list[TextChunk]) -> list[EnrichedChunk]:
        """Return one :class:`EnrichedChunk` per input chunk, in order."""
        if not chunks:
            return []

        document = document_text[: self._max_document_chars]
        results = await throttled_gather(
            [self._enrich_one(document, chunk) for chunk in chunks],
            self._fanout,
        )
        enriched: list[EnrichedChunk] = list(results)  # type: ignore[arg-type]
        failures = sum(1 for c in enriched if c.error is not None)
        logger.info(
            "contextual_enrichment_complete",
            provider=self._llm.get_provider_name(),
            chunks=len(enriched),
            failures=failures,
        )
        return enriched

    async def _enrich_one(self, document: str, chunk: TextChunk) -> EnrichedChunk:
        user_prompt = _USER_PROMPT_TEMPLATE.format(chunk=chunk.text)

        async def _call() -> str:
            async with limited_call(self._limiter, tokens=len(user_prompt) // 4 + 1):
                return await self._llm.complete(
                    system_prompt=_SYSTEM_PROMPT,
                    user_prompt=user_prompt,
                    temperature=0.0,
                    max_tokens=self._max_context_tokens,
                    cache_document=document,
                )

        try:
            context = await retry_async(
                _call,
                self._retry_policy,
                operation_name=f"contextualize:{self._llm.get_provider_name()}",
            )
        except (KnowledgeEngineError, TimeoutError) as exc:
            logger.warning(
                "contextual_enrichment_failed",
                position=chunk.position,
                error=str(exc),
            )
            return EnrichedChunk(
                position=chunk.position,
                original_text=chunk.text,
                text=chunk.text,
                error=str(exc),
            )

        context = context.strip()
        if not context:
            return EnrichedChunk(
                position=chunk.position,
                original_text=chunk.text,
                text=chunk.text,
                error="empty context",
            )
        return EnrichedChunk(
            position=chunk.position,
            original_text=chunk.text,
            text=f"{context}\n\n{chunk.text}",
            context=context,
        )
