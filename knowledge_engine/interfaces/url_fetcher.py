"""Abstract base class for URL fetching.

Used by URL-based ingestion: the engine hands over the caller's URL and
gets back the response bytes and the server-reported content type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field


class FetchedContent(BaseModel):
    """Body and content type of a fetched URL."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    content_type: str = Field(
        default="application/octet-stream",
        description="MIME type from the response, without parameters.",
    )


# Concrete implementation: HttpxUrlFetcher
# Located in: knowledge_engine/providers/fetch/
class IUrlFetcher(ABC):
    """Contract for downloading a document from a URL."""

    @abstractmethod
    async def fetch(self, url: str) -> FetchedContent:
        """Download *url*.

        Raises
        ------
        knowledge_engine.utils.errors.ProviderUnavailableError
            On network failure, timeout, or a 5xx response.
        knowledge_engine.utils.errors.EmptyOrInvalidContentError
            On a 4xx response or an empty body.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for logging."""

    async def close(self) -> None:
        """Release pooled connections.  No-op unless the fetcher owns a client."""
