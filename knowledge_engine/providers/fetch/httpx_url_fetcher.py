"""URL fetcher backed by httpx.

Downloads the raw bytes behind a URL for URL-based ingestion.  Content
interpretation (PDF vs. HTML vs. text) happens later in the extraction
registry; this adapter only reports the server's content type with any
``; charset=...`` parameters stripped.
"""

from __future__ import annotations

import httpx
import structlog

from knowledge_engine.interfaces.url_fetcher import FetchedContent, IUrlFetcher
from knowledge_engine.utils.errors import EmptyOrInvalidContentError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_MAX_BYTES = 50 * 1024 * 1024
_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; knowledge-engine/0.1)",
    "Accept": "*/*",
}


class HttpxUrlFetcher(IUrlFetcher):
    """Fetches documents over HTTP(S) with a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        max_bytes: int = _DEFAULT_MAX_BYTES,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(_DEFAULT_TIMEOUT),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> FetchedContent:
        """GET *url* and return its body and content type.

        The body is streamed; a response larger than ``max_bytes`` is
        abandoned as soon as the limit is crossed.
        """
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                data = await self._read_limited(response, url)
                content_type = _strip_parameters(response.headers.get("content-type", ""))
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                message=f"Timeout fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500 or status == 429:
                raise ProviderUnavailableError(
                    message=f"HTTP {status} for {url}",
                    provider_name=self.get_provider_name(),
                ) from exc
            raise EmptyOrInvalidContentError(
                message=f"HTTP {status} for {url}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                message=f"HTTP error fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not data:
            raise EmptyOrInvalidContentError(
                message=f"Empty response body from {url}",
                provider_name=self.get_provider_name(),
            )

        logger.info("url_fetched", url=url, content_type=content_type, size=len(data))
        return FetchedContent(data=data, content_type=content_type or "application/octet-stream")

    async def _read_limited(self, response: httpx.Response, url: str) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            self._raise_too_large(url)

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) > self._max_bytes:
                self._raise_too_large(url)
        return bytes(buffer)

    def _raise_too_large(self, url: str) -> None:
        raise EmptyOrInvalidContentError(
            message=f"Response from {url} exceeds {self._max_bytes} bytes",
            provider_name=self.get_provider_name(),
        )

    async def close(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()

    def get_provider_name(self) -> str:
        return "httpx_fetch"


def _strip_parameters(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()
