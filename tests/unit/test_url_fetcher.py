"""Unit tests for HttpxUrlFetcher using httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from knowledge_engine.providers.fetch.httpx_url_fetcher import HttpxUrlFetcher
from knowledge_engine.utils.errors import EmptyOrInvalidContentError, ProviderUnavailableError


def _fetcher(handler, **kwargs) -> HttpxUrlFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxUrlFetcher(http_client=client, **kwargs)


class TestFetch:
    @pytest.mark.asyncio
    async def test_returns_body_and_bare_content_type(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, content=b"%PDF-1.7 bytes", headers={"Content-Type": "Application/PDF; qs=0.9"}
            )

        fetched = await _fetcher(handler).fetch("https://example.com/a.pdf")

        assert fetched.data == b"%PDF-1.7 bytes"
        assert fetched.content_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_missing_content_type_defaults_to_octet_stream(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"raw")

        fetched = await _fetcher(handler).fetch("https://example.com/blob")

        assert fetched.content_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_requests_exact_url(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, content=b"ok", headers={"Content-Type": "text/plain"})

        await _fetcher(handler).fetch("https://example.com/doc.txt?sig=abc")

        assert seen == ["https://example.com/doc.txt?sig=abc"]


class TestFetchErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 503, 429])
    async def test_server_errors_are_transient(self, status: int) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(status))

        with pytest.raises(ProviderUnavailableError, match=f"HTTP {status}"):
            await fetcher.fetch("https://example.com/x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 404])
    async def test_client_errors_are_invalid_content(self, status: int) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(status))

        with pytest.raises(EmptyOrInvalidContentError, match=f"HTTP {status}"):
            await fetcher.fetch("https://example.com/x")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderUnavailableError, match="Timeout"):
            await _fetcher(handler).fetch("https://example.com/x")

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderUnavailableError):
            await _fetcher(handler).fetch("https://example.com/x")

    @pytest.mark.asyncio
    async def test_empty_body(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b""))

        with pytest.raises(EmptyOrInvalidContentError, match="Empty response"):
            await fetcher.fetch("https://example.com/x")

    @pytest.mark.asyncio
    async def test_oversized_body(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b"x" * 11), max_bytes=10)

        with pytest.raises(EmptyOrInvalidContentError, match="exceeds 10 bytes"):
            await fetcher.fetch("https://example.com/x")

    @pytest.mark.asyncio
    async def test_oversized_stream_stops_reading_early(self) -> None:
        produced: list[int] = []

        async def body():
            for i in range(100):
                produced.append(i)
                yield b"x" * 8

        fetcher = _fetcher(lambda request: httpx.Response(200, content=body()), max_bytes=20)

        with pytest.raises(EmptyOrInvalidContentError, match="exceeds 20 bytes"):
            await fetcher.fetch("https://example.com/x")

        assert len(produced) == 3

    @pytest.mark.asyncio
    async def test_declared_length_over_limit_skips_body(self) -> None:
        produced: list[int] = []

        async def body():
            produced.append(1)
            yield b"x" * 4

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body(), headers={"Content-Length": "4096"})

        with pytest.raises(EmptyOrInvalidContentError, match="exceeds 10 bytes"):
            await _fetcher(handler, max_bytes=10).fetch("https://example.com/x")

        assert produced == []


class TestClose:
    @pytest.mark.asyncio
    async def test_injected_client_left_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        fetcher = HttpxUrlFetcher(http_client=client)

        await fetcher.close()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        fetcher = HttpxUrlFetcher()

        await fetcher.close()

        assert fetcher._client.is_closed is True
