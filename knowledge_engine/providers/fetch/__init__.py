"""URL fetcher adapters."""

from knowledge_engine.providers.fetch.httpx_url_fetcher import HttpxUrlFetcher

__all__ = ["HttpxUrlFetcher"]
