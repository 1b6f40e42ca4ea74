"""Adapters package initialization."""
from dealer_crawl.adapters.fetcher import DirectFetcher, FetchResult, FirecrawlFetcher, build_fetcher
from dealer_crawl.adapters.ingest_client import HttpIngestClient, IngestError, IngestResult
from dealer_crawl.adapters.store import CrawlStore

__all__ = [
    "CrawlStore",
    "DirectFetcher",
    "FetchResult",
    "FirecrawlFetcher",
    "HttpIngestClient",
    "IngestError",
    "IngestResult",
    "build_fetcher",
]
