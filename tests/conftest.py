"""Pytest-wide fixtures for dealer crawl tests."""

import os
from datetime import date, datetime, timezone

import pytest

# Keep tests off any real collaborators configured in a local .env
os.environ.setdefault("LOG_FORMAT", "console")
os.environ["INTER_TARGET_DELAY_SECONDS"] = "0"

from dealer_crawl.adapters.fetcher import FetchResult  # noqa: E402
from dealer_crawl.adapters.ingest_client import IngestError, IngestResult  # noqa: E402
from dealer_crawl.adapters.store import CrawlStore  # noqa: E402
from dealer_crawl.models.records import CrawlRunRecord, RawCandidateRecord, SellerHints  # noqa: E402
from dealer_crawl.models.target import CrawlTarget, ExtractionStrategy, ValidationStatus  # noqa: E402


def make_target(**overrides) -> CrawlTarget:
    data = {
        "slug": "brighton-toyota",
        "name": "Brighton Toyota",
        "fetch_url": "https://www.brightontoyota.com.au/used-cars",
        "suburb": "Brighton",
        "state": "VIC",
        "postcode": "3186",
        "extraction_strategy": ExtractionStrategy.DIGITALDEALER,
    }
    data.update(overrides)
    return CrawlTarget(**data)


def make_candidate(**overrides) -> RawCandidateRecord:
    data = {
        "source_listing_id": "U12345",
        "make": "Toyota",
        "model": "HiLux",
        "year": 2019,
        "price": 24990,
        "km": 45210,
        "listing_url": "https://www.brightontoyota.com.au/used/toyota-hilux-U12345",
        "seller_hints": SellerHints(seller_name="Brighton Toyota"),
    }
    data.update(overrides)
    return RawCandidateRecord(**data)


def make_run(slug: str, run_date: date, found: int, **overrides) -> CrawlRunRecord:
    data = {
        "run_date": run_date,
        "target_slug": slug,
        "vehicles_found": found,
        "started_at": datetime(run_date.year, run_date.month, run_date.day, 2, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return CrawlRunRecord(**data)


def digitaldealer_page(count: int, prefix: str = "U") -> str:
    """Listing page with `count` valid attribute-tagged cards."""
    cards = []
    for i in range(count):
        stock = f"{prefix}{1000 + i}"
        cards.append(
            f'<div class="vehicle-card" data-stocknumber="{stock}" data-price="{20000 + i * 100}" '
            f'data-year="2020" data-make="Toyota" data-model="Corolla" data-odometer="{30000 + i}">'
            f'<a href="/used/toyota-corolla-{stock}">2020 Toyota Corolla</a></div>'
        )
    return "<html><body>" + "".join(cards) + "</body></html>"


class FakeFetcher:
    """Returns canned pages per URL; a mapped exception is raised instead."""

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if isinstance(page, FetchResult):
            return page
        if page is None:
            return FetchResult(success=False, error="http_404", status_code=404)
        return FetchResult(success=True, html=page, status_code=200)


class FakeIngest:
    """Records ingest calls; every record counts as created unless failing."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def ingest(self, target_slug, records):
        self.calls.append((target_slug, list(records)))
        if self.fail:
            raise IngestError("Ingest failed: HTTP 503: unavailable")
        return IngestResult(created=len(records), updated=0)


@pytest.fixture
def store(tmp_path):
    """SQLite-backed store in a per-test temp directory."""
    crawl_store = CrawlStore(f"sqlite:///{tmp_path / 'crawl.db'}")
    crawl_store.create_tables()
    yield crawl_store
    crawl_store.close()


@pytest.fixture
def target_factory():
    return make_target


@pytest.fixture
def candidate_factory():
    return make_candidate


@pytest.fixture
def passed_target():
    return make_target(enabled=True, validation_status=ValidationStatus.PASSED)
