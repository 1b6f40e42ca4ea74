"""Tests for the crawl orchestrator run loop."""

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from dealer_crawl.adapters.fetcher import FetchResult
from dealer_crawl.layers.orchestrator import CrawlMode, CrawlOrchestrator
from dealer_crawl.layers.quality_gate import QualityGate
from dealer_crawl.models.records import AlertType, RunOutcome
from dealer_crawl.models.target import ExtractionStrategy, Priority, ValidationStatus
from tests.conftest import FakeFetcher, FakeIngest, digitaldealer_page, make_run, make_target

RUN_DAY = datetime(2026, 3, 10, 2, 0, tzinfo=timezone.utc)


def url(slug):
    return f"https://{slug}.example.com.au/used-cars"


def register(store, slug, **overrides):
    target = make_target(slug=slug, name=slug.title(), fetch_url=url(slug), **overrides)
    store.register_target(target)
    return target


class Clock:
    def __init__(self, now=RUN_DAY):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days=1):
        self.now += timedelta(days=days)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def build(store, clock, sleeps):
    def _build(pages, ingest=None, delay_seconds=2.0):
        async def fake_sleep(seconds):
            sleeps.append(seconds)

        fetcher = FakeFetcher(pages)
        orchestrator = CrawlOrchestrator(
            store=store,
            fetcher=fetcher,
            ingest=ingest or FakeIngest(),
            quality_gate=QualityGate(min_price=3000, max_price=150000, min_year=2010),
            delay_seconds=delay_seconds,
            sleep=fake_sleep,
            clock=clock,
        )
        return orchestrator, fetcher

    return _build


class TestTargetIsolation:
    async def test_one_target_error_does_not_abort_the_run(self, store, build):
        register(store, "alpha")
        register(store, "bravo")
        orchestrator, _ = build({url("alpha"): RuntimeError("boom"), url("bravo"): digitaldealer_page(12)})

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha", "bravo"])

        results = {r.slug: r for r in summary.results}
        assert results["alpha"].outcome == RunOutcome.ERROR
        assert "boom" in results["alpha"].error
        assert results["bravo"].outcome == RunOutcome.CRAWLED
        assert results["bravo"].vehicles_found == 12
        assert summary.targets_with_errors == 1
        assert summary.total_vehicles_found == 12

    async def test_failed_fetch_is_recorded(self, store, build):
        register(store, "alpha")
        orchestrator, _ = build({url("alpha"): FetchResult(success=False, error="http_403", status_code=403)})

        await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        run = store.get_run("alpha", RUN_DAY.date())
        assert run.error == "http_403"
        assert run.vehicles_found == 0
        target = store.get_target("alpha")
        assert target.validation_status == ValidationStatus.FAILED
        assert target.last_fail_reason == "http_403"

    async def test_unsupported_target_is_skipped(self, store, build):
        register(store, "alpha", extraction_strategy=ExtractionStrategy.UNSUPPORTED)
        orchestrator, fetcher = build({})

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        assert summary.results[0].outcome == RunOutcome.SKIPPED
        assert summary.results[0].skip_reason == "unsupported_strategy"
        assert summary.targets_skipped == 1
        assert fetcher.calls == []
        assert store.get_run("alpha", RUN_DAY.date()) is None
        assert store.get_target("alpha").validation_run_count == 0


class TestIngest:
    async def test_passed_records_are_ingested(self, store, build):
        register(store, "alpha")
        ingest = FakeIngest()
        orchestrator, _ = build({url("alpha"): digitaldealer_page(5)}, ingest=ingest)

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        assert ingest.calls[0][0] == "alpha"
        assert len(ingest.calls[0][1]) == 5
        assert summary.total_vehicles_ingested == 5
        assert store.get_run("alpha", RUN_DAY.date()).vehicles_ingested == 5

    async def test_ingest_failure_leaves_zero_ingested(self, store, build):
        register(store, "alpha")
        orchestrator, _ = build({url("alpha"): digitaldealer_page(5)}, ingest=FakeIngest(fail=True))

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        result = summary.results[0]
        assert result.outcome == RunOutcome.CRAWLED
        assert result.vehicles_ingested == 0
        assert "503" in result.ingest_error
        run = store.get_run("alpha", RUN_DAY.date())
        assert run.vehicles_found == 5
        assert run.vehicles_ingested == 0

    async def test_nothing_passed_means_no_ingest_call(self, store, build):
        register(store, "alpha")
        ingest = FakeIngest()
        orchestrator, _ = build({url("alpha"): "<html><body>No stock</body></html>"}, ingest=ingest)

        await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        assert ingest.calls == []


class TestLifecycle:
    async def test_two_validation_runs_promote_to_cron(self, store, build, clock):
        register(store, "alpha")
        orchestrator, _ = build({url("alpha"): digitaldealer_page(8)})

        first = await orchestrator.run(CrawlMode.VALIDATE)
        assert first.results[0].validation_status == "pending"

        clock.advance()
        second = await orchestrator.run(CrawlMode.VALIDATE)
        assert second.results[0].promoted
        assert second.targets_promoted == 1

        target = store.get_target("alpha")
        assert target.enabled
        assert target.validation_status == ValidationStatus.PASSED

        clock.advance()
        cron = await orchestrator.run(CrawlMode.CRON)
        assert [r.slug for r in cron.results] == ["alpha"]

    async def test_health_alert_uses_prior_days_only(self, store, build):
        register(store, "alpha", enabled=True, validation_status=ValidationStatus.PASSED)
        for days_back in (1, 2, 3):
            store.upsert_run(make_run("alpha", RUN_DAY.date() - timedelta(days=days_back), 100))
        orchestrator, _ = build({url("alpha"): digitaldealer_page(10)})

        summary = await orchestrator.run(CrawlMode.CRON)

        health = summary.results[0].health
        assert health.alert_type == AlertType.DROP_50PCT
        assert health.baseline_avg == pytest.approx(100)
        assert summary.targets_with_alerts == 1
        assert store.get_run("alpha", RUN_DAY.date()).health_alert == "drop_50pct"

    async def test_same_day_rerun_replaces_audit_row(self, store, build):
        register(store, "alpha")
        orchestrator, fetcher = build({url("alpha"): digitaldealer_page(3)})
        await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        fetcher.pages[url("alpha")] = digitaldealer_page(6)
        await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        runs = store.list_runs("alpha", RUN_DAY.date(), RUN_DAY.date())
        assert len(runs) == 1
        assert runs[0].vehicles_found == 6


class TestSelection:
    async def test_anchors_and_priority_go_first(self, store, build):
        register(store, "charlie", enabled=True, validation_status=ValidationStatus.PASSED)
        register(store, "bravo", enabled=True, validation_status=ValidationStatus.PASSED, priority=Priority.HIGH)
        register(store, "zulu", enabled=True, validation_status=ValidationStatus.PASSED, is_anchor=True)
        register(store, "alpha", enabled=False, validation_status=ValidationStatus.PASSED)
        orchestrator, fetcher = build({})

        await orchestrator.run(CrawlMode.CRON)

        assert fetcher.calls == [url("zulu"), url("bravo"), url("charlie")]

    async def test_batch_size_caps_the_run(self, store, build):
        for slug in ("a1", "a2", "a3"):
            register(store, slug)
        orchestrator, _ = build({})

        summary = await orchestrator.run(CrawlMode.VALIDATE, batch_size=2)

        assert summary.targets_selected == 2

    async def test_validate_mode_respects_run_cap(self, store, build):
        register(store, "spent", validation_status=ValidationStatus.FAILED, validation_run_count=10)
        orchestrator, _ = build({})

        summary = await orchestrator.run(CrawlMode.VALIDATE)

        assert summary.results == []

    async def test_manual_mode_requires_slugs(self, build):
        orchestrator, _ = build({})
        with pytest.raises(ValueError):
            await orchestrator.run(CrawlMode.MANUAL)

    async def test_unknown_mode(self, build):
        orchestrator, _ = build({})
        with pytest.raises(ValueError):
            await orchestrator.run("weekly")


class TestPacing:
    async def test_delay_between_fetched_targets(self, store, build, sleeps):
        for slug in ("a1", "a2", "a3"):
            register(store, slug)
        register(store, "a0", extraction_strategy=ExtractionStrategy.UNSUPPORTED)
        orchestrator, _ = build({}, delay_seconds=2.0)

        await orchestrator.run(CrawlMode.MANUAL, slugs=["a0", "a1", "a2", "a3"])

        assert sleeps == [2.0, 2.0]

    async def test_cancellation_abandons_remaining_targets(self, store, build):
        register(store, "alpha")
        orchestrator, fetcher = build({})
        cancel = asyncio.Event()
        cancel.set()

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"], cancel_event=cancel)

        assert summary.aborted
        assert summary.results == []
        assert fetcher.calls == []


class TrackingFetcher(FakeFetcher):
    """Yields inside every fetch and records how many fetches of a URL overlap."""

    def __init__(self, pages=None):
        super().__init__(pages)
        self.in_flight = Counter()
        self.max_in_flight = Counter()

    async def fetch(self, url):
        self.in_flight[url] += 1
        self.max_in_flight[url] = max(self.max_in_flight[url], self.in_flight[url])
        try:
            await asyncio.sleep(0.01)
            return await super().fetch(url)
        finally:
            self.in_flight[url] -= 1


class BlockingFetcher(FakeFetcher):
    """Holds every fetch open until `release` is set."""

    def __init__(self, pages=None):
        super().__init__(pages)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, url):
        self.started.set()
        await self.release.wait()
        return await super().fetch(url)


class TestConcurrentRuns:
    async def test_overlapping_runs_never_crawl_a_target_twice_at_once(self, store, clock):
        for slug in ("a", "b", "x"):
            register(store, slug)
        fetcher = TrackingFetcher({url(slug): digitaldealer_page(4) for slug in ("a", "b", "x")})
        orchestrator = CrawlOrchestrator(
            store=store,
            fetcher=fetcher,
            ingest=FakeIngest(),
            quality_gate=QualityGate(min_price=3000, max_price=150000, min_year=2010),
            delay_seconds=0.01,
            clock=clock,
        )

        summaries = await asyncio.gather(
            orchestrator.run(CrawlMode.MANUAL, slugs=["a", "x"]),
            orchestrator.run(CrawlMode.MANUAL, slugs=["b", "x"]),
        )

        assert fetcher.max_in_flight[url("x")] == 1
        x_results = [r for s in summaries for r in s.results if r.slug == "x"]
        crawled = [r for r in x_results if r.outcome == RunOutcome.CRAWLED]
        skipped = [r for r in x_results if r.outcome == RunOutcome.SKIPPED]
        assert len(crawled) + len(skipped) == 2
        assert all(r.skip_reason == "already_running" for r in skipped)
        x = store.get_target("x")
        assert x.validation_run_count == len(crawled)
        assert x.consecutive_successes == len(crawled)

    async def test_target_in_progress_is_skipped_by_second_run(self, store, build):
        register(store, "alpha")
        orchestrator, _ = build({})
        fetcher = BlockingFetcher({url("alpha"): digitaldealer_page(3)})
        orchestrator.fetcher = fetcher

        first = asyncio.ensure_future(orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"]))
        await fetcher.started.wait()
        second = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])
        fetcher.release.set()
        first = await first

        assert second.results[0].outcome == RunOutcome.SKIPPED
        assert second.results[0].skip_reason == "already_running"
        assert first.results[0].outcome == RunOutcome.CRAWLED
        assert len(fetcher.calls) == 1
        assert store.get_target("alpha").validation_run_count == 1


class TestRegistryChangesDuringRun:
    async def test_operator_disable_during_fetch_is_kept(self, store, build):
        register(store, "alpha", enabled=True, validation_status=ValidationStatus.PASSED, consecutive_successes=2)
        orchestrator, _ = build({})

        class DisablingFetcher(FakeFetcher):
            async def fetch(self, fetch_url):
                stored = store.get_target("alpha")
                store.register_target(stored.model_copy(update={"enabled": False}))
                return await super().fetch(fetch_url)

        orchestrator.fetcher = DisablingFetcher({url("alpha"): digitaldealer_page(6)})

        summary = await orchestrator.run(CrawlMode.CRON)

        assert summary.results[0].outcome == RunOutcome.CRAWLED
        assert not summary.results[0].enabled
        target = store.get_target("alpha")
        assert not target.enabled
        assert target.consecutive_successes == 3
        assert target.validation_run_count == 1

    async def test_counters_build_on_stored_values(self, store, build):
        register(store, "alpha", consecutive_successes=1, validation_run_count=1)
        orchestrator, _ = build({})

        class BumpingFetcher(FakeFetcher):
            async def fetch(self, fetch_url):
                stored = store.get_target("alpha")
                store.save_target_state(stored.model_copy(update={"validation_run_count": 5}))
                return await super().fetch(fetch_url)

        orchestrator.fetcher = BumpingFetcher({url("alpha"): digitaldealer_page(6)})

        summary = await orchestrator.run(CrawlMode.MANUAL, slugs=["alpha"])

        assert summary.results[0].promoted
        assert store.get_target("alpha").validation_run_count == 6
