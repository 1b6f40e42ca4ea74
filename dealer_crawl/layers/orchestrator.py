"""
Crawl Orchestrator - the top-level crawl loop.

Selects eligible targets, then for each one, in priority order:
fetch -> extract -> quality gate -> health check -> audit write ->
validation state update -> ingest hand-off.

Targets are processed sequentially with a fixed delay between fetches.
One target's failure never aborts the others.
"""
import asyncio
from datetime import date, datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from dealer_crawl.adapters.fetcher import PageFetcher
from dealer_crawl.adapters.ingest_client import IngestCollaborator
from dealer_crawl.adapters.store import CrawlStore
from dealer_crawl.config import config
from dealer_crawl.layers.health_monitor import HealthMonitor
from dealer_crawl.layers.quality_gate import QualityGate
from dealer_crawl.layers.validation import ValidationStateMachine, ValidationTransition
from dealer_crawl.models.records import (
    CrawlRunRecord,
    QualityGateResult,
    RunOutcome,
    RunSummary,
    TargetRunResult,
)
from dealer_crawl.models.target import CrawlTarget, ValidationStatus
from dealer_crawl.strategies import extract_with_report
from dealer_crawl.utils.logger import LayerLogger, set_trace_id


class CrawlMode(str, Enum):
    """Operational entry modes."""
    CRON = "cron"          # enabled + passed targets, bounded batch
    VALIDATE = "validate"  # pending/failed targets under the run-count cap
    MANUAL = "manual"      # explicit slug list


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrawlOrchestrator:
    """
    Runs one crawl invocation over a set of targets.

    The orchestrator tracks which slugs it is currently processing, so two
    concurrent runs sharing one instance never crawl the same target at
    the same time.
    """

    def __init__(
        self,
        store: CrawlStore,
        fetcher: PageFetcher,
        ingest: IngestCollaborator,
        quality_gate: Optional[QualityGate] = None,
        health_monitor: Optional[HealthMonitor] = None,
        state_machine: Optional[ValidationStateMachine] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.fetcher = fetcher
        self.ingest = ingest
        self.quality_gate = quality_gate or QualityGate()
        self.health_monitor = health_monitor or HealthMonitor()
        self.state_machine = state_machine or ValidationStateMachine()
        self.delay_seconds = config.INTER_TARGET_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self._sleep = sleep
        self._clock = clock
        self._active_slugs: Set[str] = set()
        self.logger = LayerLogger("orchestrator")

    # =========================================================================
    # TARGET SELECTION
    # =========================================================================

    def select_targets(
        self,
        mode: CrawlMode,
        slugs: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
    ) -> List[CrawlTarget]:
        """Resolve the candidate target set for a mode, in priority order."""
        if mode == CrawlMode.CRON:
            targets = self.store.list_targets(enabled=True, statuses=[ValidationStatus.PASSED])
            cap = batch_size or config.CRON_BATCH_SIZE
        elif mode == CrawlMode.VALIDATE:
            targets = self.store.list_targets(
                statuses=[ValidationStatus.PENDING, ValidationStatus.FAILED],
                max_validation_runs=config.VALIDATION_MAX_RUNS,
            )
            cap = batch_size or config.VALIDATION_BATCH_SIZE
        elif mode == CrawlMode.MANUAL:
            if not slugs:
                raise ValueError("manual mode requires a list of target slugs")
            targets = self.store.list_targets(slugs=slugs)
            missing = sorted(set(slugs) - {t.slug for t in targets})
            if missing:
                self.logger.log_decision(
                    decision="ignore_unknown_slugs",
                    reason="slugs not found in registry",
                    slugs=missing,
                )
            cap = batch_size
        else:
            raise ValueError(f"Unknown crawl mode: {mode}")

        targets.sort(key=lambda t: t.sort_key())
        return targets[:cap] if cap else targets

    # =========================================================================
    # RUN LOOP
    # =========================================================================

    async def run(
        self,
        mode: CrawlMode,
        slugs: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """
        Execute one invocation.

        Args:
            mode: cron, validate or manual
            slugs: Explicit targets (manual mode)
            batch_size: Override the mode's batch cap
            cancel_event: When set, remaining targets are abandoned; the
                target in progress is allowed to finish

        Returns:
            RunSummary with per-target results
        """
        mode = CrawlMode(mode)
        trace_id = set_trace_id()
        run_date = self._clock().date()
        targets = await asyncio.to_thread(self.select_targets, mode, slugs, batch_size)

        self.logger.log_action(
            "crawl_run",
            "started",
            mode=mode.value,
            run_date=run_date.isoformat(),
            targets=[t.slug for t in targets],
        )

        summary = RunSummary(
            mode=mode.value,
            run_date=run_date,
            trace_id=trace_id,
            targets_selected=len(targets),
        )
        fetched_any = False

        for target in targets:
            if cancel_event is not None and cancel_event.is_set():
                summary.aborted = True
                self.logger.log_decision(
                    decision="abort_run",
                    reason="cancellation requested",
                    target=target.slug,
                )
                break

            if not target.is_supported:
                summary.results.append(self._skipped(target, "unsupported_strategy"))
                self.logger.log_skip(item=target.slug, reason="unsupported_strategy")
                continue

            if target.slug in self._active_slugs:
                summary.results.append(self._skipped(target, "already_running"))
                self.logger.log_skip(item=target.slug, reason="already_running")
                continue
            # Reserved before the first await so a concurrent run sees it
            self._active_slugs.add(target.slug)

            try:
                if fetched_any and self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)
                fetched_any = True
                result = await self.crawl_target(target, run_date)
            except Exception as e:
                self.logger.log_error(
                    f"Unhandled error processing target: {str(e)}",
                    error_type=type(e).__name__,
                    target=target.slug,
                )
                result = TargetRunResult(
                    slug=target.slug,
                    name=target.name,
                    outcome=RunOutcome.ERROR,
                    error=f"{type(e).__name__}: {e}",
                )
            finally:
                self._active_slugs.discard(target.slug)

            summary.results.append(result)

        self._summarize(summary)

        self.logger.log_action(
            "crawl_run",
            "completed",
            mode=mode.value,
            targets_processed=summary.targets_processed,
            targets_skipped=summary.targets_skipped,
            total_found=summary.total_vehicles_found,
            total_ingested=summary.total_vehicles_ingested,
            total_dropped=summary.total_vehicles_dropped,
            targets_with_errors=summary.targets_with_errors,
            targets_with_alerts=summary.targets_with_alerts,
            targets_promoted=summary.targets_promoted,
            aborted=summary.aborted,
        )
        return summary

    async def crawl_target(self, target: CrawlTarget, run_date: date) -> TargetRunResult:
        """Fetch, extract, gate, health-check, record and ingest one target."""
        started_at = self._clock()
        error: Optional[str] = None
        raw_candidates = 0
        gate_result = QualityGateResult()

        self.logger.log_action(
            "crawl_target",
            "started",
            target=target.slug,
            strategy=target.extraction_strategy.value,
            url=target.fetch_url,
        )

        try:
            fetch_result = await self.fetcher.fetch(target.fetch_url)
            if not fetch_result.success:
                error = fetch_result.error or "fetch_failed"
            else:
                report = extract_with_report(fetch_result.html or "", target)
                raw_candidates = len(report.candidates)
                gate_result = self.quality_gate.apply(
                    report.candidates,
                    strict=target.require_stable_id,
                    target=target.slug,
                )
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self.logger.log_error(
                f"Crawl failed: {str(e)}",
                error_type=type(e).__name__,
                target=target.slug,
            )

        found = len(gate_result.passed)

        history = await asyncio.to_thread(self.store.recent_runs, target.slug, run_date)
        health = self.health_monitor.check(
            target,
            current_found=found,
            current_errors=1 if error else 0,
            history=history,
        )

        record = CrawlRunRecord(
            run_date=run_date,
            target_slug=target.slug,
            vehicles_found=found,
            vehicles_ingested=0,
            vehicles_dropped=gate_result.dropped_count,
            raw_candidates=raw_candidates,
            drop_reasons=gate_result.drop_reasons,
            health_alert=health.alert_type.value if health.alert else None,
            error=error,
            started_at=started_at,
            completed_at=self._clock(),
        )
        await asyncio.to_thread(self.store.upsert_run, record)

        now = self._clock()

        def apply_outcome(current: CrawlTarget) -> ValidationTransition:
            return self.state_machine.apply(
                current,
                vehicles_found=found,
                had_error=error is not None,
                fail_reason=error,
                now=now,
            )

        # Applied to the stored target, not the one selected at run start
        transition = await asyncio.to_thread(self.store.apply_transition, target.slug, apply_outcome)

        ingested = 0
        ingest_error: Optional[str] = None
        if gate_result.passed:
            try:
                ingest_result = await self.ingest.ingest(target.slug, gate_result.passed)
                ingested = ingest_result.ingested
            except Exception as e:
                # The audit row already written stays as-is
                ingest_error = str(e)
                self.logger.log_error(
                    f"Ingest failed: {ingest_error}",
                    error_type=type(e).__name__,
                    target=target.slug,
                )
            else:
                await asyncio.to_thread(
                    self.store.upsert_run,
                    record.model_copy(update={"vehicles_ingested": ingested, "completed_at": self._clock()}),
                )

        self.logger.log_action(
            "crawl_target",
            "completed",
            target=target.slug,
            raw_candidates=raw_candidates,
            vehicles_found=found,
            vehicles_dropped=gate_result.dropped_count,
            vehicles_ingested=ingested,
            error=error,
            alert_type=health.alert_type.value,
        )

        return TargetRunResult(
            slug=target.slug,
            name=target.name,
            outcome=RunOutcome.ERROR if error else RunOutcome.CRAWLED,
            vehicles_found=found,
            vehicles_ingested=ingested,
            vehicles_dropped=gate_result.dropped_count,
            drop_reasons=gate_result.drop_reasons,
            error=error,
            ingest_error=ingest_error,
            health=health,
            validation_status=transition.target.validation_status.value,
            enabled=transition.target.enabled,
            promoted=transition.promoted,
            auto_disabled=transition.auto_disabled,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _skipped(self, target: CrawlTarget, reason: str) -> TargetRunResult:
        return TargetRunResult(
            slug=target.slug,
            name=target.name,
            outcome=RunOutcome.SKIPPED,
            skip_reason=reason,
            validation_status=target.validation_status.value,
            enabled=target.enabled,
        )

    def _summarize(self, summary: RunSummary):
        for result in summary.results:
            if result.outcome == RunOutcome.SKIPPED:
                summary.targets_skipped += 1
                continue
            summary.targets_processed += 1
            summary.total_vehicles_found += result.vehicles_found
            summary.total_vehicles_ingested += result.vehicles_ingested
            summary.total_vehicles_dropped += result.vehicles_dropped
            if result.outcome == RunOutcome.ERROR:
                summary.targets_with_errors += 1
            if result.health is not None and result.health.alert:
                summary.targets_with_alerts += 1
            if result.promoted:
                summary.targets_promoted += 1
            if result.auto_disabled:
                summary.targets_auto_disabled += 1
