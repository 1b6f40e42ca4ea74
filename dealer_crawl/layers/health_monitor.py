"""
Health Monitor for crawl targets.

Compares the current run's yield against the target's trailing history and
flags unambiguous regressions (errors, zero yield from an anchor) ahead of
statistical drift.
"""
from typing import Optional, Sequence

from dealer_crawl.models.records import AlertType, CrawlRunRecord, HealthCheckResult
from dealer_crawl.models.target import CrawlTarget
from dealer_crawl.utils.logger import LayerLogger

MIN_BASELINE_RUNS = 3
MAX_BASELINE_RUNS = 7
DROP_THRESHOLD = 0.5


class HealthMonitor:
    """
    Health check evaluated once per target per run.

    Rules in priority order, first match wins:
    1. anchor or high priority, and the run had errors -> errors
    2. anchor, and the run found nothing -> zero_found
    3. fewer than 3 historical runs -> no alert
    4. found less than half of the baseline average -> drop_50pct
    5. otherwise no alert
    """

    def __init__(
        self,
        min_baseline_runs: int = MIN_BASELINE_RUNS,
        max_baseline_runs: int = MAX_BASELINE_RUNS,
        drop_threshold: float = DROP_THRESHOLD,
    ):
        self.min_baseline_runs = min_baseline_runs
        self.max_baseline_runs = max_baseline_runs
        self.drop_threshold = drop_threshold
        self.logger = LayerLogger("health_monitor")

    def baseline(self, history: Sequence[CrawlRunRecord]) -> Optional[float]:
        """
        Mean vehicles_found over the most recent runs.

        Returns None when there are too few runs for a meaningful baseline.
        """
        if len(history) < self.min_baseline_runs:
            return None
        recent = sorted(history, key=lambda r: r.run_date, reverse=True)[: self.max_baseline_runs]
        return sum(r.vehicles_found for r in recent) / len(recent)

    def check(
        self,
        target: CrawlTarget,
        current_found: int,
        current_errors: int,
        history: Sequence[CrawlRunRecord],
    ) -> HealthCheckResult:
        """
        Evaluate a target's current run.

        Args:
            target: The crawl target
            current_found: Vehicles that passed the quality gate this run
            current_errors: Error count for this run
            history: Previous runs for this target (the current run excluded)

        Returns:
            HealthCheckResult
        """
        baseline_avg = self.baseline(history)
        alert_type = self._classify(target, current_found, current_errors, baseline_avg)

        result = HealthCheckResult(
            alert=alert_type != AlertType.NONE,
            alert_type=alert_type,
            baseline_avg=baseline_avg,
            history_runs=len(history),
        )

        if result.alert:
            self.logger.log_alert(
                target=target.slug,
                alert_type=alert_type.value,
                current_found=current_found,
                current_errors=current_errors,
                baseline_avg=baseline_avg,
                is_anchor=target.is_anchor,
            )

        return result

    def _classify(
        self,
        target: CrawlTarget,
        current_found: int,
        current_errors: int,
        baseline_avg: Optional[float],
    ) -> AlertType:
        if target.is_high_impact and current_errors > 0:
            return AlertType.ERRORS

        if target.is_anchor and current_found == 0:
            return AlertType.ZERO_FOUND

        # Insufficient history: stay quiet on new targets
        if baseline_avg is None:
            return AlertType.NONE

        if baseline_avg > 0 and current_found < baseline_avg * self.drop_threshold:
            return AlertType.DROP_50PCT

        return AlertType.NONE
