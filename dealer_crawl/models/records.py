"""
Record models for the dealer inventory crawler.
Covers extracted vehicle candidates, quality gate output, health checks,
the per-run audit row and the orchestrator's run summary.
"""
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SellerHints(BaseModel):
    """Provenance flags marking a record as dealer-sourced."""
    seller_badge: str = "dealer"
    seller_name: str
    has_abn: bool = True
    has_dealer_keywords: bool = True


class RawCandidateRecord(BaseModel):
    """
    As-extracted, unvalidated vehicle record.

    Produced by an extraction strategy and consumed by the quality gate.
    Never persisted directly.
    """
    source_listing_id: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    variant_raw: Optional[str] = None
    km: Optional[int] = None
    price: Optional[int] = None
    transmission: Optional[str] = None
    fuel: Optional[str] = None
    listing_url: Optional[str] = None

    # Inherited from the target
    location: Optional[str] = None
    suburb: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None

    seller_hints: SellerHints

    def to_ingest_payload(self) -> dict:
        """Listing shape expected by the ingest collaborator."""
        return self.model_dump(exclude_none=True)


class DropReason(str, Enum):
    """Quality gate rejection reasons, in rule order."""
    MISSING_SOURCE_ID = "missing_source_id"
    UNSTABLE_SOURCE_ID = "unstable_source_id"
    MISSING_LISTING_URL = "missing_listing_url"
    MISSING_PRICE = "missing_price"
    PRICE_OUT_OF_RANGE = "price_out_of_range"
    YEAR_BELOW_MIN = "year_below_min"
    INVALID_MAKE_MODEL = "invalid_make_model"
    MODEL_EQUALS_MAKE = "model_equals_make"


class QualityGateResult(BaseModel):
    """Passed records plus a histogram of rejection reasons."""
    passed: List[RawCandidateRecord] = Field(default_factory=list)
    dropped_count: int = 0
    drop_reasons: Dict[str, int] = Field(default_factory=dict)


class AlertType(str, Enum):
    """Health alert types."""
    NONE = "none"
    ZERO_FOUND = "zero_found"
    DROP_50PCT = "drop_50pct"
    ERRORS = "errors"


class HealthCheckResult(BaseModel):
    """Outcome of comparing a run's yield against the target's recent history."""
    alert: bool = False
    alert_type: AlertType = AlertType.NONE
    baseline_avg: Optional[float] = None
    history_runs: int = 0


class CrawlRunRecord(BaseModel):
    """
    Audit row for one target's crawl on one day.

    Keyed by (run_date, target_slug). A rerun on the same day replaces
    the earlier row (last writer wins).
    """
    run_date: date
    target_slug: str
    vehicles_found: int = 0
    vehicles_ingested: int = 0
    vehicles_dropped: int = 0
    raw_candidates: int = 0
    drop_reasons: Dict[str, int] = Field(default_factory=dict)
    health_alert: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class RunOutcome(str, Enum):
    """How the orchestrator finished with a target."""
    CRAWLED = "crawled"
    SKIPPED = "skipped"
    ERROR = "error"


class TargetRunResult(BaseModel):
    """Per-target result reported in the run summary."""
    slug: str
    name: str
    outcome: RunOutcome
    vehicles_found: int = 0
    vehicles_ingested: int = 0
    vehicles_dropped: int = 0
    drop_reasons: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None
    ingest_error: Optional[str] = None
    skip_reason: Optional[str] = None
    health: Optional[HealthCheckResult] = None
    validation_status: Optional[str] = None
    enabled: Optional[bool] = None
    promoted: bool = False
    auto_disabled: bool = False


class RunSummary(BaseModel):
    """Aggregate result of one orchestrator invocation."""
    mode: str
    run_date: date
    trace_id: Optional[str] = None
    targets_selected: int = 0
    targets_processed: int = 0
    targets_skipped: int = 0
    total_vehicles_found: int = 0
    total_vehicles_ingested: int = 0
    total_vehicles_dropped: int = 0
    targets_with_errors: int = 0
    targets_with_alerts: int = 0
    targets_promoted: int = 0
    targets_auto_disabled: int = 0
    aborted: bool = False
    results: List[TargetRunResult] = Field(default_factory=list)
