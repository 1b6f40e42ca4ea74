"""
Crawl target model for the dealer inventory crawler.
A target (a "trap" or "rooftop") is one dealer website configured to be crawled.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ExtractionStrategy(str, Enum):
    """Extraction strategy, one per publishing-platform family."""
    DIGITALDEALER = "digitaldealer"  # attribute-tagged HTML blocks
    ADTORQUE = "adtorque"            # dense multi-pattern blocks
    RAMP = "ramp"                    # embedded JSON-LD
    UNSUPPORTED = "unsupported"


class ValidationStatus(str, Enum):
    """Validation lifecycle status."""
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class Priority(str, Enum):
    """Crawl priority."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_RANK = {
    Priority.HIGH: 0,
    Priority.NORMAL: 1,
    Priority.LOW: 2,
}


class CrawlTarget(BaseModel):
    """
    One dealer website configured to be crawled.

    Registration is an operator concern. After each run the validation
    state machine is the only component that changes the lifecycle fields.
    Disabling is a flag flip; targets are never deleted here.
    """
    slug: str
    name: str
    fetch_url: str

    # Default location attributes copied onto every extracted record
    suburb: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    region: Optional[str] = None

    extraction_strategy: ExtractionStrategy = ExtractionStrategy.UNSUPPORTED
    enabled: bool = False
    is_anchor: bool = False
    priority: Priority = Priority.NORMAL

    # Strict mode: source ids must be VIN / stock-number shaped
    require_stable_id: bool = False

    # Validation lifecycle
    validation_status: ValidationStatus = ValidationStatus.PENDING
    validation_run_count: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    consecutive_successes: int = Field(default=0, ge=0)

    # Run bookkeeping
    last_vehicle_count: Optional[int] = None
    last_crawl_at: Optional[datetime] = None
    last_fail_reason: Optional[str] = None
    disabled_reason: Optional[str] = None
    disabled_at: Optional[datetime] = None

    # Set by an operator; auto-enable never overrides it
    operator_disabled: bool = False

    @property
    def is_supported(self) -> bool:
        return self.extraction_strategy != ExtractionStrategy.UNSUPPORTED

    @property
    def is_high_impact(self) -> bool:
        """Anchor or high-priority targets get stricter health checks."""
        return self.is_anchor or self.priority == Priority.HIGH

    @property
    def location(self) -> Optional[str]:
        parts = [p for p in (self.suburb, self.state) if p]
        return ", ".join(parts) if parts else None

    def sort_key(self) -> tuple:
        """Anchors first, then priority high to low, then slug."""
        return (not self.is_anchor, PRIORITY_RANK[self.priority], self.slug)
