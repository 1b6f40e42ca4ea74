"""
Platform Preflight Layer.

Fetches a target's inventory page once and counts platform markers to check
that the configured extraction strategy plausibly fits the site. The result
is advisory only: preflight never writes to the target registry and is never
consulted when routing a crawl.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern

from dealer_crawl.adapters.fetcher import PageFetcher
from dealer_crawl.models.target import CrawlTarget, ExtractionStrategy
from dealer_crawl.utils.logger import LayerLogger

MIN_MARKERS = 2

PLATFORM_MARKERS: Dict[str, List[Pattern]] = {
    "digitaldealer": [
        re.compile(r'class="[^"]*vehicle[^"]*card', re.I),
        re.compile(r'class="[^"]*stock[^"]*listing', re.I),
        re.compile(r"data-vehicle-id", re.I),
        re.compile(r'"@type"\s*:\s*"Vehicle"', re.I),
        re.compile(r'class="[^"]*inventory[^"]*item', re.I),
        re.compile(r"vehicleCard|VehicleCard"),
    ],
    "adtorque": [
        re.compile(r'class="[^"]*stock-item', re.I),
        re.compile(r'class="[^"]*vehicle-tile', re.I),
        re.compile(r"data-stockno", re.I),
        re.compile(r"adtorqueedge\.com", re.I),
        re.compile(r'class="[^"]*car-listing', re.I),
        re.compile(r'"inventory":\s*\[', re.I),
    ],
    "ramp": [
        re.compile(r"radius-cdn\.ramp\.indiqator\.com\.au", re.I),
        re.compile(r"indiqator", re.I),
        re.compile(r'"@type"\s*:\s*"Vehicle"', re.I),
        re.compile(r'"@type"\s*:\s*"Car"', re.I),
        re.compile(r'class="[^"]*vehicle[^"]*"', re.I),
        re.compile(r'class="[^"]*stock[^"]*"', re.I),
        re.compile(r'class="[^"]*inventory[^"]*"', re.I),
        re.compile(r'class="[^"]*listing[^"]*"', re.I),
    ],
    "generic": [
        re.compile(r'"@type"\s*:\s*"Vehicle"', re.I),
        re.compile(r'class="[^"]*vehicle', re.I),
        re.compile(r'class="[^"]*stock', re.I),
        re.compile(r'class="[^"]*inventory', re.I),
    ],
}

# Any one of these is enough for a ramp target
RAMP_STRONG_MARKERS: List[Pattern] = [
    re.compile(r"radius-cdn\.ramp\.indiqator\.com\.au", re.I),
    re.compile(r"indiqator", re.I),
    re.compile(r'"@type"\s*:\s*"(Vehicle|Car)"', re.I),
]


class PreflightStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass
class PreflightResult:
    """Advisory outcome of a platform preflight."""
    slug: str
    status: PreflightStatus
    reason: str
    markers: List[str] = field(default_factory=list)
    suggested_strategy: Optional[str] = None
    suggested_status: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "slug": self.slug,
            "status": self.status.value,
            "reason": self.reason,
            "markers": self.markers,
            "suggested_strategy": self.suggested_strategy,
            "suggested_status": self.suggested_status,
        }


def categorize_failure(reason: str) -> str:
    """Map a preflight failure reason to a suggested disabled status."""
    if reason.startswith("http_404") or reason.startswith("http_5"):
        return "disabled_invalid_url"
    if reason.startswith("http_403") or "timeout" in reason:
        return "disabled_blocked"
    if "insufficient_markers" in reason or "no_html" in reason:
        return "disabled_unsupported_platform"
    return "disabled_preflight_fail"


def find_markers(html: str, platform: str) -> List[str]:
    patterns = PLATFORM_MARKERS.get(platform, PLATFORM_MARKERS["generic"])
    return [p.pattern for p in patterns if p.search(html)]


def suggest_strategy(html: str) -> Optional[str]:
    """Platform with the most markers (at least MIN_MARKERS), if any."""
    best, best_count = None, 0
    for platform in ("digitaldealer", "adtorque", "ramp"):
        count = len(find_markers(html, platform))
        if count > best_count:
            best, best_count = platform, count
    return best if best_count >= MIN_MARKERS else None


class PreflightLayer:
    """Checks whether a target's page carries its platform's markers."""

    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher
        self.logger = LayerLogger("preflight")

    async def check(self, target: CrawlTarget) -> PreflightResult:
        self.logger.log_action("preflight", "started", target=target.slug, url=target.fetch_url)

        fetch_result = await self.fetcher.fetch(target.fetch_url)
        if not fetch_result.success:
            if fetch_result.status_code:
                reason = f"http_{fetch_result.status_code}"
            else:
                reason = (fetch_result.error or "fetch_failed").split(":")[0]
            return self._fail(target, reason)

        html = fetch_result.html or ""
        if not html.strip():
            return self._fail(target, "no_html")

        suggested = suggest_strategy(html)
        platform = target.extraction_strategy.value
        if target.extraction_strategy == ExtractionStrategy.UNSUPPORTED:
            platform = "generic"

        if target.extraction_strategy == ExtractionStrategy.RAMP:
            strong = [p.pattern for p in RAMP_STRONG_MARKERS if p.search(html)]
            if strong:
                return self._pass(target, f"ramp_{len(strong)}_strong", strong, suggested)

        markers = find_markers(html, platform)
        if len(markers) >= MIN_MARKERS:
            return self._pass(target, f"{len(markers)}_markers", markers, suggested)

        result = self._fail(target, f"insufficient_markers_{len(markers)}", markers)
        result.suggested_strategy = suggested
        return result

    def _pass(self, target: CrawlTarget, reason: str, markers: List[str], suggested: Optional[str]) -> PreflightResult:
        self.logger.log_decision(
            decision="preflight_pass",
            reason=reason,
            target=target.slug,
            markers=len(markers),
        )
        return PreflightResult(
            slug=target.slug,
            status=PreflightStatus.PASS,
            reason=reason,
            markers=markers,
            suggested_strategy=suggested,
        )

    def _fail(self, target: CrawlTarget, reason: str, markers: Optional[List[str]] = None) -> PreflightResult:
        suggested_status = categorize_failure(reason)
        self.logger.log_decision(
            decision="preflight_fail",
            reason=reason,
            target=target.slug,
            suggested_status=suggested_status,
        )
        return PreflightResult(
            slug=target.slug,
            status=PreflightStatus.FAIL,
            reason=reason,
            markers=markers or [],
            suggested_status=suggested_status,
        )
