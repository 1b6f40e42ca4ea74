"""
Extraction strategy registry.

Strategies are selected only by the target's configured extraction_strategy;
there is no run-time auto-detection.
"""
from typing import Callable, Dict, List, Optional

from dealer_crawl.models.records import RawCandidateRecord
from dealer_crawl.models.target import CrawlTarget, ExtractionStrategy
from dealer_crawl.strategies import adtorque, digitaldealer, jsonld
from dealer_crawl.strategies.base import ExtractionReport

ReportExtractor = Callable[[str, CrawlTarget], ExtractionReport]

STRATEGIES: Dict[ExtractionStrategy, ReportExtractor] = {
    ExtractionStrategy.DIGITALDEALER: digitaldealer.extract_with_report,
    ExtractionStrategy.ADTORQUE: adtorque.extract_with_report,
    ExtractionStrategy.RAMP: jsonld.extract_with_report,
}


class UnsupportedStrategyError(ValueError):
    """Raised when a target has no extraction strategy."""


def get_strategy(strategy: ExtractionStrategy) -> Optional[ReportExtractor]:
    return STRATEGIES.get(strategy)


def extract_with_report(html: str, target: CrawlTarget) -> ExtractionReport:
    extractor = get_strategy(target.extraction_strategy)
    if extractor is None:
        raise UnsupportedStrategyError(
            f"No extraction strategy for {target.slug} ({target.extraction_strategy.value})"
        )
    return extractor(html, target)


def extract(html: str, target: CrawlTarget) -> List[RawCandidateRecord]:
    return extract_with_report(html, target).candidates


__all__ = [
    "ExtractionReport",
    "STRATEGIES",
    "UnsupportedStrategyError",
    "extract",
    "extract_with_report",
    "get_strategy",
]
