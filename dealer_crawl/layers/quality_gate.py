"""
Quality Gate for extracted vehicle candidates.

Applies an ordered set of hard rejection rules to each candidate. The first
failing rule decides the drop reason, so every rejected candidate counts
towards exactly one reason. The gate is pure: identical input always yields
identical output.
"""
from collections import Counter
from typing import Callable, List, Optional, Sequence, Tuple

from dealer_crawl.config import config
from dealer_crawl.layers.identity import is_stable_id
from dealer_crawl.models.records import DropReason, QualityGateResult, RawCandidateRecord
from dealer_crawl.utils.logger import LayerLogger

# A rule returns the drop reason, or None when the candidate passes it
Rule = Callable[[RawCandidateRecord], Optional[DropReason]]


class QualityGate:
    """
    Ordered rule pipeline between extraction and the ingest collaborator.

    Rules (first failure wins):
    1. non-empty source_listing_id
    2. stable source_listing_id (strict mode only)
    3. non-empty listing_url
    4. price present and > 0
    5. price within [min_price, max_price]
    6. year >= min_year
    7. make and model present and minimally well-formed
    8. make != model (case-insensitive)
    """

    def __init__(
        self,
        min_price: Optional[int] = None,
        max_price: Optional[int] = None,
        min_year: Optional[int] = None,
    ):
        self.min_price = config.MIN_PRICE if min_price is None else min_price
        self.max_price = config.MAX_PRICE if max_price is None else max_price
        self.min_year = config.MIN_YEAR if min_year is None else min_year
        self.logger = LayerLogger("quality_gate")

    def rules(self, strict: bool = False) -> List[Tuple[str, Rule]]:
        """Return the ordered rule list for this run."""
        rules: List[Tuple[str, Rule]] = [("source_id", self._check_source_id)]
        if strict:
            rules.append(("stable_id", self._check_stable_id))
        rules.extend([
            ("listing_url", self._check_listing_url),
            ("price_present", self._check_price_present),
            ("price_range", self._check_price_range),
            ("year", self._check_year),
            ("make_model", self._check_make_model),
            ("make_not_model", self._check_make_not_model),
        ])
        return rules

    def evaluate(self, candidate: RawCandidateRecord, strict: bool = False) -> Optional[DropReason]:
        """Return the first failing rule's reason, or None if the candidate passes."""
        for _, rule in self.rules(strict):
            reason = rule(candidate)
            if reason is not None:
                return reason
        return None

    def apply(
        self,
        candidates: Sequence[RawCandidateRecord],
        strict: bool = False,
        target: Optional[str] = None,
    ) -> QualityGateResult:
        """
        Filter candidates through the rule pipeline.

        Args:
            candidates: Raw candidates in extraction order
            strict: Require stable source ids (per-target flag)
            target: Target slug (for logging)

        Returns:
            QualityGateResult with passed records in input order
        """
        passed: List[RawCandidateRecord] = []
        reasons: Counter = Counter()

        for candidate in candidates:
            reason = self.evaluate(candidate, strict=strict)
            if reason is None:
                passed.append(candidate)
            else:
                reasons[reason.value] += 1

        result = QualityGateResult(
            passed=passed,
            dropped_count=len(candidates) - len(passed),
            drop_reasons=dict(reasons),
        )

        self.logger.log_quality_gate(
            passed=len(result.passed),
            dropped=result.dropped_count,
            drop_reasons=result.drop_reasons,
            target=target,
            strict=strict,
        )

        return result

    # =========================================================================
    # RULES
    # =========================================================================

    def _check_source_id(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if not (candidate.source_listing_id or "").strip():
            return DropReason.MISSING_SOURCE_ID
        return None

    def _check_stable_id(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if not is_stable_id(candidate.source_listing_id):
            return DropReason.UNSTABLE_SOURCE_ID
        return None

    def _check_listing_url(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if not (candidate.listing_url or "").strip():
            return DropReason.MISSING_LISTING_URL
        return None

    def _check_price_present(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if candidate.price is None or candidate.price <= 0:
            return DropReason.MISSING_PRICE
        return None

    def _check_price_range(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if not (self.min_price <= candidate.price <= self.max_price):
            return DropReason.PRICE_OUT_OF_RANGE
        return None

    def _check_year(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if candidate.year is None or candidate.year < self.min_year:
            return DropReason.YEAR_BELOW_MIN
        return None

    def _check_make_model(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        make = (candidate.make or "").strip()
        model = (candidate.model or "").strip()
        if len(make) < 2 or not model:
            return DropReason.INVALID_MAKE_MODEL
        return None

    def _check_make_not_model(self, candidate: RawCandidateRecord) -> Optional[DropReason]:
        if candidate.make.strip().lower() == candidate.model.strip().lower():
            return DropReason.MODEL_EQUALS_MAKE
        return None
