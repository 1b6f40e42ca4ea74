"""Tests for the quality gate rule pipeline."""

import pytest

from dealer_crawl.layers.quality_gate import QualityGate
from dealer_crawl.models.records import DropReason
from tests.conftest import make_candidate


@pytest.fixture
def gate():
    return QualityGate(min_price=3000, max_price=150000, min_year=2010)


def mixed_batch():
    """20 clean records, 5 without price, 3 below the minimum price, 2 with make == model."""
    batch = [make_candidate(source_listing_id=f"U{1000 + i}") for i in range(20)]
    batch += [make_candidate(source_listing_id=f"P{2000 + i}", price=None) for i in range(5)]
    batch += [make_candidate(source_listing_id=f"R{3000 + i}", price=1500) for i in range(3)]
    batch += [make_candidate(source_listing_id=f"M{4000 + i}", make="Toyota", model="toyota") for i in range(2)]
    return batch


class TestMixedBatch:
    """Thirty candidates with known defects."""

    def test_passed_and_drop_histogram(self, gate):
        result = gate.apply(mixed_batch())

        assert len(result.passed) == 20
        assert result.dropped_count == 10
        assert result.drop_reasons == {
            "missing_price": 5,
            "price_out_of_range": 3,
            "model_equals_make": 2,
        }

    def test_counts_add_up(self, gate):
        batch = mixed_batch()
        result = gate.apply(batch)

        assert len(result.passed) + result.dropped_count == len(batch)
        assert sum(result.drop_reasons.values()) == result.dropped_count

    def test_passed_records_keep_input_order(self, gate):
        result = gate.apply(mixed_batch())
        assert [r.source_listing_id for r in result.passed] == [f"U{1000 + i}" for i in range(20)]

    def test_gate_is_deterministic(self, gate):
        first = gate.apply(mixed_batch())
        second = gate.apply(mixed_batch())
        assert first.model_dump() == second.model_dump()

    def test_no_passed_record_has_make_equal_to_model(self, gate):
        result = gate.apply(mixed_batch())
        assert all(r.make.lower() != r.model.lower() for r in result.passed)


class TestRuleOrder:
    """The first failing rule decides the reason."""

    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"source_listing_id": None}, DropReason.MISSING_SOURCE_ID),
            ({"source_listing_id": "  "}, DropReason.MISSING_SOURCE_ID),
            ({"listing_url": None}, DropReason.MISSING_LISTING_URL),
            ({"price": None}, DropReason.MISSING_PRICE),
            ({"price": 0}, DropReason.MISSING_PRICE),
            ({"price": 2999}, DropReason.PRICE_OUT_OF_RANGE),
            ({"price": 150001}, DropReason.PRICE_OUT_OF_RANGE),
            ({"year": 2009}, DropReason.YEAR_BELOW_MIN),
            ({"year": None}, DropReason.YEAR_BELOW_MIN),
            ({"make": "T"}, DropReason.INVALID_MAKE_MODEL),
            ({"model": None}, DropReason.INVALID_MAKE_MODEL),
            ({"model": "TOYOTA"}, DropReason.MODEL_EQUALS_MAKE),
        ],
    )
    def test_single_defect(self, gate, overrides, reason):
        assert gate.evaluate(make_candidate(**overrides)) == reason

    def test_missing_id_wins_over_missing_price(self, gate):
        candidate = make_candidate(source_listing_id=None, price=None)
        assert gate.evaluate(candidate) == DropReason.MISSING_SOURCE_ID

    def test_price_bounds_are_inclusive(self, gate):
        assert gate.evaluate(make_candidate(price=3000)) is None
        assert gate.evaluate(make_candidate(price=150000)) is None
        assert gate.evaluate(make_candidate(year=2010)) is None


class TestStrictMode:
    """Stable-id check applies only when the target requires it."""

    def test_unstable_id_passes_in_lenient_mode(self, gate):
        assert gate.evaluate(make_candidate(source_listing_id="row 1"), strict=False) is None

    def test_unstable_id_dropped_in_strict_mode(self, gate):
        result = gate.apply([make_candidate(source_listing_id="ab")], strict=True)
        assert result.passed == []
        assert result.drop_reasons == {"unstable_source_id": 1}

    def test_stable_id_passes_in_strict_mode(self, gate):
        assert gate.evaluate(make_candidate(source_listing_id="U002398-1731084"), strict=True) is None

    def test_empty_input(self, gate):
        result = gate.apply([])
        assert result.passed == []
        assert result.dropped_count == 0
        assert result.drop_reasons == {}
