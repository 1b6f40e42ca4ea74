"""Tests for stable source id classification."""

import pytest

from dealer_crawl.layers.identity import IdKind, classify_id, is_stable_id


class TestStableIdShapes:
    """Ids safe to use as the downstream merge key."""

    @pytest.mark.parametrize(
        "source_id,kind",
        [
            ("JTMHV05J604123456", IdKind.VIN),
            ("vin-04123456", IdKind.VIN_SHORT),
            ("998877", IdKind.NUMERIC),
            ("U002398-1731084", IdKind.STOCK_NUMBER),
            ("T12345", IdKind.STOCK_NUMBER),
            ("ABCDEF", IdKind.STOCK_NUMBER),
            ("STOCK-ABC", IdKind.STOCK_NUMBER),
        ],
    )
    def test_stable_ids_are_classified(self, source_id, kind):
        assert classify_id(source_id) == kind
        assert is_stable_id(source_id)

    def test_url_hash_id_is_stable(self):
        assert is_stable_id("url-3f2a9c0d1b7e")


class TestUnstableIds:
    """Short tokens, labels with spaces and overlong strings are rejected."""

    @pytest.mark.parametrize(
        "source_id",
        [None, "", "ab", "12", "abc", "-U1234", "U1234-", "2019 Toyota HiLux", "row 12", "a" * 30],
    )
    def test_unstable_ids_are_rejected(self, source_id):
        assert classify_id(source_id) == IdKind.UNSTABLE
        assert not is_stable_id(source_id)

    def test_vin_with_forbidden_letters_is_not_a_vin(self):
        # I, O and Q never appear in a VIN
        assert classify_id("JTMHV05J6O4123456") != IdKind.VIN
