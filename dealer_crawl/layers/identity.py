"""
Stable-identity classification for source listing ids.

A stable id is safe to use as the downstream dedup/merge key. Row indexes,
titles and other non-unique labels would silently merge unrelated vehicles,
so the quality gate treats this as a hard check in strict mode.
"""
import re
from enum import Enum
from typing import Optional


class IdKind(str, Enum):
    VIN = "vin"
    VIN_SHORT = "vin_short"
    STOCK_NUMBER = "stock_number"
    NUMERIC = "numeric"
    UNSTABLE = "unstable"


# VINs never contain I, O or Q
VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)
VIN_SHORT_RE = re.compile(r"^vin-[A-HJ-NPR-Z0-9]{6,17}$", re.IGNORECASE)
NUMERIC_RE = re.compile(r"^\d{4,10}$")
# 4-24 chars, hyphens only on the inside
STOCK_NUMBER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{2,22})[A-Za-z0-9]$")


def classify_id(source_id: Optional[str]) -> IdKind:
    """Classify a source listing id by shape."""
    if not source_id:
        return IdKind.UNSTABLE

    value = source_id.strip()
    if VIN_RE.match(value):
        return IdKind.VIN
    if VIN_SHORT_RE.match(value):
        return IdKind.VIN_SHORT
    if NUMERIC_RE.match(value):
        return IdKind.NUMERIC
    if STOCK_NUMBER_RE.match(value):
        return IdKind.STOCK_NUMBER
    return IdKind.UNSTABLE


def is_stable_id(source_id: Optional[str]) -> bool:
    """Return True if the id is VIN, stock-number or numeric shaped."""
    return classify_id(source_id) != IdKind.UNSTABLE
