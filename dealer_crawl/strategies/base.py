"""
Shared building blocks for the extraction strategies.

Field extraction is modelled as ordered lists of extractor functions, each
returning (value, matched). `first_match` runs them in order and stops at
the first match, so every fallback chain can be tested on its own.
"""
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from dealer_crawl.config import config
from dealer_crawl.models.records import RawCandidateRecord, SellerHints
from dealer_crawl.models.target import CrawlTarget

T = TypeVar("T")
S = TypeVar("S")

Extractor = Callable[[S], Tuple[Optional[T], bool]]

NO_MATCH: Tuple[None, bool] = (None, False)

MULTI_WORD_MAKES = (
    "Alfa Romeo",
    "Aston Martin",
    "Great Wall",
    "Land Rover",
    "Mercedes Benz",
    "Rolls Royce",
)

# "<year> <make> <model-token><rest>"
TITLE_RE = re.compile(r"^\s*((?:19|20)\d{2})\s+(.+?)\s*$")
MODEL_TOKEN_RE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9\-]*)(.*)$", re.DOTALL)
MAKE_RE = re.compile(r"^[A-Za-z][A-Za-z\s\-]*$")

PRICE_RE = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{2})?")
KM_RE = re.compile(r"(\d{1,3}(?:,\d{3})+|\d+)\s*(?:km|kms|kilometres|kilometers)\b", re.IGNORECASE)

MIN_SANE_PRICE = 500
MAX_SANE_PRICE = 1_000_000
MAX_SANE_KM = 1_500_000
MAX_MODEL_LENGTH = 40


@dataclass
class TitleParts:
    """Year / make / model / variant resolved from a title-like string."""
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.year and self.make and self.model)


@dataclass
class ExtractionReport:
    """Strategy output plus a histogram of discarded blocks."""
    strategy: str
    candidates: List[RawCandidateRecord] = field(default_factory=list)
    blocks_seen: int = 0
    skipped: Counter = field(default_factory=Counter)

    def skip(self, reason: str):
        self.skipped[reason] += 1

    def skipped_dict(self) -> Dict[str, int]:
        return dict(self.skipped)


def first_match(extractors: Sequence[Extractor], source: Any) -> Tuple[Optional[Any], bool]:
    """Run extractors in order, returning the first (value, True) result."""
    for extractor in extractors:
        value, matched = extractor(source)
        if matched:
            return value, True
    return NO_MATCH


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integer from free text by dropping non-digit characters."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    text = str(value).split(".")[0]
    digits = re.sub(r"[^\d]", "", text)
    if not digits:
        return None
    try:
        return int(digits)
    except ValueError:
        return None


def parse_year(value: Any) -> Optional[int]:
    year = parse_int(value)
    if year is None or not (1900 <= year <= 2100):
        return None
    return year


def parse_price(text: Optional[str]) -> Optional[int]:
    """Parse a dollar price such as "$24,990" or "24990"."""
    if not text:
        return None
    match = PRICE_RE.search(text)
    if match:
        return parse_int(match.group(1))
    return parse_int(text)


def parse_km(text: Optional[str]) -> Optional[int]:
    """Parse an odometer reading such as "45,210 km"."""
    if not text:
        return None
    match = KM_RE.search(text)
    if match:
        return parse_int(match.group(1))
    return None


def is_sane_price(price: Optional[int]) -> bool:
    return price is not None and MIN_SANE_PRICE <= price <= MAX_SANE_PRICE


def is_sane_km(km: Optional[int]) -> bool:
    return km is not None and 0 <= km <= MAX_SANE_KM


def max_plausible_year() -> int:
    return datetime.now().year + 1


def parse_title(text: Optional[str]) -> TitleParts:
    """
    Split "<year> <make> <model-token><rest>" into its parts.

    Multi-word makes ("Land Rover", "Alfa Romeo") are matched before
    falling back to a single-token make.
    """
    text = clean_text(text)
    if not text:
        return TitleParts()

    match = TITLE_RE.match(text)
    if not match:
        return TitleParts()

    year = int(match.group(1))
    rest = match.group(2)

    make = None
    for candidate in MULTI_WORD_MAKES:
        pattern = re.compile(r"^" + re.escape(candidate).replace(r"\ ", r"[\s\-]") + r"\b", re.IGNORECASE)
        found = pattern.match(rest)
        if found:
            make = found.group(0)
            rest = rest[found.end():].strip()
            break

    if make is None:
        parts = rest.split(None, 1)
        if len(parts) < 2:
            return TitleParts(year=year, make=parts[0] if parts else None)
        make, rest = parts[0], parts[1]

    model_match = MODEL_TOKEN_RE.match(rest)
    if not model_match:
        return TitleParts(year=year, make=make)

    model = model_match.group(1)
    variant = clean_text(model_match.group(2))
    return TitleParts(year=year, make=make, model=model, variant=variant)


def sanity_check(parts: TitleParts, min_year: Optional[int] = None) -> Optional[str]:
    """
    Check year/make/model before a candidate is accepted.

    Returns a rejection reason, or None when all checks pass.
    """
    min_year = config.MIN_PLAUSIBLE_YEAR if min_year is None else min_year
    if parts.year is None or not (min_year <= parts.year <= max_plausible_year()):
        return "year_out_of_range"
    if not parts.make or not MAKE_RE.match(parts.make):
        return "make_not_alphabetic"
    if not parts.model or not (1 <= len(parts.model) <= MAX_MODEL_LENGTH):
        return "model_length"
    if parts.make.strip().lower() == parts.model.strip().lower():
        return "make_equals_model"
    return None


def detect_transmission(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if re.search(r"\b(auto|automatic|cvt|dct)\b", text, re.IGNORECASE):
        return "Automatic"
    if re.search(r"\bmanual\b", text, re.IGNORECASE):
        return "Manual"
    return None


def detect_fuel(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if re.search(r"\bdiesel\b", text, re.IGNORECASE):
        return "Diesel"
    if re.search(r"\bhybrid\b", text, re.IGNORECASE):
        return "Hybrid"
    if re.search(r"\b(petrol|unleaded|ulp)\b", text, re.IGNORECASE):
        return "Petrol"
    if re.search(r"\b(electric|ev)\b", text, re.IGNORECASE):
        return "Electric"
    return None


def resolve_url(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve a link against the page URL, ignoring anchors and script links."""
    href = (href or "").strip()
    if not href or href.startswith("#") or href.lower().startswith(("javascript:", "mailto:", "tel:")):
        return None
    return urljoin(base_url, href)


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def attr(tag: Tag, name: str) -> Optional[str]:
    """Return a stripped attribute value, or None when absent/empty."""
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return clean_text(value)


def seller_hints(target: CrawlTarget) -> SellerHints:
    return SellerHints(seller_name=target.name)


def build_candidate(target: CrawlTarget, **fields) -> RawCandidateRecord:
    """Create a candidate carrying the target's default location attributes."""
    return RawCandidateRecord(
        location=target.location,
        suburb=target.suburb,
        state=target.state,
        postcode=target.postcode,
        seller_hints=seller_hints(target),
        **fields,
    )
