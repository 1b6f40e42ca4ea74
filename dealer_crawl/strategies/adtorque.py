"""
Dense multi-pattern extraction strategy (AdTorque platform).

Stock tiles are located by the `data-stockno` marker attribute. Every field
is resolved through an ordered list of extractors; for year/make/model the
first fallback that yields all three required fields wins:

1. scoped sub-elements inside a known title container
2. the anchor's `title` attribute ("2019 Toyota HiLux SR5 ...")
3. an image `alt` attribute with the same pattern

A tile failing any sanity check is rejected with a specific reason rather
than emitted with partial data.
"""
from typing import List, Optional, Tuple

from bs4 import Tag

from dealer_crawl.models.records import RawCandidateRecord
from dealer_crawl.models.target import CrawlTarget
from dealer_crawl.strategies.base import (
    NO_MATCH,
    ExtractionReport,
    TitleParts,
    attr,
    build_candidate,
    clean_text,
    detect_fuel,
    detect_transmission,
    first_match,
    is_sane_km,
    is_sane_price,
    make_soup,
    parse_int,
    parse_km,
    parse_price,
    parse_title,
    parse_year,
    resolve_url,
    sanity_check,
)
from dealer_crawl.utils.logger import LayerLogger

NAME = "adtorque"

MARKER_ATTR = "data-stockno"

TITLE_CONTAINER_CLASSES = (
    "stock-title",
    "vehicle-title",
    "car-title",
    "listing-title",
    "stock-item-title",
    "title",
)

PRICE_SELECTORS = (
    "[itemprop='price']",
    ".stock-price",
    ".vehicle-price",
    ".price",
    "[class*='price']",
)

ODOMETER_SELECTORS = (
    ".odometer",
    ".kms",
    "[class*='odometer']",
    "[class*='kms']",
)

logger = LayerLogger("strategy.adtorque")


def extract(html: str, target: CrawlTarget) -> List[RawCandidateRecord]:
    """Extract candidates from dense stock tiles."""
    return extract_with_report(html, target).candidates


def extract_with_report(html: str, target: CrawlTarget) -> ExtractionReport:
    report = ExtractionReport(strategy=NAME)
    soup = make_soup(html)
    seen_stock = set()

    for block in soup.find_all(attrs={MARKER_ATTR: True}):
        if block.find_parent(attrs={MARKER_ATTR: True}) is not None:
            continue
        report.blocks_seen += 1

        stock_number = attr(block, MARKER_ATTR)
        if stock_number and stock_number in seen_stock:
            report.skip("duplicate_stock_number")
            continue

        candidate, reason = _extract_block(block, target, stock_number)
        if candidate is None:
            report.skip(reason)
            logger.log_skip(item=stock_number or "unknown", reason=reason, target=target.slug)
            continue

        if stock_number:
            seen_stock.add(stock_number)
        report.candidates.append(candidate)

    logger.log_extraction(
        strategy=NAME,
        candidates=len(report.candidates),
        skipped=report.skipped_dict(),
        blocks_seen=report.blocks_seen,
        target=target.slug,
    )
    return report


def _extract_block(
    block: Tag,
    target: CrawlTarget,
    stock_number: Optional[str],
) -> Tuple[Optional[RawCandidateRecord], Optional[str]]:
    """Return (candidate, None) or (None, rejection reason)."""
    parts, matched = first_match(TITLE_EXTRACTORS, block)
    if not matched:
        return None, "no_title_match"

    reason = sanity_check(parts)
    if reason:
        return None, reason

    anchor = block.find("a", href=True)
    listing_url = resolve_url(target.fetch_url, anchor["href"]) if anchor else None
    if not listing_url:
        return None, "missing_detail_url"

    text = clean_text(block.get_text(" ", strip=True)) or ""
    price, _ = first_match(PRICE_EXTRACTORS, block)
    km, _ = first_match(ODOMETER_EXTRACTORS, block)

    candidate = build_candidate(
        target,
        source_listing_id=stock_number,
        make=parts.make,
        model=parts.model,
        year=parts.year,
        variant_raw=parts.variant,
        km=km,
        price=price,
        transmission=detect_transmission(text),
        fuel=detect_fuel(text),
        listing_url=listing_url,
    )
    return candidate, None


# =============================================================================
# YEAR / MAKE / MODEL FALLBACKS
# =============================================================================

def _title_container(block: Tag) -> Optional[Tag]:
    for class_name in TITLE_CONTAINER_CLASSES:
        container = block.find(class_=class_name)
        if container is not None:
            return container
    return None


def _scoped_text(container: Tag, name: str) -> Optional[str]:
    element = container.find(class_=name) or container.find(attrs={"itemprop": name})
    if element is None:
        return None
    return clean_text(element.get_text(" ", strip=True))


def title_from_scoped_elements(block: Tag) -> Tuple[Optional[TitleParts], bool]:
    container = _title_container(block)
    if container is None:
        return NO_MATCH

    parts = TitleParts(
        year=parse_year(_scoped_text(container, "year")),
        make=_scoped_text(container, "make") or _scoped_text(container, "brand"),
        model=_scoped_text(container, "model"),
        variant=_scoped_text(container, "variant") or _scoped_text(container, "badge"),
    )
    if not parts.complete:
        return NO_MATCH
    return parts, True


def title_from_anchor_title(block: Tag) -> Tuple[Optional[TitleParts], bool]:
    for anchor in block.find_all("a", title=True):
        parts = parse_title(anchor.get("title"))
        if parts.complete:
            return parts, True
    return NO_MATCH


def title_from_image_alt(block: Tag) -> Tuple[Optional[TitleParts], bool]:
    for image in block.find_all("img", alt=True):
        parts = parse_title(image.get("alt"))
        if parts.complete:
            return parts, True
    return NO_MATCH


TITLE_EXTRACTORS = (
    title_from_scoped_elements,
    title_from_anchor_title,
    title_from_image_alt,
)


# =============================================================================
# PRICE / ODOMETER
# =============================================================================

def price_from_attribute(block: Tag) -> Tuple[Optional[int], bool]:
    price = parse_price(attr(block, "data-price"))
    return (price, True) if is_sane_price(price) else NO_MATCH


def price_from_element(block: Tag) -> Tuple[Optional[int], bool]:
    for selector in PRICE_SELECTORS:
        for element in block.select(selector):
            price = parse_price(attr(element, "content") or element.get_text(" ", strip=True))
            if is_sane_price(price):
                return price, True
    return NO_MATCH


def price_from_text(block: Tag) -> Tuple[Optional[int], bool]:
    text = block.get_text(" ", strip=True)
    price = parse_price(text) if "$" in text else None
    return (price, True) if is_sane_price(price) else NO_MATCH


PRICE_EXTRACTORS = (
    price_from_attribute,
    price_from_element,
    price_from_text,
)


def odometer_from_attribute(block: Tag) -> Tuple[Optional[int], bool]:
    km = parse_int(attr(block, "data-odometer") or attr(block, "data-kms"))
    return (km, True) if is_sane_km(km) else NO_MATCH


def odometer_from_element(block: Tag) -> Tuple[Optional[int], bool]:
    for selector in ODOMETER_SELECTORS:
        for element in block.select(selector):
            text = element.get_text(" ", strip=True)
            km = parse_km(text) or parse_int(text)
            if is_sane_km(km):
                return km, True
    return NO_MATCH


def odometer_from_text(block: Tag) -> Tuple[Optional[int], bool]:
    km = parse_km(block.get_text(" ", strip=True))
    return (km, True) if is_sane_km(km) else NO_MATCH


ODOMETER_EXTRACTORS = (
    odometer_from_attribute,
    odometer_from_element,
    odometer_from_text,
)
