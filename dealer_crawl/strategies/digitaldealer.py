"""
Attribute-tagged extraction strategy (DigitalDealer platform).

Vehicle cards carry their data in a fixed set of data attributes:

    <div data-stocknumber="U12345" data-id="998877" data-price="24990"
         data-year="2019" data-make="Toyota" data-model="HiLux">
        <a href="/used/toyota-hilux-U12345">...</a>
    </div>
"""
from typing import List, Optional

from bs4 import Tag

from dealer_crawl.models.records import RawCandidateRecord
from dealer_crawl.models.target import CrawlTarget
from dealer_crawl.strategies.base import (
    ExtractionReport,
    attr,
    build_candidate,
    clean_text,
    detect_fuel,
    detect_transmission,
    make_soup,
    parse_int,
    parse_km,
    parse_price,
    parse_year,
    resolve_url,
)
from dealer_crawl.utils.logger import LayerLogger

NAME = "digitaldealer"

STOCK_ATTR = "data-stocknumber"
ID_ATTR = "data-id"
BLOCK_SELECTOR = f"[{STOCK_ATTR}], [data-vehicle-id][{ID_ATTR}]"

logger = LayerLogger("strategy.digitaldealer")


def extract(html: str, target: CrawlTarget) -> List[RawCandidateRecord]:
    """Extract candidates from attribute-tagged vehicle cards."""
    return extract_with_report(html, target).candidates


def extract_with_report(html: str, target: CrawlTarget) -> ExtractionReport:
    report = ExtractionReport(strategy=NAME)
    soup = make_soup(html)
    seen_stock = set()

    for block in soup.select(BLOCK_SELECTOR):
        # Nested tagged elements belong to their outer card
        if block.find_parent(attrs={STOCK_ATTR: True}) is not None:
            continue
        report.blocks_seen += 1

        stock_number = attr(block, STOCK_ATTR)
        internal_id = attr(block, ID_ATTR)

        if stock_number and stock_number in seen_stock:
            report.skip("duplicate_stock_number")
            continue

        listing_url = _detail_url(block, target.fetch_url, stock_number, internal_id)
        if not listing_url:
            report.skip("missing_detail_url")
            logger.log_skip(
                item=stock_number or internal_id or "unknown",
                reason="missing_detail_url",
                target=target.slug,
            )
            continue

        if stock_number:
            seen_stock.add(stock_number)

        report.candidates.append(_to_candidate(block, target, stock_number, internal_id, listing_url))

    logger.log_extraction(
        strategy=NAME,
        candidates=len(report.candidates),
        skipped=report.skipped_dict(),
        blocks_seen=report.blocks_seen,
        target=target.slug,
    )
    return report


def _detail_url(
    block: Tag,
    base_url: str,
    stock_number: Optional[str],
    internal_id: Optional[str],
) -> Optional[str]:
    """
    Find the canonical detail link for a card.

    Prefer a link that mentions the card's own stock number or id; fall
    back to the first real link inside the card.
    """
    links = block.find_all("a", href=True)
    keys = [k.lower() for k in (stock_number, internal_id) if k]

    for link in links:
        href = link["href"]
        if any(key in href.lower() for key in keys):
            url = resolve_url(base_url, href)
            if url:
                return url

    for link in links:
        url = resolve_url(base_url, link["href"])
        if url:
            return url
    return None


def _to_candidate(
    block: Tag,
    target: CrawlTarget,
    stock_number: Optional[str],
    internal_id: Optional[str],
    listing_url: str,
) -> RawCandidateRecord:
    text = clean_text(block.get_text(" ", strip=True)) or ""

    km = parse_int(attr(block, "data-odometer")) or parse_km(text)

    return build_candidate(
        target,
        source_listing_id=stock_number or internal_id,
        make=attr(block, "data-make"),
        model=attr(block, "data-model"),
        year=parse_year(attr(block, "data-year")),
        variant_raw=attr(block, "data-variant"),
        km=km,
        price=parse_price(attr(block, "data-price")),
        transmission=attr(block, "data-transmission") or detect_transmission(text),
        fuel=attr(block, "data-fuel") or detect_fuel(text),
        listing_url=listing_url,
    )
