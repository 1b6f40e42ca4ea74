"""
Structured linked-data extraction strategy (RAMP / Indiqator platform).

Vehicles are published as schema.org JSON-LD. Scripts may hold a single
node, a list of nodes, an `@graph` wrapper or an `ItemList` whose
`itemListElement` entries wrap the vehicle in `item`.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional

from dealer_crawl.models.records import RawCandidateRecord
from dealer_crawl.models.target import CrawlTarget
from dealer_crawl.strategies.base import (
    ExtractionReport,
    TitleParts,
    build_candidate,
    clean_text,
    detect_fuel,
    detect_transmission,
    make_soup,
    parse_int,
    parse_title,
    resolve_url,
)
from dealer_crawl.utils.logger import LayerLogger

NAME = "ramp"

VEHICLE_TYPES = {"Vehicle", "Car", "Product", "MotorVehicle"}

logger = LayerLogger("strategy.jsonld")


def extract(html: str, target: CrawlTarget) -> List[RawCandidateRecord]:
    """Extract candidates from embedded JSON-LD vehicle/product nodes."""
    return extract_with_report(html, target).candidates


def extract_with_report(html: str, target: CrawlTarget) -> ExtractionReport:
    report = ExtractionReport(strategy=NAME)
    soup = make_soup(html)
    seen_ids = set()

    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            report.skip("invalid_json")
            continue

        for node in flatten_jsonld(data):
            if not _is_vehicle_node(node):
                continue
            report.blocks_seen += 1

            try:
                candidate = _parse_vehicle_node(node, target)
            except Exception as e:
                logger.log_skip(item=str(node.get("name")), reason=f"malformed_node: {type(e).__name__}")
                report.skip("malformed_node")
                continue
            if candidate is None:
                report.skip("no_title_match")
                continue
            if candidate.source_listing_id:
                if candidate.source_listing_id in seen_ids:
                    report.skip("duplicate_id")
                    continue
                seen_ids.add(candidate.source_listing_id)
            report.candidates.append(candidate)

    logger.log_extraction(
        strategy=NAME,
        candidates=len(report.candidates),
        skipped=report.skipped_dict(),
        blocks_seen=report.blocks_seen,
        target=target.slug,
    )
    return report


def flatten_jsonld(data: Any) -> List[Dict[str, Any]]:
    """
    Flatten JSON-LD structure into a list of schema nodes.

    Handles:
    - Single object with @type
    - @graph containers
    - Arrays of objects
    - ItemList wrappers (itemListElement / item)
    """
    nodes = []

    if isinstance(data, dict):
        if "@graph" in data:
            nodes.extend(flatten_jsonld(data["@graph"]))

        if "@type" in data:
            nodes.append(data)

        if _node_types(data) & {"ItemList"}:
            for element in data.get("itemListElement") or []:
                if isinstance(element, dict) and isinstance(element.get("item"), dict):
                    nodes.extend(flatten_jsonld(element["item"]))
                else:
                    nodes.extend(flatten_jsonld(element))

    elif isinstance(data, list):
        for item in data:
            nodes.extend(flatten_jsonld(item))

    return nodes


def _node_types(node: Dict[str, Any]) -> set:
    schema_type = node.get("@type")
    if isinstance(schema_type, list):
        return {str(t) for t in schema_type}
    if schema_type:
        return {str(schema_type)}
    return set()


def _is_vehicle_node(node: Dict[str, Any]) -> bool:
    return bool(_node_types(node) & VEHICLE_TYPES)


def _text_value(value: Any) -> Optional[str]:
    """Read a plain string from a literal or a {"name": ...} object."""
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name") or value.get("@value")
    if value is None or isinstance(value, (dict, list)):
        return None
    return clean_text(str(value))


def _title_parts(node: Dict[str, Any]) -> TitleParts:
    """Pattern-match the node name, falling back to a combined string."""
    parts = parse_title(_text_value(node.get("name")))
    if parts.complete:
        return parts

    combined = " ".join(
        p for p in (
            _text_value(node.get("vehicleModelDate")) or _text_value(node.get("modelDate")),
            _text_value(node.get("brand")) or _text_value(node.get("manufacturer")),
            _text_value(node.get("model")),
            _text_value(node.get("vehicleConfiguration")),
        ) if p
    )
    return parse_title(combined)


def _offer_price(node: Dict[str, Any]) -> Optional[int]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if not isinstance(offers, dict):
        return None
    return parse_int(offers.get("price") or offers.get("lowPrice"))


def _odometer(node: Dict[str, Any]) -> Optional[int]:
    mileage = node.get("mileageFromOdometer")
    if isinstance(mileage, dict):
        return parse_int(mileage.get("value"))
    return parse_int(mileage)


def stable_id(node: Dict[str, Any], listing_url: Optional[str]) -> Optional[str]:
    """
    Derive the listing id.

    Priority: sku, productID, mpn, VIN-derived short id, hash of the
    detail URL.
    """
    for key in ("sku", "productID", "mpn"):
        value = _text_value(node.get(key))
        if value:
            return value

    vin = _text_value(node.get("vehicleIdentificationNumber"))
    if vin and len(vin) >= 8:
        return f"vin-{vin[-8:].lower()}"

    if listing_url:
        digest = hashlib.sha1(listing_url.encode("utf-8")).hexdigest()[:12]
        return f"url-{digest}"
    return None


def _parse_vehicle_node(node: Dict[str, Any], target: CrawlTarget) -> Optional[RawCandidateRecord]:
    parts = _title_parts(node)
    if not parts.complete:
        return None

    listing_url = resolve_url(target.fetch_url, _text_value(node.get("url")) or _text_value(node.get("@id")))

    transmission = _text_value(node.get("vehicleTransmission"))
    fuel = _text_value(node.get("fuelType"))
    description = _text_value(node.get("description"))

    return build_candidate(
        target,
        source_listing_id=stable_id(node, listing_url),
        make=parts.make,
        model=parts.model,
        year=parts.year,
        variant_raw=parts.variant,
        km=_odometer(node),
        price=_offer_price(node),
        transmission=detect_transmission(transmission) or transmission or detect_transmission(description),
        fuel=detect_fuel(fuel) or fuel or detect_fuel(description),
        listing_url=listing_url,
    )
