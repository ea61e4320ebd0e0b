"""
eBay Mappers

eBay Browse API items are mapped two ways:

- every sold item becomes an `ebay_sold_transactions` record, tagged with the
  reason it is excluded from metrics (if any);
- search results collapse to one master_market_data row per (sku, size),
  keeping the lowest price.

Prices arrive in MAJOR units and are stored as cents. SKU and size are
extracted from structured aspects where eBay provides them and from the title
otherwise.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import structlog

from market_pipeline.normalization.alias import parse_timestamp
from market_pipeline.normalization.facts import BuildResult, MarketFact, Provider, utcnow
from market_pipeline.normalization.prices import parse_major_unit_price
from market_pipeline.normalization.sizes import parse_size_numeric

logger = structlog.get_logger(__name__)

SOURCE_BROWSE_SEARCH = "ebay_browse_search"
NEW_CONDITION_ID = 1000


# =============================================================================
# SKU / SIZE EXTRACTION
# =============================================================================

SKU_PATTERNS = [
    re.compile(r"\b([A-Z]{2}\d{4}-\d{3})\b", re.IGNORECASE),  # Nike/Jordan: DD1391-100
    re.compile(r"\b([MW]\d{3,4}[A-Z]{2,3}\d?)\b", re.IGNORECASE),  # New Balance: M990GL6
    re.compile(r"\b(\d{6}-\d{3})\b"),  # Jordan numeric: 554724-136
    re.compile(r"\b([A-Z]{2}\d{4})\b", re.IGNORECASE),  # Adidas/Yeezy: FZ5000
]

_NUMBER = r"(\d+(?:\.\d+)?)"
_TITLE_SIZE_PATTERNS = [
    ("US", "HIGH", re.compile(rf"\bUS\s+{_NUMBER}\b|\b{_NUMBER}\s*US\b", re.IGNORECASE)),
    ("UK", "HIGH", re.compile(rf"\bUK\s+{_NUMBER}\b|\b{_NUMBER}\s*UK\b", re.IGNORECASE)),
    ("EU", "HIGH", re.compile(rf"\bEU\s+{_NUMBER}\b|\b{_NUMBER}\s*EU\b", re.IGNORECASE)),
    ("US", "MEDIUM", re.compile(rf"\bSize:?\s+{_NUMBER}\b", re.IGNORECASE)),
    ("US", "MEDIUM", re.compile(rf"\b(?:Men's|Women's)\s+{_NUMBER}\b", re.IGNORECASE)),
]

SIZE_CONFIDENCE_SCORES = {
    "HIGH": 1.0,
    "MEDIUM": 0.7,
    "LOW": 0.3,
}


@dataclass
class ExtractedSize:
    """A size with the system it was reported in and how sure we are of it"""
    size: str
    system: str  # US, UK, EU or UNKNOWN
    confidence: str  # HIGH, MEDIUM or LOW

    @property
    def normalized_key(self) -> str:
        if self.system == "UNKNOWN":
            return self.size
        return f"{self.system} {self.size}"

    @property
    def confidence_score(self) -> Optional[float]:
        return SIZE_CONFIDENCE_SCORES.get(self.confidence)


def extract_sku_from_title(title: Optional[str]) -> Optional[str]:
    """First style code found in a listing title, upper-cased"""
    if not title:
        return None
    for pattern in SKU_PATTERNS:
        match = pattern.search(title)
        if match:
            return match.group(1).upper()
    return None


def extract_size_from_title(title: Optional[str]) -> Optional[ExtractedSize]:
    """Explicit US/UK/EU sizes are HIGH confidence; bare "Size 10" assumes US at MEDIUM"""
    if not title:
        return None
    for system, confidence, pattern in _TITLE_SIZE_PATTERNS:
        match = pattern.search(title)
        if match:
            size = next(group for group in match.groups() if group)
            return ExtractedSize(size=size, system=system, confidence=confidence)
    return None


def _aspect_sizes(aspects: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    sizes: Dict[str, str] = {}
    for aspect in aspects:
        if not isinstance(aspect, dict):
            continue
        name = str(aspect.get("name", ""))
        value = aspect.get("value")
        if not value:
            continue
        if "UK Shoe Size" in name:
            sizes.setdefault("UK", str(value))
        elif "US Shoe Size" in name:
            sizes.setdefault("US", str(value))
        elif "EU Shoe Size" in name:
            sizes.setdefault("EU", str(value))
        elif name in ("Size", "Shoe Size"):
            sizes.setdefault("GENERIC", str(value))
    return sizes


def extract_size_from_aspects(
    aspects: Optional[List[Dict[str, Any]]],
    marketplace_id: str = "EBAY_GB",
) -> Optional[ExtractedSize]:
    """
    Size from item-level aspects, preferring the marketplace's native system.

    EBAY_GB prefers UK > EU > US; other marketplaces prefer US > UK > EU.
    A generic "Size" aspect falls back to US at MEDIUM confidence.
    """
    if not aspects:
        return None

    sizes = _aspect_sizes(aspects)
    preference = ("UK", "EU", "US") if marketplace_id == "EBAY_GB" else ("US", "UK", "EU")
    for system in preference:
        if system in sizes:
            return ExtractedSize(size=sizes[system], system=system, confidence="HIGH")

    if "GENERIC" in sizes:
        return ExtractedSize(size=sizes["GENERIC"], system="US", confidence="MEDIUM")
    return None


def extract_size_from_variation(variation: Dict[str, Any]) -> Optional[ExtractedSize]:
    for aspect in variation.get("localizedAspects") or []:
        if not isinstance(aspect, dict):
            continue
        name = str(aspect.get("name", ""))
        value = aspect.get("value")
        if not value:
            continue
        for system in ("US", "UK", "EU"):
            if f"{system} Shoe Size" in name:
                return ExtractedSize(size=str(value), system=system, confidence="HIGH")
        if name in ("Size", "Shoe Size"):
            return ExtractedSize(size=str(value), system="UNKNOWN", confidence="LOW")
    return None


def extract_best_size(item: Dict[str, Any], marketplace_id: str = "EBAY_GB") -> Optional[ExtractedSize]:
    """Item aspects, then a single-size variation list, then the title"""
    from_aspects = extract_size_from_aspects(item.get("localizedAspects"), marketplace_id)
    if from_aspects:
        return from_aspects

    variations = item.get("variations") or []
    if variations:
        sizes = [size for size in (extract_size_from_variation(v) for v in variations if isinstance(v, dict)) if size]
        if len(sizes) == 1:
            return sizes[0]
        if len(sizes) > 1:
            # Multi-size listing: the sold size cannot be told apart
            return None

    return extract_size_from_title(item.get("title"))


def extract_cheapest_shipping(shipping_options: Optional[List[Dict[str, Any]]]) -> Optional[int]:
    """Cheapest shipping option in cents"""
    cheapest = None
    for option in shipping_options or []:
        if not isinstance(option, dict):
            continue
        cost = option.get("shippingCost")
        raw = cost.get("value") if isinstance(cost, dict) else cost
        cents = parse_major_unit_price(raw)
        if cents is not None and (cheapest is None or cents < cheapest):
            cheapest = cents
    return cheapest


def _item_price(item: Dict[str, Any]) -> Optional[int]:
    price = item.get("price")
    if isinstance(price, dict):
        price = price.get("value")
    return parse_major_unit_price(price)


def _item_currency(item: Dict[str, Any]) -> Optional[str]:
    price = item.get("price")
    if isinstance(price, dict) and price.get("currency"):
        return str(price["currency"])
    currency = item.get("currency")
    return str(currency) if currency else None


# =============================================================================
# SOLD TRANSACTIONS
# =============================================================================

class ExclusionReason(str, Enum):
    """Why a sold item is kept out of metrics"""
    NOT_NEW_CONDITION = "not_new_condition"
    NO_AUTHENTICITY_GUARANTEE = "no_authenticity_guarantee"
    MISSING_SIZE = "missing_size"
    SIZE_SYSTEM_UNKNOWN = "size_system_unknown"
    SIZE_NOT_FROM_VARIATIONS = "size_not_from_variations"
    MISSING_PRICE = "missing_price"


@dataclass
class EbayTransaction:
    """One sold listing, as stored in ebay_sold_transactions"""
    ebay_item_id: str
    marketplace_id: str
    sku: str
    size_key: Optional[str]
    size_numeric: Optional[float]
    size_system: Optional[str]
    size_confidence: Optional[float]
    sale_price_cents: Optional[int]
    currency_code: Optional[str]
    sold_at: Optional[datetime]
    condition_id: Optional[str] = None
    category_id: Optional[str] = None
    authenticity_guarantee: bool = False
    seller_feedback_score: Optional[int] = None
    seller_feedback_percentage: Optional[float] = None
    shipping_cost_cents: Optional[int] = None
    is_outlier: bool = False
    outlier_reason: Optional[str] = None
    exclusion_reason: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def included_in_metrics(self) -> bool:
        return self.exclusion_reason is None and not self.is_outlier

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["included_in_metrics"] = self.included_in_metrics
        return record


def determine_exclusion_reason(
    item: Dict[str, Any],
    size: Optional[ExtractedSize],
    price_cents: Optional[int],
) -> Optional[str]:
    """First failing inclusion rule, or None when the sale counts toward metrics"""
    if price_cents is None:
        return ExclusionReason.MISSING_PRICE.value

    condition_id = item.get("conditionId")
    if condition_id not in (None, "") and str(condition_id) != str(NEW_CONDITION_ID):
        return ExclusionReason.NOT_NEW_CONDITION.value

    if not item.get("authenticityVerification"):
        return ExclusionReason.NO_AUTHENTICITY_GUARANTEE.value

    if size is None:
        return ExclusionReason.MISSING_SIZE.value

    if size.system == "UNKNOWN":
        return ExclusionReason.SIZE_SYSTEM_UNKNOWN.value

    # Only HIGH confidence sizes count: structured aspects or an explicit
    # US/UK/EU marker in the title
    score = size.confidence_score
    if score is None or score < 1.0:
        return ExclusionReason.SIZE_NOT_FROM_VARIATIONS.value

    return None


def map_ebay_transaction(
    item: Dict[str, Any],
    search_query: str,
    marketplace_id: str = "EBAY_GB",
) -> EbayTransaction:
    """Map one Browse API sold item to a transaction record"""
    size = extract_best_size(item, marketplace_id)
    size_key = size.normalized_key if size else None
    price_cents = _item_price(item)

    seller = item.get("seller") or {}
    feedback_percentage = seller.get("feedbackPercentage")
    try:
        feedback_percentage = float(feedback_percentage) if feedback_percentage not in (None, "") else None
    except (TypeError, ValueError):
        feedback_percentage = None

    sku = extract_sku_from_title(item.get("title")) or search_query

    return EbayTransaction(
        ebay_item_id=str(item["itemId"]),
        marketplace_id=marketplace_id,
        sku=sku,
        size_key=size_key,
        size_numeric=parse_size_numeric(size_key) if size_key else None,
        size_system=size.system if size and size.system != "UNKNOWN" else None,
        size_confidence=size.confidence_score if size else None,
        sale_price_cents=price_cents,
        currency_code=_item_currency(item),
        sold_at=parse_timestamp(item.get("soldAt") or item.get("itemEndDate")),
        condition_id=str(item["conditionId"]) if item.get("conditionId") not in (None, "") else None,
        category_id=str(item["categoryId"]) if item.get("categoryId") else None,
        authenticity_guarantee=bool(item.get("authenticityVerification")),
        seller_feedback_score=seller.get("feedbackScore"),
        seller_feedback_percentage=feedback_percentage,
        shipping_cost_cents=extract_cheapest_shipping(item.get("shippingOptions")),
        exclusion_reason=determine_exclusion_reason(item, size, price_cents),
        raw_response={
            "itemId": item.get("itemId"),
            "title": item.get("title"),
            "soldAt": item.get("soldAt"),
            "conditionId": item.get("conditionId"),
            "categoryId": item.get("categoryId"),
            "extractedSKU": sku,
            "sizeInfo": asdict(size) if size else None,
        },
    )


def map_ebay_transactions(
    items: Any,
    search_query: str,
    marketplace_id: str = "EBAY_GB",
) -> List[EbayTransaction]:
    """Map a batch of sold items, skipping entries without an item id or sale time"""
    if not isinstance(items, list):
        logger.error("Invalid eBay payload: expected list of items", payload_type=type(items).__name__)
        return []

    # Overlapping result pages repeat items; the last copy wins
    by_item_id: Dict[str, EbayTransaction] = {}
    for item in items:
        if not isinstance(item, dict) or not item.get("itemId"):
            logger.warning("Skipping eBay item without itemId", search_query=search_query)
            continue

        transaction = map_ebay_transaction(item, search_query, marketplace_id)
        if transaction.sold_at is None:
            logger.warning(
                "Skipping eBay item without sold timestamp",
                item_id=transaction.ebay_item_id,
                search_query=search_query,
            )
            continue
        by_item_id[transaction.ebay_item_id] = transaction

    transactions = list(by_item_id.values())

    exclusion_counts: Dict[str, int] = {}
    for transaction in transactions:
        if transaction.exclusion_reason:
            exclusion_counts[transaction.exclusion_reason] = exclusion_counts.get(transaction.exclusion_reason, 0) + 1

    logger.info(
        "Mapped eBay transactions",
        search_query=search_query,
        marketplace_id=marketplace_id,
        items=len(items),
        transactions=len(transactions),
        included=sum(1 for t in transactions if t.included_in_metrics),
        exclusion_reasons=exclusion_counts,
    )
    return transactions


# =============================================================================
# BROWSE SEARCH -> MASTER MARKET DATA
# =============================================================================

def build_ebay_search_rows(
    items: Any,
    search_query: str,
    currency_code: str,
    sold_items_only: bool = True,
    marketplace_id: str = "EBAY_GB",
) -> BuildResult:
    """
    Collapse search results to the lowest price per (sku, size_key).

    Sold searches populate last_sale_price; active searches populate lowest_ask.
    Items in another currency and LOW-confidence sizes are left out.
    """
    result = BuildResult()
    if not isinstance(items, list):
        logger.error("Invalid eBay payload: expected list of items", payload_type=type(items).__name__)
        return result

    cheapest: Dict[tuple, Dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict) or not item.get("itemId"):
            result.skipped_malformed += 1
            continue
        if _item_currency(item) != currency_code:
            continue

        price = _item_price(item)
        if price is None:
            result.skipped_malformed += 1
            continue

        size = extract_best_size(item, marketplace_id)
        if size is not None and size.confidence == "LOW":
            logger.warning(
                "Excluding eBay item with low-confidence size",
                item_id=item.get("itemId"),
                size=size.size,
            )
            result.skipped_low_confidence += 1
            continue

        sku = extract_sku_from_title(item.get("title")) or search_query
        size_key = size.normalized_key if size else "ALL"
        group = (sku, size_key)

        existing = cheapest.get(group)
        if existing is None or price < existing["price"]:
            cheapest[group] = {"item": item, "price": price, "size": size, "sku": sku, "size_key": size_key}

    now = utcnow()
    for entry in cheapest.values():
        item, size = entry["item"], entry["size"]
        result.rows.append(
            MarketFact(
                provider=Provider.EBAY.value,
                provider_source=SOURCE_BROWSE_SEARCH,
                provider_product_id=None,
                provider_variant_id=str(item["itemId"]),
                sku=entry["sku"],
                size_key=entry["size_key"],
                size_numeric=parse_size_numeric(entry["size_key"]),
                size_system=size.system if size and size.system != "UNKNOWN" else "US",
                currency_code=currency_code,
                region_code=None,
                lowest_ask=None if sold_items_only else entry["price"],
                last_sale_price=entry["price"] if sold_items_only else None,
                snapshot_at=now,
                raw_response_excerpt={
                    "itemId": item.get("itemId"),
                    "title": item.get("title"),
                    "soldAt": item.get("soldAt"),
                },
            )
        )

    logger.info(
        "Built eBay search rows",
        search_query=search_query,
        currency_code=currency_code,
        items=len(items),
        rows=len(result.rows),
        sold_items_only=sold_items_only,
    )
    return result
