"""
Alias Market Data Mapper

Transforms Alias pricing-insights availabilities into master_market_data rows,
and aggregates recent sales into volume updates for rows that already exist.

- Prices arrive in MINOR units as strings ("14500" is $145.00). No scaling.
- Alias settles every region in USD; region_id selects the marketplace only.
- Pricing is locked to one condition pair: NEW product, GOOD packaging.
- Alias has no per-size variant id, so provider_variant_id is always null.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from market_pipeline.normalization.facts import (
    BuildResult,
    IngestionContext,
    MarketFact,
    Provider,
    bounded_excerpt,
    utcnow,
)
from market_pipeline.normalization.prices import parse_minor_unit_price
from market_pipeline.normalization.sizes import (
    format_size_key,
    is_valid_size,
    normalize_size_system,
    parse_size_numeric,
)

logger = structlog.get_logger(__name__)

LOCKED_PRODUCT_CONDITION = "PRODUCT_CONDITION_NEW"
LOCKED_PACKAGING_CONDITION = "PACKAGING_CONDITION_GOOD_CONDITION"

SOURCE_AVAILABILITIES = "alias_availabilities"
SOURCE_AVAILABILITIES_CONSIGNED = "alias_availabilities_consigned"

ALIAS_SETTLEMENT_CURRENCY = "USD"

ALIAS_REGIONS = {
    "1": "US",
    "2": "EU",
    "3": "UK",
}


def alias_region(region_id: Optional[str]) -> Tuple[str, str]:
    """Map an Alias region id to (currency_code, region_code)"""
    if region_id is None:
        return ALIAS_SETTLEMENT_CURRENCY, "global"
    return ALIAS_SETTLEMENT_CURRENCY, ALIAS_REGIONS.get(str(region_id), "global")


def is_locked_condition(variant: Dict[str, Any]) -> bool:
    return (
        variant.get("product_condition") == LOCKED_PRODUCT_CONDITION
        and variant.get("packaging_condition") == LOCKED_PACKAGING_CONDITION
    )


def build_alias_rows(
    payload: Any,
    context: IngestionContext,
    excerpt_max_chars: int = 2000,
) -> BuildResult:
    """
    Build one row per priced Alias variant.

    Args:
        payload: Availabilities response, {"variants": [...]}
        context: Ingestion context; consigned_filter selects variants
        excerpt_max_chars: Cap on the stored debug excerpt

    Returns:
        BuildResult with rows and skip counts
    """
    result = BuildResult()
    catalog_id = context.provider_product_id

    if not isinstance(payload, dict) or not isinstance(payload.get("variants"), list):
        logger.error(
            "Invalid Alias payload: expected variants array",
            catalog_id=catalog_id,
            payload_type=type(payload).__name__,
        )
        return result

    variants = payload["variants"]
    if not variants:
        logger.info("Empty Alias variants list", catalog_id=catalog_id)
        return result

    for variant in variants:
        if not isinstance(variant, dict) or variant.get("size") in (None, ""):
            logger.warning(
                "Skipping Alias variant without size",
                catalog_id=catalog_id,
                variant=variant if isinstance(variant, dict) else repr(variant),
            )
            result.skipped_malformed += 1
            continue

        if not is_locked_condition(variant):
            result.skipped_condition += 1
            continue

        consigned = bool(variant.get("consigned"))
        if not context.consigned_filter.accepts(consigned):
            result.skipped_consigned_filter += 1
            continue

        size_key = format_size_key(variant["size"])
        size_numeric = parse_size_numeric(variant["size"])

        if context.category and not is_valid_size(size_numeric, context.category, context.gender):
            result.skipped_invalid_size += 1
            continue

        availability = variant.get("availability")
        if not isinstance(availability, dict):
            logger.warning(
                "Skipping Alias variant without availability",
                catalog_id=catalog_id,
                size_key=size_key,
                consigned=consigned,
            )
            result.skipped_no_availability += 1
            continue

        result.rows.append(
            MarketFact(
                provider=Provider.ALIAS.value,
                provider_source=SOURCE_AVAILABILITIES_CONSIGNED if consigned else SOURCE_AVAILABILITIES,
                provider_product_id=catalog_id,
                provider_variant_id=None,
                sku=context.sku,
                size_key=size_key,
                size_numeric=size_numeric,
                size_system=normalize_size_system(variant.get("size_unit")),
                currency_code=context.currency_code,
                region_code=context.region_code,
                lowest_ask=parse_minor_unit_price(availability.get("lowest_listing_price_cents")),
                highest_bid=parse_minor_unit_price(availability.get("highest_offer_price_cents")),
                last_sale_price=parse_minor_unit_price(availability.get("last_sold_listing_price_cents")),
                global_indicator_price=parse_minor_unit_price(availability.get("global_indicator_price_cents")),
                ask_count=availability.get("number_of_listings"),
                bid_count=availability.get("number_of_offers"),
                is_flex=False,
                is_consigned=consigned,
                snapshot_at=context.snapshot_at,
                raw_snapshot_id=context.raw_snapshot_id,
                raw_snapshot_provider=Provider.ALIAS.value,
                raw_response_excerpt=bounded_excerpt(
                    {
                        "size": variant.get("size"),
                        "size_unit": variant.get("size_unit"),
                        "consigned": consigned,
                        "lowest_listing_price_cents": availability.get("lowest_listing_price_cents"),
                        "highest_offer_price_cents": availability.get("highest_offer_price_cents"),
                        "number_of_listings": availability.get("number_of_listings"),
                        "number_of_offers": availability.get("number_of_offers"),
                    },
                    excerpt_max_chars,
                ),
            )
        )

    if result.skipped_invalid_size:
        logger.info(
            "Filtered out invalid Alias sizes",
            catalog_id=catalog_id,
            filtered=result.skipped_invalid_size,
            category=context.category,
            gender=context.gender or "unisex",
        )

    logger.info(
        "Built Alias market rows",
        catalog_id=catalog_id,
        region_code=context.region_code,
        consigned_filter=context.consigned_filter.value,
        variants=len(variants),
        rows=len(result.rows),
        **result.skipped,
    )
    return result


# =============================================================================
# RECENT SALES VOLUME
# =============================================================================

@dataclass
class AliasVolumeUpdate:
    """Volume figures for one (size, consigned) group of recent sales"""
    size_key: str
    is_consigned: bool
    sales_last_72h: int
    sales_last_30d: int
    last_sale_price: Optional[int]
    last_sale_at: Optional[datetime]

    @property
    def total_sales_volume(self) -> int:
        # Alias volume is a sale count, not a currency amount
        return self.sales_last_30d


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def aggregate_alias_recent_sales(
    payload: Any,
    now: Optional[datetime] = None,
) -> List[AliasVolumeUpdate]:
    """
    Group recent sales by (size, consigned) and compute volume per group.

    Args:
        payload: Recent sales response, {"recent_sales": [...]}
        now: Anchor for the 72h and 30d windows (defaults to current time)

    Returns:
        One AliasVolumeUpdate per group, ordered by size key then consigned
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("recent_sales"), list):
        logger.error(
            "Invalid Alias recent_sales payload: expected recent_sales array",
            payload_type=type(payload).__name__,
        )
        return []

    now = parse_timestamp(now) if now is not None else utcnow()
    cutoff_72h = now - timedelta(hours=72)
    cutoff_30d = now - timedelta(days=30)

    groups: Dict[Tuple[str, bool], List[Tuple[datetime, Any]]] = defaultdict(list)
    for sale in payload["recent_sales"]:
        if not isinstance(sale, dict) or sale.get("size") in (None, ""):
            logger.warning("Skipping Alias sale without size", sale=sale if isinstance(sale, dict) else repr(sale))
            continue

        purchased_at = parse_timestamp(sale.get("purchased_at"))
        if purchased_at is None:
            logger.warning(
                "Skipping Alias sale with unparsable purchased_at",
                purchased_at=sale.get("purchased_at"),
                size=sale.get("size"),
            )
            continue

        key = (format_size_key(sale["size"]), bool(sale.get("consigned")))
        groups[key].append((purchased_at, sale.get("price_cents")))

    updates = []
    for (size_key, is_consigned), sales in sorted(groups.items()):
        sales.sort(key=lambda item: item[0], reverse=True)
        last_sale_at, last_price = sales[0]

        updates.append(
            AliasVolumeUpdate(
                size_key=size_key,
                is_consigned=is_consigned,
                sales_last_72h=sum(1 for sold_at, _ in sales if sold_at >= cutoff_72h),
                sales_last_30d=sum(1 for sold_at, _ in sales if sold_at >= cutoff_30d),
                last_sale_price=parse_minor_unit_price(last_price),
                last_sale_at=last_sale_at,
            )
        )

    logger.info(
        "Aggregated Alias recent sales",
        sales=len(payload["recent_sales"]),
        groups=len(updates),
    )
    return updates


@dataclass
class AliasSaleDetail:
    """One Alias sale kept for the recent-sales time series"""
    catalog_id: Optional[str]
    sku: Optional[str]
    size_value: float
    size_key: str
    price_cents: Optional[int]
    purchased_at: datetime
    consigned: bool
    region_code: Optional[str]
    currency_code: str
    snapshot_at: datetime
    raw_snapshot_id: Optional[str] = None
    size_unit: str = "US"

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


def build_alias_sale_details(payload: Any, context: IngestionContext) -> List[AliasSaleDetail]:
    """One detail row per recent sale with a usable size and timestamp"""
    if not isinstance(payload, dict) or not isinstance(payload.get("recent_sales"), list):
        return []

    details = []
    for sale in payload["recent_sales"]:
        if not isinstance(sale, dict):
            continue
        size_numeric = parse_size_numeric(sale.get("size"))
        purchased_at = parse_timestamp(sale.get("purchased_at"))
        if size_numeric is None or purchased_at is None:
            continue

        details.append(
            AliasSaleDetail(
                catalog_id=context.provider_product_id,
                sku=context.sku,
                size_value=size_numeric,
                size_key=format_size_key(sale["size"]),
                price_cents=parse_minor_unit_price(sale.get("price_cents")),
                purchased_at=purchased_at,
                consigned=bool(sale.get("consigned")),
                region_code=context.region_code,
                currency_code=context.currency_code,
                snapshot_at=context.snapshot_at,
                raw_snapshot_id=context.raw_snapshot_id,
            )
        )
    return details
