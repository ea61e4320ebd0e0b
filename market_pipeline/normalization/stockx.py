"""
StockX Market Data Mapper

Transforms a StockX v2 market-data response (one entry per variant) into
master_market_data rows.

- Prices arrive in MAJOR units ("145.00") and are stored as cents.
- The market-data payload carries no reliable size, so sizes come from the
  stockx_variants lookup, keyed by variant id.
- A variant yields a standard row, plus a flex row and a direct (consigned)
  row when those channels carry prices.
- Sales volume, average price, volatility and premium are not in this API
  tier and are written as null.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog

from market_pipeline.normalization.facts import (
    BuildResult,
    IngestionContext,
    MarketFact,
    Provider,
    bounded_excerpt,
)
from market_pipeline.normalization.prices import parse_major_unit_price
from market_pipeline.normalization.sizes import is_valid_size, parse_size_numeric

logger = structlog.get_logger(__name__)

SOURCE_STANDARD = "stockx_market_data"
SOURCE_FLEX = "stockx_market_data_flex"
SOURCE_DIRECT = "stockx_market_data_direct"

UNKNOWN_SIZE = "Unknown"


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _first_present(*values: Any) -> Any:
    for value in values:
        if _present(value):
            return value
    return None


def _channel_has_prices(channel: Any) -> bool:
    """A flex/direct channel counts only if it carries an ask or a pricing suggestion"""
    if not isinstance(channel, dict):
        return False
    return any(_present(channel.get(name)) for name in ("lowestAsk", "sellFaster", "earnMore"))


def stockx_variant_ids(payload: Any) -> List[str]:
    """Variant ids present in a payload, for the bulk size lookup"""
    if not isinstance(payload, list):
        return []
    return [
        str(variant["variantId"])
        for variant in payload
        if isinstance(variant, dict) and _present(variant.get("variantId"))
    ]


def resolve_size_key(variant: Dict[str, Any], size_lookup: Mapping[str, str]) -> str:
    """Size from the variant lookup, then any size field in the payload, then "Unknown" """
    variant_id = str(variant.get("variantId"))
    return str(
        _first_present(
            size_lookup.get(variant_id),
            variant.get("variantValue"),
            variant.get("size"),
            UNKNOWN_SIZE,
        )
    )


class StockXMarketDataMapper:
    """
    Builds canonical rows from a StockX market-data payload.

    Example:
        mapper = StockXMarketDataMapper(context, size_lookup={"v-1": "10"})
        result = mapper.build(payload)
    """

    def __init__(
        self,
        context: IngestionContext,
        size_lookup: Optional[Mapping[str, str]] = None,
        excerpt_max_chars: int = 2000,
    ):
        self.context = context
        self.size_lookup = size_lookup or {}
        self.excerpt_max_chars = excerpt_max_chars

    def build(self, payload: Any) -> BuildResult:
        result = BuildResult()

        if not isinstance(payload, list):
            logger.error(
                "Invalid StockX payload: expected list of variants",
                product_id=self.context.provider_product_id,
                payload_type=type(payload).__name__,
            )
            return result

        if not payload:
            logger.info("Empty StockX variants list", product_id=self.context.provider_product_id)
            return result

        for variant in payload:
            if not isinstance(variant, dict) or not _present(variant.get("variantId")):
                logger.warning(
                    "Skipping StockX variant without variantId",
                    product_id=self.context.provider_product_id,
                    variant=variant if isinstance(variant, dict) else repr(variant),
                )
                result.skipped_malformed += 1
                continue

            size_key = resolve_size_key(variant, self.size_lookup)
            size_numeric = parse_size_numeric(size_key)

            if self.context.category and not is_valid_size(
                size_numeric, self.context.category, self.context.gender
            ):
                logger.info(
                    "Filtered out invalid StockX size",
                    product_id=self.context.provider_product_id,
                    variant_id=variant["variantId"],
                    size_key=size_key,
                    category=self.context.category,
                    gender=self.context.gender or "unisex",
                )
                result.skipped_invalid_size += 1
                continue

            result.rows.extend(self._variant_rows(variant, size_key, size_numeric))

        logger.info(
            "Built StockX market rows",
            product_id=self.context.provider_product_id,
            variants=len(payload),
            rows=len(result.rows),
            size_mappings=len(self.size_lookup),
            **result.skipped,
        )
        return result

    def _base_row(self, variant: Dict[str, Any], size_key: str, size_numeric: Optional[float]) -> Dict[str, Any]:
        ctx = self.context
        return {
            "provider": Provider.STOCKX.value,
            "provider_product_id": ctx.provider_product_id,
            "provider_variant_id": str(variant["variantId"]),
            "sku": ctx.sku,
            "size_key": size_key,
            "size_numeric": size_numeric,
            "size_system": "US",
            "currency_code": ctx.currency_code,
            "region_code": ctx.region_code,
            "snapshot_at": ctx.snapshot_at,
            "raw_snapshot_id": ctx.raw_snapshot_id,
            "raw_snapshot_provider": Provider.STOCKX.value,
        }

    def _variant_rows(
        self,
        variant: Dict[str, Any],
        size_key: str,
        size_numeric: Optional[float],
    ) -> List[MarketFact]:
        base = self._base_row(variant, size_key, size_numeric)
        standard = variant.get("standardMarketData") or {}
        if not isinstance(standard, dict):
            standard = {}

        standard_ask = _first_present(variant.get("lowestAskAmount"), standard.get("lowestAsk"))
        standard_bid = _first_present(variant.get("highestBidAmount"), standard.get("highestBidAmount"))
        last_sale_price = parse_major_unit_price(variant.get("lastSaleAmount"))
        payload_size = _first_present(variant.get("size"), variant.get("variantValue"))

        rows = [
            MarketFact(
                **base,
                provider_source=SOURCE_STANDARD,
                lowest_ask=parse_major_unit_price(standard_ask),
                highest_bid=parse_major_unit_price(standard_bid),
                last_sale_price=last_sale_price,
                sell_faster_price=parse_major_unit_price(
                    _first_present(standard.get("sellFaster"), variant.get("sellFasterAmount"))
                ),
                earn_more_price=parse_major_unit_price(
                    _first_present(standard.get("earnMore"), variant.get("earnMoreAmount"))
                ),
                beat_us_price=parse_major_unit_price(standard.get("beatUS")),
                is_flex=False,
                is_consigned=False,
                raw_response_excerpt=bounded_excerpt(
                    {
                        "variantId": variant["variantId"],
                        "size": payload_size,
                        "lowestAskAmount": variant.get("lowestAskAmount"),
                        "highestBidAmount": variant.get("highestBidAmount"),
                        "standardMarketData": standard or None,
                    },
                    self.excerpt_max_chars,
                ),
            )
        ]

        for key, source, is_flex, is_consigned in (
            ("flexMarketData", SOURCE_FLEX, True, False),
            ("directMarketData", SOURCE_DIRECT, False, True),
        ):
            channel = variant.get(key)
            if not _channel_has_prices(channel):
                continue

            rows.append(
                MarketFact(
                    **base,
                    provider_source=source,
                    # Ask and bid share depth with the standard market; suggestions do not
                    lowest_ask=parse_major_unit_price(_first_present(channel.get("lowestAsk"), standard_ask)),
                    highest_bid=parse_major_unit_price(
                        _first_present(channel.get("highestBidAmount"), standard_bid)
                    ),
                    last_sale_price=last_sale_price,
                    sell_faster_price=parse_major_unit_price(channel.get("sellFaster")),
                    earn_more_price=parse_major_unit_price(channel.get("earnMore")),
                    beat_us_price=parse_major_unit_price(channel.get("beatUS")),
                    is_flex=is_flex,
                    is_consigned=is_consigned,
                    raw_response_excerpt=bounded_excerpt(
                        {"variantId": variant["variantId"], "size": payload_size, key: channel},
                        self.excerpt_max_chars,
                    ),
                )
            )

        return rows


def build_stockx_rows(
    payload: Any,
    context: IngestionContext,
    size_lookup: Optional[Mapping[str, str]] = None,
) -> BuildResult:
    """Convenience wrapper around StockXMarketDataMapper"""
    return StockXMarketDataMapper(context, size_lookup).build(payload)
