"""
Market Data Normalization Module
"""
from .alias import (
    AliasSaleDetail,
    AliasVolumeUpdate,
    aggregate_alias_recent_sales,
    alias_region,
    build_alias_rows,
    build_alias_sale_details,
)
from .ebay import build_ebay_search_rows, map_ebay_transaction, map_ebay_transactions
from .facts import (
    BuildResult,
    ConsignedFilter,
    IngestionContext,
    MarketFact,
    Provider,
    dedupe_facts,
)
from .prices import PriceConvention, parse_major_unit_price, parse_minor_unit_price, parse_price
from .sizes import is_valid_size, parse_size_numeric
from .stockx import StockXMarketDataMapper, build_stockx_rows

__all__ = [
    "AliasSaleDetail",
    "AliasVolumeUpdate",
    "aggregate_alias_recent_sales",
    "alias_region",
    "build_alias_rows",
    "build_alias_sale_details",
    "build_ebay_search_rows",
    "map_ebay_transaction",
    "map_ebay_transactions",
    "BuildResult",
    "ConsignedFilter",
    "IngestionContext",
    "MarketFact",
    "Provider",
    "dedupe_facts",
    "PriceConvention",
    "parse_major_unit_price",
    "parse_minor_unit_price",
    "parse_price",
    "is_valid_size",
    "parse_size_numeric",
    "StockXMarketDataMapper",
    "build_stockx_rows",
]
