"""
Canonical Market Data Facts

The single row shape every provider mapper produces for `master_market_data`,
the per-run ingestion context, and in-batch deduplication on the natural key.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class Provider(str, Enum):
    """Market data providers"""
    STOCKX = "stockx"
    ALIAS = "alias"
    EBAY = "ebay"
    SEED = "seed"


class ConsignedFilter(str, Enum):
    """Which Alias variants to ingest by consignment status"""
    CONSIGNED_ONLY = "consigned_only"
    NON_CONSIGNED_ONLY = "non_consigned_only"
    BOTH = "both"

    def accepts(self, consigned: bool) -> bool:
        if self is ConsignedFilter.CONSIGNED_ONLY:
            return consigned
        if self is ConsignedFilter.NON_CONSIGNED_ONLY:
            return not consigned
        return True


NATURAL_KEY_FIELDS = (
    "provider",
    "provider_source",
    "provider_product_id",
    "provider_variant_id",
    "size_key",
    "currency_code",
    "region_code",
)

NaturalKey = Tuple[Optional[str], ...]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionContext:
    """Caller-supplied context for one normalization run"""
    currency_code: str
    provider_product_id: str
    sku: Optional[str] = None
    region_code: Optional[str] = None
    snapshot_at: Optional[datetime] = None
    category: Optional[str] = None
    gender: Optional[str] = None
    consigned_filter: ConsignedFilter = ConsignedFilter.BOTH
    raw_snapshot_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.snapshot_at is None:
            self.snapshot_at = utcnow()
        self.consigned_filter = ConsignedFilter(self.consigned_filter)

    @classmethod
    def for_alias(
        cls,
        catalog_id: str,
        region_id: Optional[str] = None,
        **kwargs: Any,
    ) -> "IngestionContext":
        """Build a context whose currency and region come from an Alias region id"""
        from market_pipeline.normalization.alias import alias_region

        currency_code, region_code = alias_region(region_id)
        return cls(
            currency_code=currency_code,
            provider_product_id=catalog_id,
            region_code=region_code,
            **kwargs,
        )


@dataclass
class MarketFact:
    """One canonical row of master_market_data. Prices are integer minor units."""
    provider: str
    provider_source: str
    provider_product_id: Optional[str]
    provider_variant_id: Optional[str]
    size_key: str
    currency_code: str
    region_code: Optional[str] = None
    sku: Optional[str] = None
    size_numeric: Optional[float] = None
    size_system: Optional[str] = "US"

    lowest_ask: Optional[int] = None
    highest_bid: Optional[int] = None
    last_sale_price: Optional[int] = None
    sell_faster_price: Optional[int] = None
    earn_more_price: Optional[int] = None
    beat_us_price: Optional[int] = None
    global_indicator_price: Optional[int] = None

    sales_last_72h: Optional[int] = None
    sales_last_30d: Optional[int] = None
    total_sales_volume: Optional[int] = None
    ask_count: Optional[int] = None
    bid_count: Optional[int] = None

    # Not exposed by the current StockX market-data tier
    average_deadstock_price: Optional[int] = None
    volatility: Optional[float] = None
    price_premium: Optional[float] = None

    is_flex: bool = False
    is_consigned: bool = False

    snapshot_at: datetime = field(default_factory=utcnow)
    ingested_at: datetime = field(default_factory=utcnow)
    raw_snapshot_id: Optional[str] = None
    raw_snapshot_provider: Optional[str] = None
    raw_response_excerpt: Optional[Dict[str, Any]] = None

    @property
    def natural_key(self) -> NaturalKey:
        return tuple(
            None if getattr(self, name) is None else str(getattr(self, name))
            for name in NATURAL_KEY_FIELDS
        )

    @property
    def natural_key_id(self) -> str:
        """Serialized natural key, distinct for None and empty string"""
        return json.dumps(list(self.natural_key), separators=(",", ":"))

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["natural_key"] = self.natural_key_id
        return record


FACT_COLUMNS = tuple(f.name for f in fields(MarketFact))


@dataclass
class BuildResult:
    """Rows emitted by a mapper plus why anything was left out"""
    rows: List[MarketFact] = field(default_factory=list)
    skipped_malformed: int = 0
    skipped_invalid_size: int = 0
    skipped_condition: int = 0
    skipped_consigned_filter: int = 0
    skipped_no_availability: int = 0
    skipped_low_confidence: int = 0

    @property
    def skipped(self) -> Dict[str, int]:
        return {
            "malformed": self.skipped_malformed,
            "invalid_size": self.skipped_invalid_size,
            "condition": self.skipped_condition,
            "consigned_filter": self.skipped_consigned_filter,
            "no_availability": self.skipped_no_availability,
            "low_confidence": self.skipped_low_confidence,
        }


def bounded_excerpt(excerpt: Dict[str, Any], max_chars: int = 2000) -> Dict[str, Any]:
    """
    Keep a debug excerpt under max_chars of JSON.

    Keys are dropped from the end until it fits; a truncation marker records
    how many were removed.
    """
    encoded = json.dumps(excerpt, default=str)
    if len(encoded) <= max_chars:
        return excerpt

    kept = dict(excerpt)
    dropped = 0
    while kept and len(json.dumps(kept, default=str)) > max_chars:
        kept.popitem()
        dropped += 1
    kept["_truncated_keys"] = dropped
    return kept


def dedupe_facts(rows: Iterable[MarketFact]) -> List[MarketFact]:
    """
    Collapse rows sharing a natural key, keeping the first one seen.

    snapshot_at is not part of the key, so the same variant synced for
    several regions at slightly different instants stays one row per key.
    """
    unique: Dict[NaturalKey, MarketFact] = {}
    total = 0
    for row in rows:
        total += 1
        unique.setdefault(row.natural_key, row)

    deduplicated = list(unique.values())
    if total != len(deduplicated):
        logger.info(
            "Deduplicated market facts",
            original=total,
            deduplicated=len(deduplicated),
            duplicates_removed=total - len(deduplicated),
        )
    return deduplicated
