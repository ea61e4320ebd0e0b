"""
eBay Metrics Computation Engine

Reads individual sold transactions, groups them by
(sku, size_key, currency_code, marketplace_id) and computes, per group:

- rolling medians over 72h / 7d / 30d / 90d with their sample sizes
- 90d min, max and volatility (coefficient of variation)
- outlier accounting over every 90d sale, excluded ones included
- liquidity and confidence scores (0-100)

Prices come only from transactions flagged included_in_metrics; the outlier
ratio deliberately counts all of them so confidence reflects raw noise.
"""

from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import structlog

from market_pipeline.analytics.statistics import (
    coefficient_of_variation,
    confidence_score,
    liquidity_score,
    median,
)
from market_pipeline.normalization.facts import utcnow
from market_pipeline.normalization.prices import round_half_up

logger = structlog.get_logger(__name__)

WINDOWS: Dict[str, timedelta] = {
    "72h": timedelta(hours=72),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}

GroupKey = Tuple[str, str, str, str]


@dataclass
class TransactionFact:
    """A sold transaction as the engine sees it"""
    sku: str
    size_key: str
    currency_code: str
    marketplace_id: str
    sale_price_cents: int
    sold_at: datetime
    included_in_metrics: bool = True
    is_outlier: bool = False
    size_system: Optional[str] = None

    @property
    def group_key(self) -> GroupKey:
        return (self.sku, self.size_key, self.currency_code, self.marketplace_id)


@dataclass
class ComputedMetric:
    """One row of ebay_computed_metrics"""
    sku: str
    size_key: str
    size_system: Optional[str]
    currency_code: str
    marketplace_id: str

    median_72h_cents: Optional[int]
    median_7d_cents: Optional[int]
    median_30d_cents: Optional[int]
    median_90d_cents: Optional[int]

    sample_size_72h: int
    sample_size_7d: int
    sample_size_30d: int
    sample_size_90d: int

    min_price_90d_cents: Optional[int]
    max_price_90d_cents: Optional[int]
    volatility_90d: Optional[float]

    liquidity_score: int
    confidence_score: int

    total_sales_90d: int
    outlier_count_90d: int
    outlier_ratio_90d: Optional[float]

    computed_at: datetime
    last_sale_at: Optional[datetime]

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _rounded(value: Optional[float]) -> Optional[int]:
    return None if value is None else round_half_up(value)


def group_transactions(transactions: Iterable[TransactionFact]) -> "OrderedDict[GroupKey, List[TransactionFact]]":
    """Group by (sku, size_key, currency_code, marketplace_id), first-seen order"""
    groups: "OrderedDict[GroupKey, List[TransactionFact]]" = OrderedDict()
    for transaction in transactions:
        groups.setdefault(transaction.group_key, []).append(transaction)
    return groups


def compute_group_metrics(
    transactions: Sequence[TransactionFact],
    now: Optional[datetime] = None,
) -> Optional[ComputedMetric]:
    """
    Compute metrics for one group. All transactions must share a group key.

    Args:
        transactions: The group's transactions
        now: Anchor for the time windows; pass it explicitly for repeatable output

    Returns:
        ComputedMetric, or None for an empty group
    """
    if not transactions:
        return None

    now = _as_utc(now or utcnow())
    first = transactions[0]
    cutoffs = {name: now - span for name, span in WINDOWS.items()}

    dated = [(transaction, _as_utc(transaction.sold_at)) for transaction in transactions]
    included = [(t, sold_at) for t, sold_at in dated if t.included_in_metrics]

    prices: Dict[str, List[int]] = {
        name: [t.sale_price_cents for t, sold_at in included if sold_at >= cutoff]
        for name, cutoff in cutoffs.items()
    }
    prices_90d = prices["90d"]
    volatility_90d = coefficient_of_variation(prices_90d)

    all_90d = [t for t, sold_at in dated if sold_at >= cutoffs["90d"]]
    total_sales_90d = len(all_90d)
    outlier_count_90d = sum(1 for t in all_90d if t.is_outlier)
    outlier_ratio_90d = outlier_count_90d / total_sales_90d if total_sales_90d else None

    last_sale_at = max((sold_at for _, sold_at in included), default=None)

    return ComputedMetric(
        sku=first.sku,
        size_key=first.size_key,
        size_system=first.size_system,
        currency_code=first.currency_code,
        marketplace_id=first.marketplace_id,
        median_72h_cents=_rounded(median(prices["72h"])),
        median_7d_cents=_rounded(median(prices["7d"])),
        median_30d_cents=_rounded(median(prices["30d"])),
        median_90d_cents=_rounded(median(prices_90d)),
        sample_size_72h=len(prices["72h"]),
        sample_size_7d=len(prices["7d"]),
        sample_size_30d=len(prices["30d"]),
        sample_size_90d=len(prices_90d),
        min_price_90d_cents=min(prices_90d) if prices_90d else None,
        max_price_90d_cents=max(prices_90d) if prices_90d else None,
        volatility_90d=volatility_90d,
        liquidity_score=liquidity_score(
            len(prices["72h"]),
            len(prices["7d"]),
            len(prices["30d"]),
            last_sale_at,
            now,
        ),
        confidence_score=confidence_score(len(prices_90d), volatility_90d, outlier_ratio_90d),
        total_sales_90d=total_sales_90d,
        outlier_count_90d=outlier_count_90d,
        outlier_ratio_90d=outlier_ratio_90d,
        computed_at=now,
        last_sale_at=last_sale_at,
    )


def compute_metrics(
    transactions: Iterable[TransactionFact],
    now: Optional[datetime] = None,
) -> List[ComputedMetric]:
    """Group transactions and compute one metric per group"""
    now = now or utcnow()
    groups = group_transactions(transactions)

    metrics = []
    for group in groups.values():
        metric = compute_group_metrics(group, now)
        if metric is not None:
            metrics.append(metric)

    logger.info(
        "Computed eBay metrics",
        groups=len(groups),
        metrics=len(metrics),
        with_data_72h=sum(1 for m in metrics if m.median_72h_cents is not None),
        with_data_7d=sum(1 for m in metrics if m.median_7d_cents is not None),
        with_data_30d=sum(1 for m in metrics if m.median_30d_cents is not None),
        with_data_90d=sum(1 for m in metrics if m.median_90d_cents is not None),
    )
    return metrics


class MetricsStore(Protocol):
    """Storage the engine reads transactions from and writes metrics to"""

    async def fetch_transactions(
        self,
        marketplace_id: str,
        sku: Optional[str] = None,
        size_key: Optional[str] = None,
    ) -> List[TransactionFact]:
        ...

    async def upsert_metrics(self, metrics: Sequence[ComputedMetric]) -> int:
        ...


class MetricsEngine:
    """
    Read -> group -> compute -> write pipeline for eBay metrics.

    Example:
        engine = MetricsEngine(store)
        metrics = await engine.run(sku="DD1391-100")
    """

    def __init__(self, store: MetricsStore, default_marketplace_id: str = "EBAY_GB"):
        self.store = store
        self.default_marketplace_id = default_marketplace_id

    async def run(
        self,
        sku: Optional[str] = None,
        size_key: Optional[str] = None,
        marketplace_id: Optional[str] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> List[ComputedMetric]:
        marketplace_id = marketplace_id or self.default_marketplace_id
        transactions = await self.store.fetch_transactions(marketplace_id, sku=sku, size_key=size_key)

        if not transactions:
            logger.info("No eBay transactions found", sku=sku, size_key=size_key, marketplace_id=marketplace_id)
            return []

        metrics = compute_metrics(transactions, now)

        if dry_run:
            logger.info("Dry run, metrics not written", metrics=len(metrics))
            return metrics

        written = await self.store.upsert_metrics(metrics)
        logger.info("Upserted eBay metrics", metrics=written, marketplace_id=marketplace_id)
        return metrics
