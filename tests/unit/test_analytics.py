"""
Unit Tests - eBay Metrics Engine
"""
from datetime import timedelta

import pytest

from market_pipeline.analytics.metrics import (
    MetricsEngine,
    TransactionFact,
    compute_group_metrics,
    compute_metrics,
    group_transactions,
)
from market_pipeline.analytics.statistics import (
    coefficient_of_variation,
    confidence_score,
    liquidity_score,
    median,
    population_std,
)


def sale(now, price, age, included=True, outlier=False, sku="DD1391-100", size_key="UK 9"):
    return TransactionFact(
        sku=sku,
        size_key=size_key,
        currency_code="GBP",
        marketplace_id="EBAY_GB",
        sale_price_cents=price,
        sold_at=now - age,
        included_in_metrics=included,
        is_outlier=outlier,
        size_system="UK",
    )


@pytest.fixture
def group(now):
    return [
        sale(now, 10000, timedelta(hours=12)),
        sale(now, 11000, timedelta(hours=30)),
        sale(now, 10500, timedelta(days=5)),
        sale(now, 9500, timedelta(days=20)),
        sale(now, 50000, timedelta(days=10), included=False, outlier=True),
        sale(now, 9000, timedelta(days=100)),
    ]


class TestStatistics:
    """Tests for statistical primitives"""

    def test_median(self):
        assert median([100, 200, 300]) == 200
        assert median([100, 200]) == 150
        assert median([300, 100, 200]) == 200
        assert median([]) is None

    def test_volatility_edge_cases(self):
        assert coefficient_of_variation([100]) is None
        assert coefficient_of_variation([]) is None
        assert coefficient_of_variation([100, 100, 100]) == 0
        assert coefficient_of_variation([0, 0]) is None

    def test_volatility_uses_population_std(self):
        # std (N) of [90, 110] is 10, mean 100
        assert coefficient_of_variation([90, 110]) == pytest.approx(10.0)
        assert population_std([90, 110]) == pytest.approx(10.0)
        assert population_std([90]) is None

    def test_liquidity_components(self, now):
        assert liquidity_score(0, 0, 0, None, now) == 0
        assert liquidity_score(5, 10, 20, now - timedelta(hours=1), now) == 100
        assert liquidity_score(50, 50, 50, now, now) == 100
        assert liquidity_score(0, 0, 0, now - timedelta(hours=48), now) == 7
        assert liquidity_score(0, 0, 0, now - timedelta(hours=100), now) == 5
        assert liquidity_score(0, 0, 1, now - timedelta(days=20), now) == 3

    def test_confidence_components(self):
        # No data: 0 sample + 10 unknown volatility + 20 unknown outliers
        assert confidence_score(0, None, None) == 30
        assert confidence_score(30, 0.0, 0.0) == 100
        assert confidence_score(30, 80.0, 0.5) == 50
        assert confidence_score(15, 25.0, 0.1) == 50

    @pytest.mark.parametrize("args", [
        (0, None, None),
        (1000, 0.0, 0.0),
        (1000, 500.0, 1.0),
        (3, 12.345, 0.033),
    ])
    def test_confidence_bounds(self, args):
        score = confidence_score(*args)
        assert isinstance(score, int)
        assert 0 <= score <= 100

    @pytest.mark.parametrize("counts, hours", [
        ((0, 0, 0), None),
        ((100, 100, 100), 0),
        ((1, 2, 3), 500),
    ])
    def test_liquidity_bounds(self, now, counts, hours):
        last_sale = None if hours is None else now - timedelta(hours=hours)
        score = liquidity_score(*counts, last_sale, now)
        assert isinstance(score, int)
        assert 0 <= score <= 100


class TestGroupMetrics:
    """Tests for per-group metric computation"""

    def test_windows_and_medians(self, group, now):
        metric = compute_group_metrics(group, now)

        assert (metric.sample_size_72h, metric.sample_size_7d, metric.sample_size_30d, metric.sample_size_90d) == (2, 3, 4, 4)
        assert metric.median_72h_cents == 10500
        assert metric.median_7d_cents == 10500
        assert metric.median_30d_cents == 10250
        assert metric.median_90d_cents == 10250
        assert metric.min_price_90d_cents == 9500
        assert metric.max_price_90d_cents == 11000

    def test_volatility_and_outliers(self, group, now):
        metric = compute_group_metrics(group, now)

        assert metric.volatility_90d == pytest.approx(5.4538, abs=1e-4)
        # Outlier ratio counts every 90d sale, excluded ones too
        assert metric.total_sales_90d == 5
        assert metric.outlier_count_90d == 1
        assert metric.outlier_ratio_90d == pytest.approx(0.2)

    def test_scores(self, group, now):
        metric = compute_group_metrics(group, now)

        assert metric.liquidity_score == 39
        assert metric.confidence_score == 33
        assert metric.last_sale_at == now - timedelta(hours=12)
        assert metric.computed_at == now

    def test_window_cutoff_is_inclusive(self, now):
        metric = compute_group_metrics([sale(now, 100, timedelta(hours=72))], now)
        assert metric.sample_size_72h == 1

    def test_no_included_sales(self, now):
        metric = compute_group_metrics([sale(now, 100, timedelta(days=1), included=False, outlier=True)], now)

        assert metric.median_90d_cents is None
        assert metric.min_price_90d_cents is None
        assert metric.volatility_90d is None
        assert metric.last_sale_at is None
        assert metric.liquidity_score == 0
        assert metric.outlier_ratio_90d == 1.0
        assert metric.confidence_score == 10

    def test_median_rounds_half_up(self, now):
        metric = compute_group_metrics(
            [sale(now, 100, timedelta(hours=1)), sale(now, 101, timedelta(hours=2))],
            now,
        )
        assert metric.median_72h_cents == 101

    def test_naive_datetimes_treated_as_utc(self, now):
        naive = sale(now, 100, timedelta(hours=1))
        naive.sold_at = naive.sold_at.replace(tzinfo=None)

        metric = compute_group_metrics([naive], now)

        assert metric.sample_size_72h == 1
        assert metric.last_sale_at.tzinfo is not None

    def test_empty_group(self, now):
        assert compute_group_metrics([], now) is None

    def test_deterministic(self, group, now):
        assert compute_group_metrics(group, now) == compute_group_metrics(list(group), now)


class TestComputeMetrics:
    """Tests for grouping and batch computation"""

    def test_groups_by_dimensions(self, now):
        transactions = [
            sale(now, 100, timedelta(hours=1)),
            sale(now, 200, timedelta(hours=1), size_key="UK 10"),
            sale(now, 300, timedelta(hours=1)),
        ]

        groups = group_transactions(transactions)
        metrics = compute_metrics(transactions, now)

        assert list(groups) == [
            ("DD1391-100", "UK 9", "GBP", "EBAY_GB"),
            ("DD1391-100", "UK 10", "GBP", "EBAY_GB"),
        ]
        assert [(m.size_key, m.sample_size_72h) for m in metrics] == [("UK 9", 2), ("UK 10", 1)]


class InMemoryStore:
    """Metrics store stand-in"""

    def __init__(self, transactions):
        self.transactions = transactions
        self.written = []
        self.queries = []

    async def fetch_transactions(self, marketplace_id, sku=None, size_key=None):
        self.queries.append((marketplace_id, sku, size_key))
        return [
            t for t in self.transactions
            if t.marketplace_id == marketplace_id
            and (sku is None or t.sku == sku)
            and (size_key is None or t.size_key == size_key)
        ]

    async def upsert_metrics(self, metrics):
        self.written.extend(metrics)
        return len(metrics)


class TestMetricsEngine:
    """Tests for the read-compute-write pipeline"""

    async def test_run_writes_metrics(self, group, now):
        store = InMemoryStore(group)
        engine = MetricsEngine(store)

        metrics = await engine.run(sku="DD1391-100", now=now)

        assert len(metrics) == 1
        assert store.written == metrics
        assert store.queries == [("EBAY_GB", "DD1391-100", None)]

    async def test_dry_run_skips_write(self, group, now):
        store = InMemoryStore(group)

        metrics = await MetricsEngine(store).run(dry_run=True, now=now)

        assert len(metrics) == 1
        assert store.written == []

    async def test_no_transactions(self, now):
        store = InMemoryStore([])

        assert await MetricsEngine(store).run(marketplace_id="EBAY_US", now=now) == []
        assert store.written == []
