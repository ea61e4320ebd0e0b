"""
Integration Tests - Ingestion Service (SQLite)
"""
from datetime import timedelta

import pytest

from market_pipeline.config.settings import Settings
from market_pipeline.database.repository import MarketDataRepository
from market_pipeline.errors import PersistenceError
from market_pipeline.ingestion.service import MarketDataIngestionService
from market_pipeline.normalization.facts import IngestionContext
from market_pipeline.quality.validators import ValidationStatus


@pytest.fixture
def service(session_provider, cache_invalidator, test_settings) -> MarketDataIngestionService:
    return MarketDataIngestionService(
        session_provider=session_provider,
        cache_invalidator=cache_invalidator,
        settings=test_settings,
    )


async def stored_facts(session_provider, provider=None):
    async with session_provider() as session:
        return await MarketDataRepository(session).fetch_market_facts(provider)


class TestStockXIngestion:
    """Tests for StockX ingestion"""

    async def test_sizes_resolved_from_variant_table(self, service, session_provider, stockx_context, stockx_payload):
        async with session_provider() as session:
            await MarketDataRepository(session).upsert_stockx_variants([
                {"stockx_variant_id": "v-1", "stockx_product_id": "prod-123", "variant_value": "10"},
                {"stockx_variant_id": "v-2", "stockx_product_id": "prod-123", "variant_value": "10.5"},
            ])

        result = await service.ingest_stockx_market_data(stockx_payload, stockx_context)

        assert result.rows_built == 3
        assert result.rows_written == 3
        assert result.validation_status == ValidationStatus.PASSED
        assert [row.size_key for row in await stored_facts(session_provider, "stockx")] == ["10", "10", "10.5"]

    async def test_reingestion_is_idempotent(self, service, session_provider, stockx_context, stockx_payload, cache_invalidator):
        await service.ingest_stockx_market_data(stockx_payload, stockx_context)
        await service.ingest_stockx_market_data(stockx_payload, stockx_context)

        assert len(await stored_facts(session_provider, "stockx")) == 3
        assert cache_invalidator.calls == [("stockx", "prod-123"), ("stockx", "prod-123")]

    async def test_malformed_payload_writes_nothing(self, service, session_provider, stockx_context, cache_invalidator):
        result = await service.ingest_stockx_market_data({"error": "rate limited"}, stockx_context)

        assert result.rows_written == 0
        assert await stored_facts(session_provider) == []
        assert cache_invalidator.calls == []


class TestAliasIngestion:
    """Tests for Alias availability ingestion and volume backfill"""

    async def test_availabilities_then_volume_backfill(
        self, service, session_provider, alias_context, alias_payload, alias_recent_sales, now
    ):
        ingested = await service.ingest_alias_availabilities(alias_payload, alias_context)
        backfill = await service.ingest_alias_recent_sales(alias_recent_sales, alias_context, now=now)

        assert ingested.rows_written == 3
        assert ingested.skipped["condition"] == 1
        assert (backfill.groups, backfill.rows_updated, backfill.groups_unmatched) == (2, 1, 1)

        rows = {(r.size_key, r.is_consigned): r for r in await stored_facts(session_provider, "alias")}
        ten = rows[("10", False)]
        assert (ten.sales_last_72h, ten.sales_last_30d, ten.total_sales_volume) == (2, 3, 3)
        assert ten.last_sale_price == 14000
        assert ten.lowest_ask == 14500
        assert rows[("10", True)].sales_last_72h is None

        async with session_provider() as session:
            details = await MarketDataRepository(session).fetch_alias_sale_details("air-jordan-1-chicago")
        assert backfill.sales_recorded == 5
        assert [(d.size_key, d.price_cents, d.region_code) for d in details[:2]] == [
            ("10", 14000, "UK"),
            ("10.5", 15500, "UK"),
        ]

    async def test_backfill_without_rows_is_noop(self, service, alias_context, alias_recent_sales, now):
        backfill = await service.ingest_alias_recent_sales(alias_recent_sales, alias_context, now=now)

        assert backfill.rows_updated == 0
        assert backfill.groups_unmatched == 2
        assert backfill.sales_recorded == 5

    async def test_cache_disabled(self, session_provider, cache_invalidator, alias_context, alias_payload):
        service = MarketDataIngestionService(
            session_provider=session_provider,
            cache_invalidator=cache_invalidator,
            settings=Settings(app_env="testing"),
        )

        await service.ingest_alias_availabilities(alias_payload, alias_context)

        assert cache_invalidator.calls == []


class TestEbayIngestion:
    """Tests for eBay search rows, transactions and metrics"""

    async def test_search_results(self, service, session_provider, ebay_items, cache_invalidator):
        result = await service.ingest_ebay_search_results(ebay_items, "DD1391-100", "GBP")

        rows = await stored_facts(session_provider, "ebay")
        assert result.rows_written == 1
        assert [(row.sku, row.size_key, row.last_sale_price) for row in rows] == [("DD1391-100", "UK 9", 9000)]
        assert cache_invalidator.calls == [("ebay", "DD1391-100")]

    async def test_transactions_and_metrics(self, service, session_provider, ebay_items, now):
        ingested = await service.ingest_ebay_transactions(ebay_items, "DD1391-100")
        metrics = await service.compute_ebay_metrics(sku="DD1391-100", now=now)

        assert ingested.transactions == 5
        assert ingested.included == 4
        assert ingested.outliers_flagged == 0
        assert ingested.exclusion_reasons == {"not_new_condition": 1}

        assert len(metrics) == 1
        metric = metrics[0]
        assert (metric.sku, metric.size_key, metric.currency_code) == ("DD1391-100", "UK 9", "GBP")
        assert metric.median_90d_cents == 10250

        async with session_provider() as session:
            stored = await MarketDataRepository(session).fetch_metrics("EBAY_GB")
        assert [(m.size_key, m.median_90d_cents) for m in stored] == [("UK 9", 10250)]

    async def test_outlier_flagged_on_ingest(self, service, session_provider, make_ebay_item, now):
        prices = ["100.00", "102.00", "104.00", "106.00", "900.00"]
        items = [make_ebay_item(str(i), price, hours_ago=24, now=now) for i, price in enumerate(prices)]

        ingested = await service.ingest_ebay_transactions(items, "DD1391-100")
        metrics = await service.compute_ebay_metrics(now=now)

        assert ingested.outliers_flagged == 1
        assert metrics[0].outlier_count_90d == 1
        assert metrics[0].max_price_90d_cents == 10600

    async def test_dry_run_does_not_persist(self, service, session_provider, ebay_items, now):
        await service.ingest_ebay_transactions(ebay_items, "DD1391-100")

        metrics = await service.compute_ebay_metrics(dry_run=True, now=now)

        async with session_provider() as session:
            assert await MarketDataRepository(session).fetch_metrics("EBAY_GB") == []
        assert len(metrics) == 1


class TestRetentionAndFailures:
    """Tests for the retention sweep and write failures"""

    async def test_sweep_expired_facts(self, service, session_provider, stockx_context, stockx_payload, now):
        await service.ingest_stockx_market_data(stockx_payload, stockx_context)

        assert await service.sweep_expired_facts(retention_days=30, now=now) == 0
        assert await service.sweep_expired_facts(retention_days=30, now=now + timedelta(days=31)) == 3
        assert await stored_facts(session_provider) == []

    async def test_failed_write_rolls_back(self, service, session_provider, cache_invalidator, make_alias_variant, now):
        """Test a rejected batch leaves no rows and skips cache invalidation"""
        # currency_code violates NOT NULL on write
        context = IngestionContext(currency_code=None, provider_product_id="cat-1", snapshot_at=now)
        payload = {"variants": [make_alias_variant(10), make_alias_variant(10.5)]}

        with pytest.raises(PersistenceError):
            await service.ingest_alias_availabilities(payload, context)

        assert await stored_facts(session_provider) == []
        assert cache_invalidator.calls == []
