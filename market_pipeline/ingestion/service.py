"""
Market Data Ingestion Service

Per-provider entry points that run one normalization pass and persist it:

    raw payload -> row builder -> dedupe -> batch validation (advisory)
        -> fact upsert -> view refresh (best-effort) -> cache invalidation (best-effort)

and the eBay side:

    sold items -> transaction mapper -> outlier flagging -> transaction upsert
    transaction store -> metrics engine -> metric upsert

Each entry point opens its own session through the session provider, so a
write failure rolls back only that call's batch.
"""

from collections import Counter
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from market_pipeline.analytics.metrics import ComputedMetric, MetricsEngine
from market_pipeline.cache import invalidate_market_cache
from market_pipeline.config import Settings, get_settings
from market_pipeline.database.connection import get_db
from market_pipeline.database.repository import MarketDataRepository
from market_pipeline.normalization.alias import (
    aggregate_alias_recent_sales,
    build_alias_rows,
    build_alias_sale_details,
)
from market_pipeline.normalization.ebay import build_ebay_search_rows, map_ebay_transactions
from market_pipeline.normalization.facts import (
    BuildResult,
    IngestionContext,
    MarketFact,
    Provider,
    dedupe_facts,
)
from market_pipeline.normalization.stockx import StockXMarketDataMapper, stockx_variant_ids
from market_pipeline.quality.outliers import flag_price_outliers
from market_pipeline.quality.validators import ValidationStatus, create_market_facts_validator, facts_frame

logger = structlog.get_logger(__name__)

SessionProvider = Callable[[], AbstractAsyncContextManager[AsyncSession]]
CacheInvalidator = Callable[[str, Optional[str]], Awaitable[int]]


class IngestionResult(BaseModel):
    """Outcome of one ingestion call"""
    provider: str
    provider_product_id: Optional[str] = None
    rows_built: int = 0
    rows_written: int = 0
    duplicates_removed: int = 0
    skipped: Dict[str, int] = Field(default_factory=dict)
    validation_status: Optional[ValidationStatus] = None


class VolumeBackfillResult(BaseModel):
    """Outcome of an Alias recent-sales volume backfill"""
    provider_product_id: str
    groups: int = 0
    rows_updated: int = 0
    groups_unmatched: int = 0
    sales_recorded: int = 0


class TransactionIngestionResult(BaseModel):
    """Outcome of an eBay sold-transaction ingestion"""
    search_query: str
    marketplace_id: str
    transactions: int = 0
    rows_written: int = 0
    included: int = 0
    outliers_flagged: int = 0
    exclusion_reasons: Dict[str, int] = Field(default_factory=dict)


class MarketDataIngestionService:
    """
    Normalize provider payloads and write them to the market data store.

    Example:
        service = MarketDataIngestionService()
        context = IngestionContext(currency_code="GBP", provider_product_id=product_id, region_code="UK")
        result = await service.ingest_stockx_market_data(payload, context)
    """

    def __init__(
        self,
        session_provider: SessionProvider = get_db,
        cache_invalidator: Optional[CacheInvalidator] = invalidate_market_cache,
        settings: Optional[Settings] = None,
    ):
        self.session_provider = session_provider
        self.cache_invalidator = cache_invalidator
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Fact writes
    # -------------------------------------------------------------------------

    async def _write_facts(
        self,
        repo: MarketDataRepository,
        rows: Sequence[MarketFact],
        result: IngestionResult,
    ) -> None:
        facts = dedupe_facts(rows)
        result.duplicates_removed = len(rows) - len(facts)
        if not facts:
            return

        validation = create_market_facts_validator().validate(facts_frame(facts))
        result.validation_status = validation.status
        if validation.status != ValidationStatus.PASSED:
            logger.warning(
                "Market fact batch failed validation, writing anyway",
                provider=result.provider,
                provider_product_id=result.provider_product_id,
                failed_checks=[check.name for check in validation.failed],
            )

        result.rows_written = await repo.upsert_market_facts(facts)
        await repo.refresh_market_views(self.settings.ingestion.market_views)

    async def _invalidate_cache(self, provider: str, product_id: Optional[str]) -> None:
        if self.cache_invalidator is None or not self.settings.redis.cache_enabled:
            return
        await self.cache_invalidator(provider, product_id)

    def _result(self, provider: Provider, product_id: Optional[str], built: BuildResult) -> IngestionResult:
        return IngestionResult(
            provider=provider.value,
            provider_product_id=product_id,
            rows_built=len(built.rows),
            skipped=built.skipped,
        )

    async def ingest_stockx_market_data(self, payload: Any, context: IngestionContext) -> IngestionResult:
        """Normalize a StockX market-data response for one product and upsert it"""
        async with self.session_provider() as session:
            repo = MarketDataRepository(session)
            size_lookup = await repo.fetch_stockx_size_map(stockx_variant_ids(payload))
            mapper = StockXMarketDataMapper(
                context,
                size_lookup=size_lookup,
                excerpt_max_chars=self.settings.ingestion.excerpt_max_chars,
            )
            built = mapper.build(payload)
            result = self._result(Provider.STOCKX, context.provider_product_id, built)
            await self._write_facts(repo, built.rows, result)

        if result.rows_written:
            await self._invalidate_cache(Provider.STOCKX.value, context.provider_product_id)

        logger.info(
            "StockX ingestion complete",
            product_id=context.provider_product_id,
            currency_code=context.currency_code,
            rows_written=result.rows_written,
            skipped=result.skipped,
        )
        return result

    async def ingest_alias_availabilities(self, payload: Any, context: IngestionContext) -> IngestionResult:
        """Normalize an Alias availabilities response for one catalog item and upsert it"""
        built = build_alias_rows(payload, context, excerpt_max_chars=self.settings.ingestion.excerpt_max_chars)
        result = self._result(Provider.ALIAS, context.provider_product_id, built)

        if built.rows:
            async with self.session_provider() as session:
                await self._write_facts(MarketDataRepository(session), built.rows, result)

        if result.rows_written:
            await self._invalidate_cache(Provider.ALIAS.value, context.provider_product_id)

        logger.info(
            "Alias ingestion complete",
            catalog_id=context.provider_product_id,
            region_code=context.region_code,
            consigned_filter=context.consigned_filter.value,
            rows_written=result.rows_written,
            skipped=result.skipped,
        )
        return result

    async def ingest_alias_recent_sales(
        self,
        payload: Any,
        context: IngestionContext,
        now: Optional[datetime] = None,
    ) -> VolumeBackfillResult:
        """
        Backfill sales volume onto existing Alias rows.

        Groups with no matching row are counted, not treated as errors. Each
        sale is also appended to the recent-sales time series; that insert is
        best-effort and does not fail the backfill.
        """
        updates = aggregate_alias_recent_sales(payload, now=now)
        result = VolumeBackfillResult(provider_product_id=context.provider_product_id, groups=len(updates))
        if not updates:
            return result

        async with self.session_provider() as session:
            repo = MarketDataRepository(session)
            for volume in updates:
                matched = await repo.apply_alias_volume_update(context, volume)
                if matched == 0:
                    logger.debug(
                        "No Alias row for volume update",
                        catalog_id=context.provider_product_id,
                        size_key=volume.size_key,
                        is_consigned=volume.is_consigned,
                    )
                    result.groups_unmatched += 1
                result.rows_updated += matched

            result.sales_recorded = await repo.insert_alias_sale_details(
                build_alias_sale_details(payload, context)
            )

        logger.info(
            "Alias volume backfill complete",
            catalog_id=context.provider_product_id,
            groups=result.groups,
            rows_updated=result.rows_updated,
            groups_unmatched=result.groups_unmatched,
            sales_recorded=result.sales_recorded,
        )
        return result

    # -------------------------------------------------------------------------
    # eBay
    # -------------------------------------------------------------------------

    async def ingest_ebay_search_results(
        self,
        items: Any,
        search_query: str,
        currency_code: str,
        sold_items_only: bool = True,
        marketplace_id: Optional[str] = None,
    ) -> IngestionResult:
        """Write the cheapest eBay listing per (sku, size) as market facts"""
        built = build_ebay_search_rows(
            items,
            search_query,
            currency_code,
            sold_items_only=sold_items_only,
            marketplace_id=marketplace_id or self.settings.ingestion.default_marketplace_id,
        )
        result = self._result(Provider.EBAY, None, built)

        if built.rows:
            async with self.session_provider() as session:
                await self._write_facts(MarketDataRepository(session), built.rows, result)

        if result.rows_written:
            for sku in sorted({row.sku for row in built.rows if row.sku}):
                await self._invalidate_cache(Provider.EBAY.value, sku)
        return result

    async def ingest_ebay_transactions(
        self,
        items: Any,
        search_query: str,
        marketplace_id: Optional[str] = None,
        flag_outliers: bool = True,
    ) -> TransactionIngestionResult:
        """Map sold items to transactions, flag price outliers and upsert them"""
        marketplace_id = marketplace_id or self.settings.ingestion.default_marketplace_id
        transactions = map_ebay_transactions(items, search_query, marketplace_id)

        outliers_flagged = flag_price_outliers(transactions) if flag_outliers else 0
        result = TransactionIngestionResult(
            search_query=search_query,
            marketplace_id=marketplace_id,
            transactions=len(transactions),
            included=sum(1 for t in transactions if t.included_in_metrics),
            outliers_flagged=outliers_flagged,
            exclusion_reasons=dict(Counter(t.exclusion_reason for t in transactions if t.exclusion_reason)),
        )
        if not transactions:
            return result

        async with self.session_provider() as session:
            result.rows_written = await MarketDataRepository(session).upsert_transactions(transactions)

        logger.info(
            "eBay transactions stored",
            search_query=search_query,
            marketplace_id=marketplace_id,
            rows_written=result.rows_written,
            included=result.included,
            outliers_flagged=outliers_flagged,
        )
        return result

    async def compute_ebay_metrics(
        self,
        sku: Optional[str] = None,
        size_key: Optional[str] = None,
        marketplace_id: Optional[str] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> List[ComputedMetric]:
        """Recompute eBay metrics for the matching transaction groups"""
        async with self.session_provider() as session:
            engine = MetricsEngine(
                MarketDataRepository(session),
                default_marketplace_id=self.settings.ingestion.default_marketplace_id,
            )
            return await engine.run(
                sku=sku,
                size_key=size_key,
                marketplace_id=marketplace_id,
                dry_run=dry_run,
                now=now,
            )

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    async def sweep_expired_facts(
        self,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete facts older than the retention window (settings default)"""
        async with self.session_provider() as session:
            return await MarketDataRepository(session).delete_expired_facts(
                retention_days or self.settings.ingestion.retention_days,
                now=now,
            )
