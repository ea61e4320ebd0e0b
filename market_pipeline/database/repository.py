"""
Market Data Repository

Write and read paths for the fact store, the eBay transaction store and the
metric store. Upserts use INSERT ... ON CONFLICT DO UPDATE for the bound
dialect (PostgreSQL in production, SQLite in tests).

Write failures are logged and re-raised as PersistenceError; the caller's
session context decides whether to roll back.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog
from sqlalchemy import and_, delete, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from market_pipeline.analytics.metrics import ComputedMetric, TransactionFact
from market_pipeline.database.models import (
    AliasRecentSaleDetail,
    EbayComputedMetric,
    EbaySoldTransaction,
    MasterMarketData,
    StockXVariant,
)
from market_pipeline.errors import PersistenceError
from market_pipeline.normalization.alias import AliasSaleDetail, AliasVolumeUpdate
from market_pipeline.normalization.ebay import EbayTransaction
from market_pipeline.normalization.facts import IngestionContext, MarketFact, Provider, utcnow

logger = structlog.get_logger(__name__)

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit
BATCH_SIZE = 200

METRIC_GROUP_COLUMNS = ("sku", "size_key", "currency_code", "marketplace_id")


def collapse_on_conflict_keys(
    records: Sequence[Dict[str, Any]],
    conflict_columns: Sequence[str],
) -> List[Dict[str, Any]]:
    """
    Keep one record per conflict key, the last one seen.

    PostgreSQL rejects an ON CONFLICT DO UPDATE statement that touches the
    same row twice, so repeats must not reach one INSERT.
    """
    unique: Dict[tuple, Dict[str, Any]] = {}
    for record in records:
        unique[tuple(record.get(column) for column in conflict_columns)] = record
    return list(unique.values())


class MarketDataRepository:
    """
    Persistence for market facts, eBay transactions and computed metrics.

    Example:
        async with get_db() as session:
            repo = MarketDataRepository(session)
            await repo.upsert_market_facts(result.rows)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _insert(self, model):
        if self.dialect == "postgresql":
            return pg_insert(model)
        if self.dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upsert not supported for dialect {self.dialect}")

    async def _upsert(
        self,
        operation: str,
        model,
        records: List[Dict[str, Any]],
        conflict_columns: Sequence[str],
    ) -> int:
        if not records:
            return 0

        collapsed = collapse_on_conflict_keys(records, conflict_columns)
        if len(collapsed) < len(records):
            logger.debug(
                "Collapsed repeated conflict keys",
                operation=operation,
                rows=len(records),
                unique=len(collapsed),
            )
        records = collapsed

        update_columns = [
            column.name
            for column in model.__table__.columns
            if column.name not in conflict_columns and column.name != "id" and column.name in records[0]
        ]

        written = 0
        try:
            for start in range(0, len(records), BATCH_SIZE):
                batch = records[start:start + BATCH_SIZE]
                stmt = self._insert(model).values(batch)
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(conflict_columns),
                    set_={name: stmt.excluded[name] for name in update_columns},
                )
                await self.session.execute(stmt)
                written += len(batch)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Upsert failed",
                operation=operation,
                table=model.__tablename__,
                rows=len(records),
                error=str(e),
            )
            raise PersistenceError(operation, str(e)) from e

        return written

    # -------------------------------------------------------------------------
    # Fact store
    # -------------------------------------------------------------------------

    async def upsert_market_facts(self, facts: Sequence[MarketFact]) -> int:
        """Insert or update facts keyed on their natural key. Returns rows written."""
        records = [fact.to_record() for fact in facts]
        written = await self._upsert("upsert_market_facts", MasterMarketData, records, ["natural_key"])
        if written:
            logger.info("Upserted market facts", rows=written, provider=facts[0].provider)
        return written

    async def fetch_market_facts(
        self,
        provider: Optional[str] = None,
        provider_product_id: Optional[str] = None,
    ) -> List[MasterMarketData]:
        query = select(MasterMarketData)
        if provider is not None:
            query = query.where(MasterMarketData.provider == provider)
        if provider_product_id is not None:
            query = query.where(MasterMarketData.provider_product_id == provider_product_id)
        query = query.order_by(MasterMarketData.id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def apply_alias_volume_update(self, context: IngestionContext, volume: AliasVolumeUpdate) -> int:
        """
        Write recent-sales volume onto existing Alias rows.

        Returns the number of rows matched; zero is not an error.
        """
        region_match = (
            MasterMarketData.region_code.is_(None)
            if context.region_code is None
            else MasterMarketData.region_code == context.region_code
        )
        stmt = (
            update(MasterMarketData)
            .where(
                and_(
                    MasterMarketData.provider == Provider.ALIAS.value,
                    MasterMarketData.provider_product_id == context.provider_product_id,
                    MasterMarketData.size_key == volume.size_key,
                    MasterMarketData.currency_code == context.currency_code,
                    region_match,
                    MasterMarketData.is_consigned == volume.is_consigned,
                )
            )
            .values(
                sales_last_72h=volume.sales_last_72h,
                sales_last_30d=volume.sales_last_30d,
                total_sales_volume=volume.total_sales_volume,
                last_sale_price=volume.last_sale_price,
                ingested_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Alias volume update failed",
                catalog_id=context.provider_product_id,
                size_key=volume.size_key,
                error=str(e),
            )
            raise PersistenceError("apply_alias_volume_update", str(e)) from e

        return result.rowcount or 0

    async def insert_alias_sale_details(self, details: Sequence[AliasSaleDetail]) -> int:
        """
        Append recent sales to the time-series table.

        Runs in a savepoint; a failure is logged, rolled back on its own and
        reported as 0 rows so the volume updates in the same session survive.
        """
        if not details:
            return 0

        records = [detail.to_record() for detail in details]
        try:
            async with self.session.begin_nested():
                for start in range(0, len(records), BATCH_SIZE):
                    await self.session.execute(insert(AliasRecentSaleDetail), records[start:start + BATCH_SIZE])
        except SQLAlchemyError as e:
            logger.warning(
                "Alias sales detail insert failed",
                catalog_id=details[0].catalog_id,
                rows=len(records),
                error=str(e),
            )
            return 0

        return len(records)

    async def fetch_alias_sale_details(self, catalog_id: str) -> List[AliasRecentSaleDetail]:
        result = await self.session.execute(
            select(AliasRecentSaleDetail)
            .where(AliasRecentSaleDetail.catalog_id == catalog_id)
            .order_by(AliasRecentSaleDetail.purchased_at.desc(), AliasRecentSaleDetail.id)
        )
        return list(result.scalars().all())

    async def delete_expired_facts(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Delete facts whose snapshot_at is older than the retention window"""
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        stmt = (
            delete(MasterMarketData)
            .where(MasterMarketData.snapshot_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Retention sweep failed", cutoff=cutoff.isoformat(), error=str(e))
            raise PersistenceError("delete_expired_facts", str(e)) from e

        deleted = result.rowcount or 0
        logger.info("Retention sweep complete", cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted

    async def refresh_market_views(self, views: Iterable[str]) -> None:
        """Refresh materialized views. Failures are logged and do not propagate."""
        views = list(views)
        if not views:
            return
        if self.dialect != "postgresql":
            logger.debug("Skipping materialized view refresh", dialect=self.dialect)
            return

        for view in views:
            try:
                async with self.session.begin_nested():
                    await self.session.execute(text(f"REFRESH MATERIALIZED VIEW {view}"))
            except SQLAlchemyError as e:
                logger.warning("Materialized view refresh failed", view=view, error=str(e))

    # -------------------------------------------------------------------------
    # StockX size lookup
    # -------------------------------------------------------------------------

    async def upsert_stockx_variants(self, variants: Sequence[Mapping[str, Any]]) -> int:
        records = [
            {
                "stockx_variant_id": str(variant["stockx_variant_id"]),
                "stockx_product_id": str(variant["stockx_product_id"]),
                "variant_value": variant.get("variant_value"),
                "size_display": variant.get("size_display"),
            }
            for variant in variants
        ]
        return await self._upsert("upsert_stockx_variants", StockXVariant, records, ["stockx_variant_id"])

    async def fetch_stockx_size_map(self, variant_ids: Sequence[str]) -> Dict[str, str]:
        """variant id -> size display (variant value when no display is stored)"""
        if not variant_ids:
            return {}

        result = await self.session.execute(
            select(
                StockXVariant.stockx_variant_id,
                StockXVariant.size_display,
                StockXVariant.variant_value,
            ).where(StockXVariant.stockx_variant_id.in_(list(variant_ids)))
        )

        size_map = {}
        for variant_id, size_display, variant_value in result.all():
            size = size_display or variant_value
            if size:
                size_map[variant_id] = size
        return size_map

    # -------------------------------------------------------------------------
    # eBay transactions and metrics
    # -------------------------------------------------------------------------

    async def upsert_transactions(self, transactions: Sequence[EbayTransaction]) -> int:
        records = [transaction.to_record() for transaction in transactions]
        return await self._upsert(
            "upsert_transactions",
            EbaySoldTransaction,
            records,
            ["ebay_item_id", "marketplace_id"],
        )

    async def fetch_transactions(
        self,
        marketplace_id: str,
        sku: Optional[str] = None,
        size_key: Optional[str] = None,
    ) -> List[TransactionFact]:
        """Transactions with a size and a price, oldest first"""
        query = select(EbaySoldTransaction).where(
            EbaySoldTransaction.marketplace_id == marketplace_id,
            EbaySoldTransaction.size_key.is_not(None),
            EbaySoldTransaction.sale_price_cents.is_not(None),
            EbaySoldTransaction.currency_code.is_not(None),
        )
        if sku is not None:
            query = query.where(EbaySoldTransaction.sku == sku)
        if size_key is not None:
            query = query.where(EbaySoldTransaction.size_key == size_key)
        query = query.order_by(EbaySoldTransaction.sold_at, EbaySoldTransaction.id)

        result = await self.session.execute(query)
        return [
            TransactionFact(
                sku=row.sku,
                size_key=row.size_key,
                currency_code=row.currency_code,
                marketplace_id=row.marketplace_id,
                sale_price_cents=row.sale_price_cents,
                sold_at=row.sold_at,
                included_in_metrics=row.included_in_metrics,
                is_outlier=row.is_outlier,
                size_system=row.size_system,
            )
            for row in result.scalars().all()
        ]

    async def upsert_metrics(self, metrics: Sequence[ComputedMetric]) -> int:
        records = [metric.to_record() for metric in metrics]
        return await self._upsert("upsert_metrics", EbayComputedMetric, records, METRIC_GROUP_COLUMNS)

    async def fetch_metrics(self, marketplace_id: str, sku: Optional[str] = None) -> List[EbayComputedMetric]:
        query = select(EbayComputedMetric).where(EbayComputedMetric.marketplace_id == marketplace_id)
        if sku is not None:
            query = query.where(EbayComputedMetric.sku == sku)
        query = query.order_by(EbayComputedMetric.sku, EbayComputedMetric.size_key)

        result = await self.session.execute(query)
        return list(result.scalars().all())
