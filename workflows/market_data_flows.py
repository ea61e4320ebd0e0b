"""
Prefect Workflow Orchestration - Market Data

Scheduled maintenance flows:
- eBay metrics recomputation from stored sold transactions
- Retention sweep of aged market data facts
"""

from datetime import datetime
from typing import List, Optional

from prefect import flow, get_run_logger, task

from market_pipeline.config import get_settings
from market_pipeline.config.logging import configure_logging
from market_pipeline.database.connection import close_database, init_database
from market_pipeline.ingestion.service import MarketDataIngestionService
from market_pipeline.ingestion.sync_job import run_sequential_sync


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="compute_ebay_metrics",
    description="Recompute eBay metrics for one SKU, or every SKU when none is given",
    retries=2,
    retry_delay_seconds=30,
)
async def compute_ebay_metrics_task(
    sku: Optional[str] = None,
    marketplace_id: Optional[str] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    logger = get_run_logger()

    service = MarketDataIngestionService()
    metrics = await service.compute_ebay_metrics(
        sku=sku,
        marketplace_id=marketplace_id,
        dry_run=dry_run,
        now=now,
    )

    logger.info(f"Computed {len(metrics)} eBay metric groups for {sku or 'all SKUs'}")
    return {
        "sku": sku,
        "groups": len(metrics),
        "with_data_90d": sum(1 for m in metrics if m.median_90d_cents is not None),
    }


@task(
    name="sweep_expired_facts",
    description="Delete market data facts older than the retention window",
    retries=3,
    retry_delay_seconds=60,
)
async def sweep_expired_facts_task(retention_days: Optional[int] = None) -> int:
    logger = get_run_logger()

    deleted = await MarketDataIngestionService().sweep_expired_facts(retention_days)

    logger.info(f"Retention sweep deleted {deleted} facts")
    return deleted


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="compute_ebay_metrics",
    description="Recompute rolling eBay metrics from sold transactions",
    retries=1,
    retry_delay_seconds=300,
)
async def compute_ebay_metrics_flow(
    skus: Optional[List[str]] = None,
    marketplace_id: Optional[str] = None,
    dry_run: bool = False,
) -> dict:
    """
    Recompute eBay metrics.

    With a SKU list, SKUs run one at a time with the configured pause between
    them; otherwise all groups are recomputed in a single pass.
    """
    configure_logging()
    await init_database()
    try:
        if skus:
            results = await run_sequential_sync(
                skus,
                lambda sku: compute_ebay_metrics_task(sku=sku, marketplace_id=marketplace_id, dry_run=dry_run),
            )
        else:
            results = [await compute_ebay_metrics_task(marketplace_id=marketplace_id, dry_run=dry_run)]
    finally:
        await close_database()

    return {
        "status": "success",
        "groups": sum(r["groups"] for r in results),
        "runs": results,
    }


@flow(
    name="market_data_retention_sweep",
    description="Delete aged rows from master_market_data",
)
async def retention_sweep_flow(retention_days: Optional[int] = None) -> dict:
    """Delete facts whose snapshot is older than the retention window"""
    configure_logging()
    retention_days = retention_days or get_settings().ingestion.retention_days

    await init_database()
    try:
        deleted = await sweep_expired_facts_task(retention_days)
    finally:
        await close_database()

    return {"status": "success", "retention_days": retention_days, "deleted": deleted}


if __name__ == "__main__":
    import asyncio

    asyncio.run(compute_ebay_metrics_flow())
