"""
Market Data Ingestion Module
"""
from .service import (
    IngestionResult,
    MarketDataIngestionService,
    TransactionIngestionResult,
    VolumeBackfillResult,
)
from .sync_job import run_sequential_sync

__all__ = [
    "IngestionResult",
    "MarketDataIngestionService",
    "TransactionIngestionResult",
    "VolumeBackfillResult",
    "run_sequential_sync",
]
