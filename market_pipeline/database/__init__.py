"""
Database Module
"""
from .connection import close_database, get_db, init_database
from .models import AliasRecentSaleDetail, Base, EbayComputedMetric, EbaySoldTransaction, MasterMarketData, StockXVariant
from .repository import MarketDataRepository

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "AliasRecentSaleDetail",
    "Base",
    "EbayComputedMetric",
    "EbaySoldTransaction",
    "MasterMarketData",
    "StockXVariant",
    "MarketDataRepository",
]
