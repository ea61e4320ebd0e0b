"""
Database Models - Market Data Schema

Fact Tables:
- MasterMarketData: Canonical per-variant price facts from every provider
- EbaySoldTransaction: Individual eBay sold listings
- AliasRecentSaleDetail: Individual Alias sales, one row per sync that saw them

Derived Tables:
- EbayComputedMetric: Rolling eBay metrics per (sku, size, currency, marketplace)

Lookup Tables:
- StockXVariant: StockX variant id -> size display
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# FACT TABLES
# =============================================================================

class MasterMarketData(Base):
    """
    Canonical Market Data Fact Table

    One row per natural key (provider, provider_source, provider_product_id,
    provider_variant_id, size_key, currency_code, region_code). The key is
    stored serialized in `natural_key` so nullable members still conflict.
    """
    __tablename__ = "master_market_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    natural_key: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)

    # Identity
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_source: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_product_id: Mapped[Optional[str]] = mapped_column(String(100))
    provider_variant_id: Mapped[Optional[str]] = mapped_column(String(100))

    # Product identity
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    size_key: Mapped[str] = mapped_column(String(50), nullable=False)
    size_numeric: Mapped[Optional[float]] = mapped_column(Float)
    size_system: Mapped[Optional[str]] = mapped_column(String(10))

    # Currency context
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    region_code: Mapped[Optional[str]] = mapped_column(String(20))

    # Pricing (minor units)
    lowest_ask: Mapped[Optional[int]] = mapped_column(BigInteger)
    highest_bid: Mapped[Optional[int]] = mapped_column(BigInteger)
    last_sale_price: Mapped[Optional[int]] = mapped_column(BigInteger)
    sell_faster_price: Mapped[Optional[int]] = mapped_column(BigInteger)
    earn_more_price: Mapped[Optional[int]] = mapped_column(BigInteger)
    beat_us_price: Mapped[Optional[int]] = mapped_column(BigInteger)
    global_indicator_price: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Volume
    sales_last_72h: Mapped[Optional[int]] = mapped_column(Integer)
    sales_last_30d: Mapped[Optional[int]] = mapped_column(Integer)
    total_sales_volume: Mapped[Optional[int]] = mapped_column(Integer)
    ask_count: Mapped[Optional[int]] = mapped_column(Integer)
    bid_count: Mapped[Optional[int]] = mapped_column(Integer)

    # StockX analytics, reserved
    average_deadstock_price: Mapped[Optional[int]] = mapped_column(BigInteger)
    volatility: Mapped[Optional[float]] = mapped_column(Float)
    price_premium: Mapped[Optional[float]] = mapped_column(Float)

    # Channel flags
    is_flex: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_consigned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Provenance
    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    raw_snapshot_id: Mapped[Optional[str]] = mapped_column(String(100))
    raw_snapshot_provider: Mapped[Optional[str]] = mapped_column(String(20))
    raw_response_excerpt: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)

    __table_args__ = (
        Index("ix_master_market_data_sku_size", "sku", "size_key"),
        Index("ix_master_market_data_product", "provider", "provider_product_id"),
        Index("ix_master_market_data_snapshot", "snapshot_at"),
    )


class EbaySoldTransaction(Base):
    """
    eBay Sold Transaction Fact Table

    Raw sold listings feeding the metrics engine. included_in_metrics is
    stored so the engine can read it without re-deriving exclusion rules.
    """
    __tablename__ = "ebay_sold_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ebay_item_id: Mapped[str] = mapped_column(String(50), nullable=False)
    marketplace_id: Mapped[str] = mapped_column(String(20), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    size_key: Mapped[Optional[str]] = mapped_column(String(50))
    size_numeric: Mapped[Optional[float]] = mapped_column(Float)
    size_system: Mapped[Optional[str]] = mapped_column(String(10))
    size_confidence: Mapped[Optional[float]] = mapped_column(Float)

    sale_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    currency_code: Mapped[Optional[str]] = mapped_column(String(3))
    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    condition_id: Mapped[Optional[str]] = mapped_column(String(20))
    category_id: Mapped[Optional[str]] = mapped_column(String(20))
    authenticity_guarantee: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_feedback_score: Mapped[Optional[int]] = mapped_column(Integer)
    seller_feedback_percentage: Mapped[Optional[float]] = mapped_column(Float)
    shipping_cost_cents: Mapped[Optional[int]] = mapped_column(BigInteger)

    is_outlier: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    outlier_reason: Mapped[Optional[str]] = mapped_column(String(100))
    exclusion_reason: Mapped[Optional[str]] = mapped_column(String(50))
    included_in_metrics: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    raw_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("ebay_item_id", "marketplace_id", name="uq_ebay_sold_item_marketplace"),
        Index("ix_ebay_sold_group", "sku", "size_key", "currency_code", "marketplace_id"),
        Index("ix_ebay_sold_sold_at", "sold_at"),
    )


class AliasRecentSaleDetail(Base):
    """
    Alias Recent Sales Time Series

    Append-only: every recent-sales sync inserts the sales it saw, so the
    same sale can appear once per snapshot.
    """
    __tablename__ = "alias_recent_sales_detail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog_id: Mapped[Optional[str]] = mapped_column(String(100))
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    size_value: Mapped[float] = mapped_column(Float, nullable=False)
    size_key: Mapped[str] = mapped_column(String(50), nullable=False)
    size_unit: Mapped[str] = mapped_column(String(10), nullable=False)
    price_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consigned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    region_code: Mapped[Optional[str]] = mapped_column(String(20))
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    raw_snapshot_id: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        Index("ix_alias_sales_detail_catalog_size", "catalog_id", "size_key"),
        Index("ix_alias_sales_detail_purchased_at", "purchased_at"),
    )


# =============================================================================
# DERIVED TABLES
# =============================================================================

class EbayComputedMetric(Base):
    """Rolling eBay metrics, one row per (sku, size_key, currency_code, marketplace_id)"""
    __tablename__ = "ebay_computed_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    size_key: Mapped[str] = mapped_column(String(50), nullable=False)
    size_system: Mapped[Optional[str]] = mapped_column(String(10))
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    marketplace_id: Mapped[str] = mapped_column(String(20), nullable=False)

    median_72h_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    median_7d_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    median_30d_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    median_90d_cents: Mapped[Optional[int]] = mapped_column(BigInteger)

    sample_size_72h: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sample_size_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sample_size_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sample_size_90d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    min_price_90d_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    max_price_90d_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    volatility_90d: Mapped[Optional[float]] = mapped_column(Float)

    liquidity_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confidence_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_sales_90d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    outlier_count_90d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    outlier_ratio_90d: Mapped[Optional[float]] = mapped_column(Float)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_sale_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint(
            "sku", "size_key", "currency_code", "marketplace_id",
            name="uq_ebay_metrics_group",
        ),
    )


# =============================================================================
# LOOKUP TABLES
# =============================================================================

class StockXVariant(Base):
    """StockX variant size lookup"""
    __tablename__ = "stockx_variants"

    stockx_variant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    stockx_product_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    variant_value: Mapped[Optional[str]] = mapped_column(String(50))
    size_display: Mapped[Optional[str]] = mapped_column(Text)
