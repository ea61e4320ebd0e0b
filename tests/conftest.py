"""
Test Suite Configuration
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from market_pipeline.config.settings import IngestionSettings, RedisSettings, Settings
from market_pipeline.database.models import Base
from market_pipeline.normalization.facts import IngestionContext

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for window calculations"""
    return NOW


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        redis=RedisSettings(cache_enabled=True),
        ingestion=IngestionSettings(request_delay_ms=0),
    )


@pytest.fixture
async def test_engine():
    """In-memory SQLite engine shared across connections"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_provider(session_factory):
    """Commit-or-rollback session context, shaped like database.get_db"""
    @asynccontextmanager
    async def provider() -> AsyncGenerator[AsyncSession, None]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return provider


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


class RecordingInvalidator:
    """Cache invalidator stand-in that records its calls"""

    def __init__(self):
        self.calls: List[tuple] = []

    async def __call__(self, provider, product_id):
        self.calls.append((provider, product_id))
        return 1


@pytest.fixture
def cache_invalidator() -> RecordingInvalidator:
    return RecordingInvalidator()


# =============================================================================
# STOCKX
# =============================================================================

@pytest.fixture
def stockx_context(now) -> IngestionContext:
    return IngestionContext(
        currency_code="GBP",
        provider_product_id="prod-123",
        sku="DD1391-100",
        region_code="UK",
        snapshot_at=now,
    )


@pytest.fixture
def stockx_payload() -> list:
    """Two variants: one with standard and flex prices, one standard only"""
    return [
        {
            "variantId": "v-1",
            "lowestAskAmount": "145.00",
            "highestBidAmount": "120",
            "lastSaleAmount": 130.5,
            "standardMarketData": {
                "lowestAsk": "145.00",
                "highestBidAmount": "120",
                "sellFaster": "140",
                "earnMore": "150",
                "beatUS": "139",
            },
            "flexMarketData": {
                "lowestAsk": "142",
                "sellFaster": "138",
                "earnMore": "148",
            },
            "directMarketData": None,
        },
        {
            "variantId": "v-2",
            "lowestAskAmount": "160",
            "highestBidAmount": None,
            "lastSaleAmount": None,
            "standardMarketData": {"lowestAsk": "160"},
            "flexMarketData": {"lowestAsk": None, "sellFaster": "", "earnMore": None},
        },
    ]


@pytest.fixture
def stockx_size_lookup() -> dict:
    return {"v-1": "10", "v-2": "10.5"}


# =============================================================================
# ALIAS
# =============================================================================

@pytest.fixture
def alias_context(now) -> IngestionContext:
    return IngestionContext.for_alias("air-jordan-1-chicago", region_id="3", snapshot_at=now)


def alias_variant(size, consigned=False, lowest="14500", highest="12000", **overrides) -> dict:
    variant = {
        "size": size,
        "size_unit": "SIZE_UNIT_US",
        "consigned": consigned,
        "product_condition": "PRODUCT_CONDITION_NEW",
        "packaging_condition": "PACKAGING_CONDITION_GOOD_CONDITION",
        "availability": {
            "lowest_listing_price_cents": lowest,
            "highest_offer_price_cents": highest,
            "last_sold_listing_price_cents": "13000",
            "global_indicator_price_cents": "14000",
            "number_of_listings": 12,
            "number_of_offers": 4,
        },
    }
    variant.update(overrides)
    return variant


@pytest.fixture
def alias_payload() -> dict:
    return {
        "variants": [
            alias_variant(10),
            alias_variant(10, consigned=True, lowest="15000"),
            alias_variant(10.5),
            alias_variant(11, product_condition="PRODUCT_CONDITION_USED"),
        ]
    }


@pytest.fixture
def alias_recent_sales(now) -> dict:
    def sale(size, hours_ago, price, consigned=False):
        return {
            "size": size,
            "consigned": consigned,
            "price_cents": price,
            "purchased_at": (now - timedelta(hours=hours_ago)).isoformat().replace("+00:00", "Z"),
        }

    return {
        "recent_sales": [
            sale(10, 2, "14000"),
            sale(10, 48, "13500"),
            sale(10, 24 * 10, "13000"),
            sale(10, 24 * 40, "12000"),
            sale(10.5, 5, "15500", consigned=True),
        ]
    }


# =============================================================================
# EBAY
# =============================================================================

def ebay_item(item_id, price, hours_ago=24, now=NOW, **overrides) -> dict:
    item = {
        "itemId": item_id,
        "title": "Nike Dunk Low Panda DD1391-100 UK 9",
        "price": {"value": price, "currency": "GBP"},
        "conditionId": "1000",
        "categoryId": "15709",
        "authenticityVerification": {"description": "Authenticity Guarantee"},
        "localizedAspects": [{"name": "UK Shoe Size", "value": "9"}],
        "seller": {"feedbackScore": 512, "feedbackPercentage": "99.8"},
        "shippingOptions": [
            {"shippingCost": {"value": "4.99", "currency": "GBP"}},
            {"shippingCost": {"value": "0.00", "currency": "GBP"}},
        ],
        "soldAt": (now - timedelta(hours=hours_ago)).isoformat(),
    }
    item.update(overrides)
    return item


@pytest.fixture
def ebay_items(now) -> list:
    return [
        ebay_item("101", "100.00", hours_ago=12, now=now),
        ebay_item("102", "110.00", hours_ago=30, now=now),
        ebay_item("103", "105.00", hours_ago=24 * 5, now=now),
        ebay_item("104", "95.00", hours_ago=24 * 20, now=now),
        ebay_item("105", "90.00", hours_ago=24 * 20, now=now, conditionId="3000"),
    ]


@pytest.fixture
def make_alias_variant():
    return alias_variant


@pytest.fixture
def make_ebay_item():
    return ebay_item
