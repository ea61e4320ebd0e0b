"""
Unit Tests - eBay Mappers
"""
import pytest

from market_pipeline.normalization.ebay import (
    ExclusionReason,
    ExtractedSize,
    build_ebay_search_rows,
    extract_best_size,
    extract_cheapest_shipping,
    extract_size_from_aspects,
    extract_size_from_title,
    extract_sku_from_title,
    map_ebay_transaction,
    map_ebay_transactions,
)


class TestExtraction:
    """Tests for SKU and size extraction"""

    @pytest.mark.parametrize("title, expected", [
        ("Nike Dunk Low Panda DD1391-100 UK 9", "DD1391-100"),
        ("New Balance 990v6 m990gl6 Grey", "M990GL6"),
        ("Air Jordan 1 Chicago 555088-101", "555088-101"),
        ("Jordan 1 Retro 554724-136 size 10", "554724-136"),
        ("Yeezy Boost 350 FZ5000", "FZ5000"),
        ("Random sneakers", None),
        (None, None),
    ])
    def test_sku_from_title(self, title, expected):
        assert extract_sku_from_title(title) == expected

    @pytest.mark.parametrize("title, size, system, confidence", [
        ("Dunk Low US 10.5 Panda", "10.5", "US", "HIGH"),
        ("Dunk Low 10US Panda", "10", "US", "HIGH"),
        ("Dunk Low UK 9", "9", "UK", "HIGH"),
        ("Dunk Low EU 44", "44", "EU", "HIGH"),
        ("Dunk Low Size 11", "11", "US", "MEDIUM"),
        ("Dunk Low Men's 12", "12", "US", "MEDIUM"),
    ])
    def test_size_from_title(self, title, size, system, confidence):
        assert extract_size_from_title(title) == ExtractedSize(size, system, confidence)

    def test_size_from_title_missing(self):
        assert extract_size_from_title("Dunk Low Panda") is None

    def test_aspects_prefer_marketplace_system(self):
        aspects = [
            {"name": "US Shoe Size", "value": "10"},
            {"name": "UK Shoe Size", "value": "9"},
        ]

        assert extract_size_from_aspects(aspects, "EBAY_GB") == ExtractedSize("9", "UK", "HIGH")
        assert extract_size_from_aspects(aspects, "EBAY_US") == ExtractedSize("10", "US", "HIGH")

    def test_generic_size_aspect(self):
        size = extract_size_from_aspects([{"name": "Size", "value": "10"}])
        assert size == ExtractedSize("10", "US", "MEDIUM")
        assert size.confidence_score == 0.7

    def test_best_size_from_single_variation(self):
        item = {
            "title": "Dunk Low Size 11",
            "variations": [{"localizedAspects": [{"name": "US Shoe Size", "value": "10"}]}],
        }
        assert extract_best_size(item, "EBAY_US") == ExtractedSize("10", "US", "HIGH")

    def test_multi_size_variations_give_no_size(self):
        item = {
            "title": "Dunk Low US 11",
            "variations": [
                {"localizedAspects": [{"name": "US Shoe Size", "value": "10"}]},
                {"localizedAspects": [{"name": "US Shoe Size", "value": "11"}]},
            ],
        }
        assert extract_best_size(item) is None

    def test_cheapest_shipping(self):
        options = [
            {"shippingCost": {"value": "4.99"}},
            {"shippingCost": {"value": "2.50"}},
            {"shippingCost": None},
        ]
        assert extract_cheapest_shipping(options) == 250
        assert extract_cheapest_shipping(None) is None

    def test_normalized_key(self):
        assert ExtractedSize("9", "UK", "HIGH").normalized_key == "UK 9"
        assert ExtractedSize("9", "UNKNOWN", "LOW").normalized_key == "9"


class TestTransactionMapping:
    """Tests for sold-item transaction mapping"""

    def test_included_transaction(self, make_ebay_item):
        transaction = map_ebay_transaction(make_ebay_item("101", "145.50"), "DD1391-100")

        assert transaction.ebay_item_id == "101"
        assert transaction.sku == "DD1391-100"
        assert transaction.size_key == "UK 9"
        assert transaction.size_numeric == 9.0
        assert transaction.size_system == "UK"
        assert transaction.size_confidence == 1.0
        assert transaction.sale_price_cents == 14550
        assert transaction.currency_code == "GBP"
        assert transaction.shipping_cost_cents == 0
        assert transaction.seller_feedback_percentage == 99.8
        assert transaction.exclusion_reason is None
        assert transaction.included_in_metrics is True
        assert transaction.to_record()["included_in_metrics"] is True

    @pytest.mark.parametrize("overrides, reason", [
        ({"conditionId": "3000"}, ExclusionReason.NOT_NEW_CONDITION),
        ({"authenticityVerification": None}, ExclusionReason.NO_AUTHENTICITY_GUARANTEE),
        ({"localizedAspects": [], "title": "Dunk Low DD1391-100"}, ExclusionReason.MISSING_SIZE),
        ({"localizedAspects": [], "title": "Dunk Low DD1391-100 Size 9"}, ExclusionReason.SIZE_NOT_FROM_VARIATIONS),
        ({"price": None}, ExclusionReason.MISSING_PRICE),
    ])
    def test_exclusion_reasons(self, make_ebay_item, overrides, reason):
        transaction = map_ebay_transaction(make_ebay_item("101", "100", **overrides), "DD1391-100")

        assert transaction.exclusion_reason == reason.value
        assert transaction.included_in_metrics is False

    def test_unknown_size_system(self, make_ebay_item):
        item = make_ebay_item(
            "101",
            "100",
            localizedAspects=[],
            variations=[{"localizedAspects": [{"name": "Size", "value": "9"}]}],
        )

        transaction = map_ebay_transaction(item, "DD1391-100")

        assert transaction.exclusion_reason == ExclusionReason.SIZE_SYSTEM_UNKNOWN.value
        assert transaction.size_system is None

    def test_outlier_not_included(self, make_ebay_item):
        transaction = map_ebay_transaction(make_ebay_item("101", "100"), "DD1391-100")
        transaction.is_outlier = True
        assert transaction.included_in_metrics is False

    def test_search_query_is_sku_fallback(self, make_ebay_item):
        item = make_ebay_item("101", "100", title="Panda dunks UK 9")
        assert map_ebay_transaction(item, "DD1391-100").sku == "DD1391-100"

    def test_batch_skips_items_without_id_or_sale_time(self, make_ebay_item, ebay_items):
        items = ebay_items + [{"title": "no id"}, make_ebay_item("999", "100", soldAt=None)]

        transactions = map_ebay_transactions(items, "DD1391-100")

        assert [t.ebay_item_id for t in transactions] == ["101", "102", "103", "104", "105"]

    def test_repeated_item_keeps_last_copy(self, make_ebay_item, ebay_items):
        """Test an item repeated across overlapping pages maps to one transaction"""
        items = ebay_items + [make_ebay_item("102", "112.00", hours_ago=30)]

        transactions = map_ebay_transactions(items, "DD1391-100")

        assert [t.ebay_item_id for t in transactions] == ["101", "102", "103", "104", "105"]
        assert transactions[1].sale_price_cents == 11200

    def test_batch_rejects_non_list(self):
        assert map_ebay_transactions({"itemSummaries": []}, "DD1391-100") == []


class TestSearchRows:
    """Tests for browse-search fact rows"""

    def test_lowest_price_per_size(self, make_ebay_item):
        items = [
            make_ebay_item("1", "120.00"),
            make_ebay_item("2", "100.00"),
            make_ebay_item("3", "130.00", localizedAspects=[{"name": "UK Shoe Size", "value": "10"}]),
        ]

        result = build_ebay_search_rows(items, "DD1391-100", "GBP")

        rows = {row.size_key: row for row in result.rows}
        assert set(rows) == {"UK 9", "UK 10"}
        assert rows["UK 9"].last_sale_price == 10000
        assert rows["UK 9"].provider_variant_id == "2"
        assert rows["UK 9"].lowest_ask is None
        assert rows["UK 9"].provider_source == "ebay_browse_search"

    def test_active_listings_fill_lowest_ask(self, make_ebay_item):
        result = build_ebay_search_rows([make_ebay_item("1", "120.00")], "DD1391-100", "GBP", sold_items_only=False)

        assert result.rows[0].lowest_ask == 12000
        assert result.rows[0].last_sale_price is None

    def test_low_confidence_and_other_currency_skipped(self, make_ebay_item):
        items = [
            make_ebay_item(
                "1",
                "120.00",
                localizedAspects=[],
                variations=[{"localizedAspects": [{"name": "Size", "value": "9"}]}],
            ),
            make_ebay_item("2", "100.00", price={"value": "100.00", "currency": "USD"}),
        ]

        result = build_ebay_search_rows(items, "DD1391-100", "GBP")

        assert result.rows == []
        assert result.skipped_low_confidence == 1
