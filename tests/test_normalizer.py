import pytest

from agrocart.catalog import detect_kind, parse_record, parse_records
from agrocart.models import PriceKind, UnitProduct, WeightProduct
from agrocart.normalizer import normalize, normalize_many


class TestParseRecord:

    def test_size_categories_decide_weight_kind(self, weight_record, unit_record):
        assert detect_kind(weight_record) == "weight"
        assert detect_kind(unit_record) == "unit"
        assert isinstance(parse_record(weight_record), WeightProduct)
        assert isinstance(parse_record(unit_record), UnitProduct)

    def test_empty_size_categories_is_unit(self):
        assert isinstance(parse_record({"_id": "x", "sizeCategories": []}), UnitProduct)

    def test_forced_kind_wins(self, unit_record):
        record = parse_record(unit_record, kind="weight")
        assert isinstance(record, WeightProduct)
        assert record.id == "p-unit"

    def test_id_accepts_both_spellings(self):
        assert parse_record({"_id": "a"}).id == "a"
        assert parse_record({"id": 42}).id == "42"

    def test_non_mapping_becomes_empty_record(self):
        record = parse_record("not a record")
        assert isinstance(record, UnitProduct)
        assert record.id == ""

    def test_parse_records_ignores_non_list(self):
        assert parse_records(None) == []
        assert parse_records({"products": []}) == []

    def test_parse_records_skips_non_objects(self, unit_record):
        records = parse_records([unit_record, 3, "x", None])
        assert [r.id for r in records] == ["p-unit"]


class TestNormalizeUnitProducts:

    def test_flat_unit_product(self, unit_record):
        product = normalize(unit_record)

        assert product.id == "p-unit"
        assert product.name == "Organic Tomatoes"
        assert product.display_price == 100
        assert product.price_range is None
        assert product.total_stock == 10
        assert product.is_weight_based is False
        assert product.price_kind == PriceKind.PER_UNIT
        assert product.default_variant_or_category_id is None
        assert product.has_sale_price is False
        assert product.image == "tomatoes.jpg"
        assert product.options == ()

    def test_variant_product(self, variant_record):
        product = normalize(variant_record)

        # Inactive variants do not count toward stock
        assert product.total_stock == 10
        assert product.display_price == 150
        assert product.default_variant_or_category_id == "v-5kg"
        assert product.has_sale_price is True
        assert [o.id for o in product.options] == ["v-1kg", "v-5kg", "v-old"]
        assert product.get_option("v-old").active is False

    def test_first_active_variant_is_default_without_flag(self):
        product = normalize({
            "_id": "p",
            "variants": [
                {"_id": "a", "status": "inactive", "stock": 1},
                {"_id": "b", "stock": 1},
            ],
        })
        assert product.default_variant_or_category_id == "b"

    def test_positive_variant_summary_is_trusted(self, variant_record):
        variant_record["variantSummary"] = {"totalStock": 25}
        assert normalize(variant_record).total_stock == 25

    def test_zero_variant_summary_falls_back_to_sum(self, variant_record):
        variant_record["variantSummary"] = {"totalStock": 0}
        assert normalize(variant_record).total_stock == 10

    def test_sale_price_above_price_is_not_a_sale(self):
        assert normalize({"_id": "p", "price": 100, "salePrice": 120}).has_sale_price is False
        assert normalize({"_id": "p", "price": 100, "salePrice": 80}).has_sale_price is True

    def test_negative_stock_is_clamped(self):
        product = normalize({
            "_id": "p",
            "variants": [{"_id": "a", "stock": -4}, {"_id": "b", "stock": 3}],
        })
        assert product.total_stock == 3
        assert product.get_option("a").stock == 0
        assert normalize({"_id": "q", "stock": -7}).total_stock == 0


class TestNormalizeWeightProducts:

    def test_single_active_category(self, weight_record):
        product = normalize(weight_record)

        assert product.is_weight_based is True
        assert product.price_kind == PriceKind.PER_WEIGHT
        assert product.total_stock == 5
        assert product.display_price == 500
        assert product.price_range is None
        assert product.default_variant_or_category_id == "c-small"
        assert product.has_sale_price is False

    def test_price_range_over_active_categories(self, weight_record):
        weight_record["sizeCategories"][1]["status"] = "active"
        weight_record["sizeCategories"][1]["stock"] = 2

        product = normalize(weight_record)

        assert product.display_price == 500
        assert product.price_range.min == 500
        assert product.price_range.max == 650
        assert product.total_stock == 7

    def test_upstream_price_range_is_preferred(self, weight_record):
        weight_record["priceRange"] = {"min": 450, "max": 700}

        product = normalize(weight_record)

        assert product.display_price == 450
        assert product.price_range.min == 450
        assert product.price_range.max == 700

    def test_categories_without_status_are_inactive(self):
        product = normalize({
            "_id": "f",
            "sizeCategories": [{"_id": "c", "pricePerKg": 300, "stock": 8}],
        })
        assert product.total_stock == 0
        assert product.display_price == 0
        assert product.default_variant_or_category_id is None

    def test_forced_weight_without_categories(self):
        product = normalize({"_id": "f", "name": "Catfish"}, kind="weight")
        assert product.is_weight_based is False
        assert product.total_stock == 0


class TestNormalizeMalformedInput:

    def test_unparseable_numbers_become_zero(self):
        product = normalize({"_id": "p", "name": 12, "price": "abc", "stock": None})
        assert product.name == ""
        assert product.display_price == 0
        assert product.total_stock == 0

    def test_numeric_strings_are_coerced(self):
        product = normalize({"_id": "p", "price": "120.5", "stock": "3"})
        assert product.display_price == 120.5
        assert product.total_stock == 3

    def test_non_finite_numbers_become_zero(self):
        product = normalize({"_id": "p", "price": float("nan"), "stock": float("inf")})
        assert product.display_price == 0
        assert product.total_stock == 0

    def test_malformed_nested_entries_are_dropped(self):
        product = normalize({"_id": "p", "variants": [None, "x", {"_id": "ok", "stock": 2}]})
        assert [o.id for o in product.options] == ["ok"]
        assert product.total_stock == 2

    def test_image_falls_back_to_first_image(self):
        assert normalize({"_id": "p", "images": ["", "b.png"]}).image == "b.png"
        assert normalize({"_id": "p", "image": "a.png", "images": ["b.png"]}).image == "a.png"
        assert normalize({"_id": "p"}).image is None


class TestNormalizationProperties:

    @pytest.mark.parametrize("fixture_name", ["unit_record", "variant_record", "weight_record"])
    def test_normalization_is_deterministic(self, request, fixture_name):
        raw = request.getfixturevalue(fixture_name)
        assert normalize(raw) == normalize(raw)

    def test_parsed_record_normalizes_like_raw(self, variant_record):
        assert normalize(parse_record(variant_record)) == normalize(variant_record)

    def test_display_price_is_range_min(self, weight_record):
        weight_record["sizeCategories"].append(
            {"_id": "c-mid", "pricePerKg": 550, "stock": 1, "status": "active"}
        )
        product = normalize(weight_record)
        assert product.price_range.min <= product.price_range.max
        assert product.display_price == product.price_range.min

    def test_normalize_many_keeps_order(self, unit_record, weight_record):
        products = normalize_many([weight_record, unit_record])
        assert [p.id for p in products] == ["p-fish", "p-unit"]
        assert normalize_many("nope") == []

    def test_camel_case_serialization(self, weight_record):
        payload = normalize(weight_record).model_dump(by_alias=True)
        assert payload["displayPrice"] == 500
        assert payload["isWeightBased"] is True
        assert payload["defaultVariantOrCategoryId"] == "c-small"
