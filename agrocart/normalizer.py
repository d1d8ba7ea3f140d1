"""
Product normalization.

Combines stock and price resolution with shape coercion so that cart,
checkout and display code see one product shape for both catalog kinds.
"""
from typing import Any, List, Optional, Sequence

from agrocart.catalog import parse_record, parse_records
from agrocart.models import (
    NormalizedProduct,
    ProductOption,
    SizeCategory,
    Variant,
    WeightProduct,
)
from agrocart.pricing import has_sale_price, resolve_price
from agrocart.stock import resolve_stock


def _variant_option(variant: Variant) -> ProductOption:
    return ProductOption(
        id=variant.id,
        label=variant.label,
        price=variant.price,
        stock=max(variant.stock, 0.0),
        active=variant.status in (None, "active"),
        measurement_increment=variant.measurement_increment,
    )


def _category_option(category: SizeCategory) -> ProductOption:
    return ProductOption(
        id=category.id,
        label=category.label,
        price=category.price_per_kg,
        stock=max(category.stock, 0.0),
        active=category.status == "active",
        measurement_increment=category.measurement_increment,
    )


def _default_option_id(entries: Sequence[Any], options: Sequence[ProductOption]) -> Optional[str]:
    for entry, option in zip(entries, options):
        if entry.is_default and option.active:
            return option.id
    for option in options:
        if option.active:
            return option.id
    return None


def _primary_image(record: Any) -> Optional[str]:
    if record.image:
        return record.image
    return record.images[0] if record.images else None


def normalize(record: Any, kind: Optional[str] = None) -> NormalizedProduct:
    """
    Build the canonical product for a catalog record.

    Pure and deterministic: the same raw record always yields an equal result.

    Args:
        record: Raw listing record (mapping) or parsed UnitProduct/WeightProduct
        kind: Optional forced kind for raw records ("unit" or "weight")
    """
    record = parse_record(record, kind)
    prices = resolve_price(record)

    if isinstance(record, WeightProduct):
        entries: Sequence[Any] = record.size_categories
        options = tuple(_category_option(c) for c in entries)
    else:
        entries = record.variants
        options = tuple(_variant_option(v) for v in entries)

    return NormalizedProduct(
        id=record.id,
        name=record.name,
        display_price=prices.display_price,
        price_range=prices.price_range,
        total_stock=resolve_stock(record),
        is_weight_based=isinstance(record, WeightProduct) and bool(record.size_categories),
        default_variant_or_category_id=_default_option_id(entries, options),
        has_sale_price=has_sale_price(record),
        image=_primary_image(record),
        options=options,
    )


def normalize_many(records: Any, kind: Optional[str] = None) -> List[NormalizedProduct]:
    """Normalize a whole listing; non-list input yields an empty list"""
    return [normalize(record) for record in parse_records(records, kind)]
