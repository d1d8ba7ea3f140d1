"""
Price resolution: display price and optional price range per catalog record.

Sale prices are only reported as a capability flag. The base price stays the
line-total basis; applying a sale price is left to checkout.
"""
from typing import Any, List, Optional

from agrocart.catalog import iter_active, parse_record
from agrocart.models import PriceRange, PriceResolution, UnitProduct, WeightProduct


def _range_or_none(low: float, high: float) -> Optional[PriceRange]:
    if high > low:
        return PriceRange(min=low, max=high)
    return None


def active_category_prices(record: WeightProduct) -> List[float]:
    return [c.price_per_kg for c in iter_active(record.size_categories, allow_missing_status=False)]


def resolve_weight_price(record: WeightProduct) -> PriceResolution:
    upstream = record.price_range
    if upstream is not None and upstream.min is not None:
        low = upstream.min
        high = upstream.max if upstream.max is not None else low
        return PriceResolution(display_price=low, price_range=_range_or_none(low, high))

    prices = active_category_prices(record)
    if not prices:
        return PriceResolution(display_price=0.0)
    low, high = min(prices), max(prices)
    return PriceResolution(display_price=low, price_range=_range_or_none(low, high))


def resolve_unit_price(record: UnitProduct) -> PriceResolution:
    return PriceResolution(display_price=record.price)


def resolve_price(record: Any) -> PriceResolution:
    """Display price (and range for weight products); never raises"""
    record = parse_record(record)
    if isinstance(record, WeightProduct):
        return resolve_weight_price(record)
    return resolve_unit_price(record)


def _is_discounted(price: float, sale_price: Optional[float]) -> bool:
    return sale_price is not None and 0 < sale_price < price


def has_sale_price(record: Any) -> bool:
    """True when the product or one of its active variants is on sale"""
    record = parse_record(record)
    if not isinstance(record, UnitProduct):
        return False
    if _is_discounted(record.price, record.sale_price):
        return True
    return any(
        _is_discounted(v.price, v.sale_price)
        for v in iter_active(record.variants, allow_missing_status=True)
    )
