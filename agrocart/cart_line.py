"""
Cart line construction, quantity steps and totals.
"""
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from agrocart.config import Config
from agrocart.exceptions import ValidationError
from agrocart.models import (
    CartLine,
    CartSnapshot,
    NormalizedProduct,
    PriceKind,
    ProductOption,
    to_number,
)

CENT = Decimal("0.01")
# Absorbs float drift such as 0.30000000000000004 before flooring to a step
DRIFT_QUANTUM = Decimal("0.000001")


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


def round_to_increment(quantity: float, increment: float) -> float:
    """Round a quantity down to the nearest multiple of increment"""
    step = _decimal(increment)
    value = _decimal(quantity).quantize(DRIFT_QUANTUM, rounding=ROUND_HALF_UP)
    if value <= 0 or step <= 0:
        return 0.0
    steps = (value / step).to_integral_value(rounding=ROUND_FLOOR)
    return float(steps * step)


def normalize_quantity(
    quantity: float,
    price_kind: PriceKind,
    increment: Optional[float] = None
) -> float:
    """
    Snap a requested quantity onto the valid grid for its line kind.

    Per-unit lines hold whole units. Per-weight lines hold multiples of the
    measurement increment (default 0.25 kg). Off-grid values are rounded down,
    never rejected.
    """
    quantity = to_number(quantity)
    if price_kind == PriceKind.PER_WEIGHT:
        return round_to_increment(quantity, increment or Config.DEFAULT_MEASUREMENT_INCREMENT)
    return round_to_increment(quantity, 1)


def resolve_option(product: NormalizedProduct, variant_or_category_id: Optional[str]) -> Optional[ProductOption]:
    """Selected variant/size category; weight products fall back to their default category"""
    if variant_or_category_id is None:
        if product.is_weight_based:
            return product.get_option(product.default_variant_or_category_id)
        return None

    option = product.get_option(variant_or_category_id)
    if option is None:
        raise ValidationError(
            f"Unknown variant or size category {variant_or_category_id} for product {product.id}"
        )
    if not option.active:
        raise ValidationError(
            f"Variant or size category {variant_or_category_id} of product {product.id} is unavailable"
        )
    return option


def make_line(
    product: NormalizedProduct,
    variant_or_category_id: Optional[str],
    quantity: float
) -> CartLine:
    """
    Create a cart line for a product selection.

    The unit price is snapshotted from the product as it is now and is not
    updated if the catalog price changes later.

    Raises:
        ValidationError: If variant_or_category_id does not belong to the product
    """
    option = resolve_option(product, variant_or_category_id)
    price_kind = product.price_kind

    unit_price = option.price if option is not None else product.display_price
    increment = None
    if price_kind == PriceKind.PER_WEIGHT:
        increment = (option.measurement_increment if option else None) or Config.DEFAULT_MEASUREMENT_INCREMENT

    return CartLine(
        product_id=product.id,
        variant_or_category_id=option.id if option is not None else None,
        quantity=normalize_quantity(quantity, price_kind, increment),
        unit_price=max(unit_price, 0.0),
        price_kind=price_kind,
        measurement_increment=increment,
        name=product.name or None,
    )


def line_total(line: CartLine) -> float:
    """unit_price * quantity, rounded half-up to 2 decimal places"""
    total = _decimal(line.unit_price) * _decimal(line.quantity)
    return float(total.quantize(CENT, rounding=ROUND_HALF_UP))


def cart_count(lines: Iterable[CartLine]) -> int:
    """Units for per-unit lines plus one item slot per weight line"""
    return sum(1 if line.is_weight_based else int(line.quantity) for line in lines)


def cart_total(lines: Iterable[CartLine]) -> float:
    total = sum((_decimal(line_total(line)) for line in lines), Decimal("0"))
    return float(total.quantize(CENT, rounding=ROUND_HALF_UP))


def build_snapshot(lines: Iterable[CartLine]) -> CartSnapshot:
    lines = list(lines)
    return CartSnapshot(lines=lines, cart_count=cart_count(lines), cart_total=cart_total(lines))
