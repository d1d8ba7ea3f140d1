"""
Stock resolution: one available-stock number per catalog record.
"""
import logging
from typing import Any

from agrocart.catalog import iter_active, parse_record
from agrocart.models import UnitProduct, WeightProduct

logger = logging.getLogger(__name__)


def _non_negative(value: float) -> float:
    # Upstream data may carry negative stock; it is clamped at this boundary
    return value if value > 0 else 0.0


def _sum_variant_stock(record: UnitProduct) -> float:
    return sum(_non_negative(v.stock) for v in iter_active(record.variants, allow_missing_status=True))


def resolve_weight_stock(record: WeightProduct) -> float:
    """Sum of stock (kg) over active size categories"""
    return sum(
        _non_negative(c.stock) for c in iter_active(record.size_categories, allow_missing_status=False)
    )


def resolve_unit_stock(record: UnitProduct) -> float:
    """
    Stock for a count-priced product.

    A positive upstream ``variantSummary.totalStock`` is trusted, but is checked
    against the sum over active variants and a mismatch is logged.
    """
    if not record.variants:
        return _non_negative(record.stock)

    recomputed = _sum_variant_stock(record)
    summary = record.variant_summary
    if summary is not None and summary.total_stock is not None and summary.total_stock > 0:
        if summary.total_stock != recomputed:
            logger.warning(
                f"Precomputed stock for product {record.id} differs from variant sum",
                extra={
                    "product_id": record.id,
                    "precomputed_stock": summary.total_stock,
                    "recomputed_stock": recomputed,
                },
            )
        return summary.total_stock
    return recomputed


def resolve_stock(record: Any) -> float:
    """Total available stock for a unit or weight record, never negative"""
    record = parse_record(record)
    if isinstance(record, WeightProduct):
        return _non_negative(resolve_weight_stock(record))
    return _non_negative(resolve_unit_stock(record))
