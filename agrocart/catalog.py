"""
Catalog record ingestion.

Upstream listings deliver two structurally different product shapes. The
shape is decided here, once, and every later stage works on the tagged
``UnitProduct | WeightProduct`` union instead of probing fields again.
"""
import logging
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from agrocart.models import CatalogRecord, UnitProduct, WeightProduct

logger = logging.getLogger(__name__)

_record_adapter = TypeAdapter(CatalogRecord)

UNIT = "unit"
WEIGHT = "weight"


def has_size_categories(raw: Mapping[str, Any]) -> bool:
    """True when the raw record carries a non-empty sizeCategories list"""
    categories = raw.get("sizeCategories", raw.get("size_categories"))
    return isinstance(categories, list) and len(categories) > 0


def detect_kind(raw: Mapping[str, Any]) -> str:
    return WEIGHT if has_size_categories(raw) else UNIT


def parse_record(raw: Any, kind: Optional[str] = None) -> CatalogRecord:
    """
    Parse a raw catalog record into its tagged form.

    Args:
        raw: Record as returned by a listing endpoint (or an already parsed record)
        kind: Force "unit" or "weight"; the fish listing passes "weight"

    Returns:
        UnitProduct or WeightProduct. Malformed fields are coerced, never raised.
    """
    if isinstance(raw, (UnitProduct, WeightProduct)):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning(f"Ignoring non-object catalog record of type {type(raw).__name__}")
        return UnitProduct()

    data = dict(raw)
    data["kind"] = kind or detect_kind(raw)
    try:
        return _record_adapter.validate_python(data)
    except PydanticValidationError as e:
        # Coercing validators should make this unreachable; keep the record addressable anyway
        record_id = str(raw.get("_id") or raw.get("id") or "")
        logger.warning(
            f"Catalog record {record_id} could not be parsed, falling back to empty shape",
            extra={"record_id": record_id, "errors": e.error_count()},
        )
        model = WeightProduct if data["kind"] == WEIGHT else UnitProduct
        return model(id=record_id)


def parse_records(raw_records: Any, kind: Optional[str] = None) -> List[CatalogRecord]:
    """Parse a listing; anything that is not a list yields an empty list"""
    if not isinstance(raw_records, (list, tuple)):
        return []
    return [
        parse_record(raw, kind)
        for raw in raw_records
        if isinstance(raw, (Mapping, UnitProduct, WeightProduct))
    ]


def iter_active(entries: Iterable[Any], allow_missing_status: bool):
    """Yield options whose status is "active" (or absent, when allowed)"""
    for entry in entries:
        if entry.status == "active" or (allow_missing_status and entry.status is None):
            yield entry
