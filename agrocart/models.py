"""
Pydantic models for catalog records, normalized products, cart lines,
and API requests/responses.
"""
import math
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def to_number(value: Any) -> float:
    """Coerce an upstream numeric field, anything unusable becomes 0"""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return to_number(value)


class PriceKind(str, Enum):
    PER_UNIT = "per-unit"
    PER_WEIGHT = "per-weight"


# ---------------------------------------------------------------------------
# Catalog records (external input)
# ---------------------------------------------------------------------------

class CatalogModel(BaseModel):
    """Base for upstream catalog shapes: camelCase input, lenient coercion"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("name", "label", mode="before", check_fields=False)
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("status", "image", mode="before", check_fields=False)
    @classmethod
    def _coerce_optional_text(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) and v else None

    @field_validator("price", "stock", "price_per_kg", mode="before", check_fields=False)
    @classmethod
    def _coerce_number(cls, v: Any) -> float:
        return to_number(v)

    @field_validator(
        "sale_price", "min_weight", "max_weight", "total_stock", "min", "max",
        mode="before", check_fields=False,
    )
    @classmethod
    def _coerce_optional_number(cls, v: Any) -> Optional[float]:
        return _optional_number(v)

    @field_validator("measurement_increment", mode="before", check_fields=False)
    @classmethod
    def _coerce_increment(cls, v: Any) -> Optional[float]:
        number = _optional_number(v)
        return number if number and number > 0 else None

    @field_validator("is_default", "has_variants", mode="before", check_fields=False)
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return v is True or (isinstance(v, str) and v.lower() == "true")

    @field_validator("images", mode="before", check_fields=False)
    @classmethod
    def _coerce_images(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, str) and item]

    @field_validator("variants", "size_categories", mode="before", check_fields=False)
    @classmethod
    def _coerce_entries(cls, v: Any) -> list:
        # Malformed entries are dropped instead of failing the whole record
        if not isinstance(v, (list, tuple)):
            return []
        return [item for item in v if isinstance(item, (dict, BaseModel))]

    @field_validator("variant_summary", "price_range", mode="before", check_fields=False)
    @classmethod
    def _coerce_nested(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, BaseModel)) else None


class Variant(CatalogModel):
    """Purchasable option of a count-priced product"""
    id: str = Field("", validation_alias=AliasChoices("_id", "id"))
    label: str = ""
    price: float = 0.0
    sale_price: Optional[float] = None
    stock: float = 0.0
    status: Optional[str] = None
    measurement_increment: Optional[float] = None
    is_default: bool = False


class SizeCategory(CatalogModel):
    """Purchasable option of a weight-priced product, priced per kilogram"""
    id: str = Field("", validation_alias=AliasChoices("_id", "id"))
    label: str = ""
    price_per_kg: float = 0.0
    stock: float = 0.0
    status: Optional[str] = None
    min_weight: Optional[float] = None
    max_weight: Optional[float] = None
    measurement_increment: Optional[float] = None
    is_default: bool = False


class VariantSummary(CatalogModel):
    """Upstream aggregation over a product's variants"""
    total_stock: Optional[float] = None


class PriceBounds(CatalogModel):
    """Upstream price range as supplied by the catalog, either side may be missing"""
    min: Optional[float] = None
    max: Optional[float] = None


class UnitProduct(CatalogModel):
    """Count-priced product with optional discrete variants"""
    kind: Literal["unit"] = "unit"
    id: str = Field("", validation_alias=AliasChoices("_id", "id"))
    name: str = ""
    price: float = 0.0
    sale_price: Optional[float] = None
    stock: float = 0.0
    has_variants: bool = False
    variants: List[Variant] = Field(default_factory=list)
    variant_summary: Optional[VariantSummary] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class WeightProduct(CatalogModel):
    """Weight-priced product sold by size category"""
    kind: Literal["weight"] = "weight"
    id: str = Field("", validation_alias=AliasChoices("_id", "id"))
    name: str = ""
    size_categories: List[SizeCategory] = Field(default_factory=list)
    price_range: Optional[PriceBounds] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)


CatalogRecord = Annotated[Union[UnitProduct, WeightProduct], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Normalized products (derived)
# ---------------------------------------------------------------------------

class OutputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class PriceRange(OutputModel):
    """Closed price range, min <= max"""
    min: float
    max: float

    @model_validator(mode="after")
    def _check_order(self) -> "PriceRange":
        if self.min > self.max:
            raise ValueError(f"Price range min {self.min} exceeds max {self.max}")
        return self


class PriceResolution(OutputModel):
    """Display price plus optional range"""
    display_price: float = 0.0
    price_range: Optional[PriceRange] = None


class ProductOption(OutputModel):
    """A variant or size category a cart line can select"""
    id: str
    label: str = ""
    price: float = 0.0
    stock: float = 0.0
    active: bool = True
    measurement_increment: Optional[float] = None


class NormalizedProduct(OutputModel):
    """Canonical product shape consumed by the cart and display layers"""
    id: str
    name: str = ""
    display_price: float = 0.0
    price_range: Optional[PriceRange] = None
    total_stock: float = Field(0.0, ge=0)
    is_weight_based: bool = False
    default_variant_or_category_id: Optional[str] = None
    has_sale_price: bool = False
    image: Optional[str] = None
    options: Tuple[ProductOption, ...] = ()

    @model_validator(mode="after")
    def _check_display_price(self) -> "NormalizedProduct":
        if self.price_range is not None and self.display_price != self.price_range.min:
            raise ValueError("display_price must equal price_range.min when a range exists")
        return self

    @property
    def price_kind(self) -> PriceKind:
        return PriceKind.PER_WEIGHT if self.is_weight_based else PriceKind.PER_UNIT

    def get_option(self, option_id: Optional[str]) -> Optional[ProductOption]:
        if option_id is None:
            return None
        return next((option for option in self.options if option.id == option_id), None)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

class CartLine(BaseModel):
    """One cart entry: a (product, variant-or-category) selection"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=True,
    )

    product_id: str = Field(..., description="Product identifier")
    variant_or_category_id: Optional[str] = Field(None, description="Selected variant or size category")
    quantity: float = Field(..., ge=0, description="Units for per-unit lines, kilograms for per-weight lines")
    unit_price: float = Field(..., ge=0, description="Price at time of add (per unit or per kg)")
    price_kind: PriceKind = Field(PriceKind.PER_UNIT, description="Whether unit_price is per unit or per kg")
    measurement_increment: Optional[float] = Field(None, gt=0, description="Quantity step for weight lines")
    name: Optional[str] = Field(None, description="Product name for display")

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Quantity cannot be negative")
        return v

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.product_id, self.variant_or_category_id)

    @property
    def is_weight_based(self) -> bool:
        return self.price_kind == PriceKind.PER_WEIGHT


class CartSnapshot(BaseModel):
    """Serializable cart state with derived totals"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    lines: List[CartLine] = Field(default_factory=list, description="Cart lines in insertion order")
    cart_count: float = Field(0, description="Units plus one slot per weight line")
    cart_total: float = Field(0, description="Sum of line totals")


class AddResult(BaseModel):
    """Outcome of CartStore.add"""
    line: Optional[CartLine] = None
    clamped: bool = False
    requested: float = 0


# ---------------------------------------------------------------------------
# API requests
# ---------------------------------------------------------------------------

class UpdateQuantityRequest(BaseModel):
    """Request model for setting a line's quantity"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: str = Field(..., description="Product identifier")
    variant_or_category_id: Optional[str] = Field(None, description="Selected variant or size category")
    quantity: float = Field(..., description="New quantity, zero or less removes the line")


class ReplaceCartRequest(BaseModel):
    """Request model for replacing the whole server cart"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    lines: List[CartLine] = Field(default_factory=list, description="New cart contents")
