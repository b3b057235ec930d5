"""Strict product schema for the furniture catalog.

Catalog entries arrive as nested JSON documents (``product_identity``,
``description_and_category``, ``specifications``, ``materials_and_care``,
``related_products``, ``logistics_and_inventory``). The models below validate that
shape once at load time so the rest of the service can rely on typed, immutable
records instead of null-checking nested dicts at every use site.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

LEADING_INT_RE = re.compile(r"\d+")


def coerce_optional_int(value: object) -> Optional[int]:
    # Accept 6, "6", "6 seats" or "6-8"; anything else means unknown.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = LEADING_INT_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def coerce_optional_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace("£", "").replace(",", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ProductIdentity(_Frozen):
    sku: str = Field(..., min_length=1)
    product_name: str = ""
    image_url: str = ""
    price_gbp: Optional[float] = None

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("price_gbp", mode="before")
    @classmethod
    def _parse_price(cls, value: object) -> Optional[float]:
        return coerce_optional_float(value)


class DescriptionAndCategory(_Frozen):
    primary_category: str = ""
    material_type: str = ""
    taxonomy_type: str = ""


class Dimensions(_Frozen):
    width_cm: Optional[float] = None
    depth_cm: Optional[float] = None
    height_cm: Optional[float] = None

    @field_validator("width_cm", "depth_cm", "height_cm", mode="before")
    @classmethod
    def _parse_cm(cls, value: object) -> Optional[float]:
        return coerce_optional_float(value)


class Specifications(_Frozen):
    seats: Optional[int] = None
    dimensions: Optional[Union[Dimensions, str]] = None
    assembly_required: bool = False

    @field_validator("seats", mode="before")
    @classmethod
    def _parse_seats(cls, value: object) -> Optional[int]:
        seats = coerce_optional_int(value)
        if seats is not None and seats <= 0:
            return None
        return seats


class MaterialCare(_Frozen):
    name: str = ""
    warranty: str = ""
    durability_rating: Optional[str] = None
    pros: str = ""
    cons: str = ""

    @field_validator("durability_rating", mode="before")
    @classmethod
    def _rating_as_text(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("pros", "cons", mode="before")
    @classmethod
    def _join_lists(cls, value: object) -> object:
        if isinstance(value, list):
            return ", ".join(str(item) for item in value)
        return value if value is not None else ""


class RelatedProducts(_Frozen):
    matching_cover_sku: Optional[str] = None
    accessory_skus: Tuple[str, ...] = ()

    @field_validator("accessory_skus", mode="before")
    @classmethod
    def _accessories(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value


class InventoryRecord(_Frozen):
    available: Optional[int] = None

    @field_validator("available", mode="before")
    @classmethod
    def _parse_available(cls, value: object) -> Optional[int]:
        parsed = coerce_optional_int(value)
        if parsed is None:
            return None
        return max(parsed, 0)


class LogisticsAndInventory(_Frozen):
    inventory: Optional[InventoryRecord] = None


class Product(_Frozen):
    """Immutable catalog record keyed by SKU."""
    product_identity: ProductIdentity
    description_and_category: DescriptionAndCategory = Field(default_factory=DescriptionAndCategory)
    specifications: Specifications = Field(default_factory=Specifications)
    materials_and_care: Tuple[MaterialCare, ...] = ()
    related_products: RelatedProducts = Field(default_factory=RelatedProducts)
    logistics_and_inventory: Optional[LogisticsAndInventory] = None

    @field_validator("materials_and_care", mode="before")
    @classmethod
    def _materials(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, dict):
            return (value,)
        return value

    @property
    def sku(self) -> str:
        return self.product_identity.sku

    @property
    def name(self) -> str:
        return self.product_identity.product_name

    @property
    def category(self) -> str:
        return self.description_and_category.primary_category

    @property
    def material(self) -> str:
        return self.description_and_category.material_type

    @property
    def taxonomy(self) -> str:
        return self.description_and_category.taxonomy_type

    @property
    def seats(self) -> Optional[int]:
        return self.specifications.seats

    @property
    def list_price(self) -> Optional[float]:
        return self.product_identity.price_gbp

    @property
    def embedded_inventory(self) -> Optional[int]:
        """Inventory count carried inside the catalog entry, or None when absent."""
        logistics = self.logistics_and_inventory
        if logistics is None or logistics.inventory is None:
            return None
        return logistics.inventory.available


class ProductSummary(_Frozen):
    """Lightweight search projection; never carries presentation text."""
    sku: str
    name: str
    category: str
    seats: Optional[int] = None
    material: str = ""

    @classmethod
    def from_product(cls, product: Product) -> "ProductSummary":
        return cls(
            sku=product.sku,
            name=product.name,
            category=product.category,
            seats=product.seats,
            material=product.material,
        )


class PriceData(_Frozen):
    """Live price/stock figures for one SKU from the storefront API."""
    price: float = 0.0
    stock_quantity: Optional[int] = None
    canonical_url: str = ""
    title: str = ""


class StockRecord(_Frozen):
    sku: str
    available: int = Field(..., ge=0)
    sources: Tuple[str, ...] = ()

    @property
    def in_stock(self) -> bool:
        return self.available > 0

