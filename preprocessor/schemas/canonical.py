"""
Canonical product schemas

Every normalizer produces CanonicalProduct records; the shard writer and all
downstream consumers rely on this shape only.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MappingStatus = Literal["ok", "fallback-parent", "fuzzy-match", "manual-override", "unmapped"]
DiscountType = Literal["percent", "second_item_percent", "bundle", "card", "price_drop"]
UnitType = Literal["kg", "l", "pcs", "g", "ml"]
StockStatus = Literal["in_stock", "out_of_stock", "limited_stock", "pre_order"]
ImageRole = Literal["thumb", "main", "gallery"]

UNMAPPED_PATH = ["Other"]
UNMAPPED_SLUG = "other"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Source(_Frozen):
    """Where a record came from"""

    shop: str = Field(..., min_length=1)
    shop_product_id: str = Field(..., min_length=1)
    source_file: str = Field(..., min_length=1)
    fetched_at: datetime


class UnitPrice(_Frozen):
    value: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)


class Discount(_Frozen):
    type: Optional[DiscountType] = None
    value: float = Field(..., ge=0)
    meta: Optional[str] = None


class Pricing(_Frozen):
    price: float = Field(..., gt=0)
    currency: str = "RON"
    unit_price: Optional[UnitPrice] = None
    original_price: Optional[float] = Field(None, gt=0)
    discount: Optional[Discount] = None


class Pack(_Frozen):
    size: float = Field(..., gt=0)
    unit: UnitType


class Stock(_Frozen):
    in_stock: bool
    status: StockStatus


class ImageInfo(_Frozen):
    url: str = Field(..., pattern=r"^https?://")
    role: ImageRole


class Attributes(_Frozen):
    country: Optional[str] = None
    dietary: List[str] = []
    allergens: List[str] = []
    promo_flags: List[str] = []


class Urls(_Frozen):
    product: Optional[str] = None
    shop_category: Optional[str] = None


class Audit(_Frozen):
    normalizer_version: str = Field(..., min_length=1)
    category_rule_id: Optional[str] = None
    notes: List[str] = []


class CanonicalProduct(_Frozen):
    """Normalized product record; immutable once built"""

    canonical_id: str = Field(..., min_length=1)
    source: Source

    # Product information
    title: str = Field(..., min_length=1)
    brand: Optional[str] = None
    description: Optional[str] = None

    # Category hierarchy, root first
    category_path: List[str] = Field(..., min_length=1)
    category_slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9\-/]+$")
    mapping_status: MappingStatus

    # Media
    images: List[ImageInfo] = []

    # Pricing and availability
    pricing: Pricing
    pack: Pack
    stock: Stock

    # Identifiers
    gtin: Optional[str] = None

    # Attributes and metadata
    attributes: Attributes = Attributes()
    urls: Optional[Urls] = None

    # Audit trail
    audit: Audit

    @model_validator(mode="after")
    def check_category(self) -> "CanonicalProduct":
        if any(not level for level in self.category_path):
            raise ValueError("Category levels cannot be empty")
        if self.mapping_status == "unmapped" and self.category_path != UNMAPPED_PATH:
            raise ValueError("Unmapped products must use the 'Other' category")
        return self

    def to_index_entry(self) -> "ProductIndexEntry":
        return ProductIndexEntry(
            canonical_id=self.canonical_id,
            title=self.title,
            brand=self.brand,
            category_path=self.category_path,
            category_slug=self.category_slug,
            price=self.pricing.price,
            images=[image.url for image in self.images],
            in_stock=self.stock.in_stock,
        )


class ProductIndexEntry(_Frozen):
    """Minimal product info for the flat index file"""

    canonical_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    brand: Optional[str] = None
    category_path: List[str] = Field(..., min_length=1)
    category_slug: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    images: List[str] = []
    in_stock: bool
