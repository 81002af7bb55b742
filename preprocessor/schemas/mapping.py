"""
Category mapping schemas
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from preprocessor.schemas.canonical import UNMAPPED_PATH, UNMAPPED_SLUG, MappingStatus

PatternType = Literal["exact", "regex", "synonym", "fuzzy"]
RuleOrigin = Literal["system", "admin", "learning"]

MAX_SAMPLE_PRODUCTS = 5


class CategoryRuleBase(BaseModel):
    """Base rule schema"""

    shop: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    pattern_type: PatternType
    target_path: List[str] = Field(..., min_length=1)
    confidence: float = Field(1.0, ge=0, le=1)
    created_by: RuleOrigin = "admin"
    enabled: bool = True


class CategoryRuleCreate(CategoryRuleBase):
    """Schema for learning a new rule"""

    pass


class CategoryRule(CategoryRuleBase):
    """Stored per-shop classification rule"""

    id: str = Field(..., min_length=1)
    created_at: datetime
    usage_count: int = Field(0, ge=0)


class MappingContext(BaseModel):
    """Input to one mapping call; never persisted"""

    shop: str
    original_category: str
    product_name: Optional[str] = None
    brand_name: Optional[str] = None
    # Additional context clues
    hints: List[str] = []


class CategoryMappingResult(BaseModel):
    """Outcome of a mapping attempt"""

    category_path: List[str] = Field(..., min_length=1)
    category_slug: str = Field(..., min_length=1)
    mapping_status: MappingStatus
    confidence: float = Field(0.0, ge=0, le=1)
    rule_id: Optional[str] = None
    notes: List[str] = []

    @classmethod
    def unmapped(cls, note: str) -> "CategoryMappingResult":
        return cls(
            category_path=list(UNMAPPED_PATH),
            category_slug=UNMAPPED_SLUG,
            mapping_status="unmapped",
            confidence=0.0,
            notes=[note],
        )


class SampleProduct(BaseModel):
    name: str = Field(..., min_length=1)
    brand: Optional[str] = None
    url: Optional[str] = None


class UnmappedCategory(BaseModel):
    """Review-queue entry aggregated per (shop, original category)"""

    shop: str
    original_category: str
    sample_products: List[SampleProduct] = Field([], max_length=MAX_SAMPLE_PRODUCTS)
    count: int = Field(1, gt=0)
    first_seen: datetime
    suggestions: List[CategoryMappingResult] = []
