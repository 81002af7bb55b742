"""
Pydantic models for canonical products, mapping and processing runs
"""

from .canonical import (
    Attributes,
    Audit,
    CanonicalProduct,
    Discount,
    ImageInfo,
    Pack,
    Pricing,
    ProductIndexEntry,
    Source,
    Stock,
    UnitPrice,
    Urls,
)
from .mapping import (
    CategoryMappingResult,
    CategoryRule,
    CategoryRuleCreate,
    MappingContext,
    SampleProduct,
    UnmappedCategory,
)
from .processing import (
    ProcessingError,
    ProcessingOptions,
    ProcessingOutputs,
    ProcessingResult,
    ProcessingStats,
    ShardInfo,
    ShardingStats,
)

__all__ = [
    # Canonical
    "Attributes",
    "Audit",
    "CanonicalProduct",
    "Discount",
    "ImageInfo",
    "Pack",
    "Pricing",
    "ProductIndexEntry",
    "Source",
    "Stock",
    "UnitPrice",
    "Urls",
    # Mapping
    "CategoryMappingResult",
    "CategoryRule",
    "CategoryRuleCreate",
    "MappingContext",
    "SampleProduct",
    "UnmappedCategory",
    # Processing
    "ProcessingError",
    "ProcessingOptions",
    "ProcessingOutputs",
    "ProcessingResult",
    "ProcessingStats",
    "ShardInfo",
    "ShardingStats",
]
