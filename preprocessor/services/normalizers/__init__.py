"""
Shop normalizers
"""

from typing import Callable, Dict, Optional

from preprocessor.services.category_mapper import CategoryMappingEngine
from preprocessor.services.normalizers.base import (
    BaseNormalizer,
    NormalizationOptions,
    NormalizationResult,
    format_validation_error,
)
from preprocessor.services.normalizers.generic import GenericNormalizer

NormalizerFactory = Callable[[CategoryMappingEngine], BaseNormalizer]


class NormalizerRegistry:
    """Shop -> normalizer factory, with the generic normalizer as default"""

    def __init__(self, engine: CategoryMappingEngine, default: Optional[NormalizerFactory] = None, currency: str = "RON"):
        self.engine = engine
        self._factories: Dict[str, NormalizerFactory] = {}
        self._default = default or (lambda mapper: GenericNormalizer(mapper, currency=currency))
        self._instances: Dict[str, BaseNormalizer] = {}

    def register(self, shop: str, factory: NormalizerFactory):
        self._factories[shop] = factory
        self._instances.pop(shop, None)

    def get(self, shop: str) -> BaseNormalizer:
        if shop not in self._instances:
            factory = self._factories.get(shop, self._default)
            self._instances[shop] = factory(self.engine)
        return self._instances[shop]

    def __contains__(self, shop: str) -> bool:
        return shop in self._factories


__all__ = [
    "BaseNormalizer",
    "GenericNormalizer",
    "NormalizationOptions",
    "NormalizationResult",
    "NormalizerRegistry",
    "format_validation_error",
]
