"""
Base normalizer contract and shared helpers

Shop normalizers turn one raw vendor record into a CanonicalProduct and
stream results for a batch of records.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from preprocessor.core.logging import log
from preprocessor.schemas.canonical import CanonicalProduct

_URL_TAIL = re.compile(r"/([^/?#]+)/?(?:[?#].*)?$")


class NormalizationOptions(BaseModel):
    """Per-batch options handed to a normalizer"""

    shop: str
    source_file: str = "unknown"
    enable_validation: bool = True
    strict_mapping: bool = False
    verbose: bool = False
    # Line number of the first record in the batch within its file
    first_line: int = 1


class NormalizationResult(BaseModel):
    success: bool = False
    product: Optional[CanonicalProduct] = None
    errors: List[str] = []
    warnings: List[str] = []
    raw_product: Optional[Any] = None
    line_number: Optional[int] = None


def format_validation_error(exc: ValidationError) -> str:
    """Flatten pydantic errors: 'pricing.price: Input should be greater than 0; ...'"""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages)


class BaseNormalizer(ABC):
    """Base class for all shop normalizers"""

    version: str = "1.0.0"
    name: str = "base"
    required_fields: List[str] = []

    async def normalize(self, raw: Any, options: NormalizationOptions) -> NormalizationResult:
        """Normalize one record; failures come back as results, never raised"""
        result = NormalizationResult(raw_product=raw)

        try:
            if options.enable_validation and not self.can_handle(raw):
                result.errors.append("Raw product format not supported by this normalizer")
                return result

            product, warnings = await self.perform_normalization(raw, options)

            if options.enable_validation:
                problems = self.check_product(product)
                if problems:
                    result.errors.extend(f"Validation failed: {problem}" for problem in problems)
                    return result

            result.product = product
            result.warnings = warnings
            result.success = True

        except ValidationError as e:
            result.errors.append(f"Validation failed: {format_validation_error(e)}")
        except Exception as e:
            result.errors.append(f"Normalization error: {e}")
            if options.verbose:
                log.opt(exception=e).debug(f"Normalizer {self.name} failed on {options.source_file}")

        return result

    async def normalize_batch(self, raw_records: List[Any], options: NormalizationOptions) -> AsyncIterator[NormalizationResult]:
        """Yield one result per record, in input order"""
        for offset, raw in enumerate(raw_records):
            result = await self.normalize(raw, options)
            result.line_number = options.first_line + offset
            yield result

    @abstractmethod
    async def perform_normalization(self, raw: Dict[str, Any], options: NormalizationOptions):
        """Return (CanonicalProduct, warnings)"""
        pass

    def can_handle(self, raw: Any) -> bool:
        """Default check: every required field present and non-null"""
        if not isinstance(raw, dict):
            return False
        return all(raw.get(field) is not None for field in self.required_fields)

    def check_product(self, product: CanonicalProduct) -> List[str]:
        """Business checks beyond the schema"""
        problems = []
        pricing = product.pricing
        if pricing.original_price is not None and pricing.original_price < pricing.price:
            problems.append("original price is lower than current price")
        return problems

    # Shared helpers

    def generate_canonical_id(self, shop: str, raw: Dict[str, Any], url: Optional[str] = None) -> str:
        """gtin -> ean -> id -> URL tail -> content hash"""
        for field in ("gtin", "ean", "id"):
            value = raw.get(field)
            if value not in (None, ""):
                return f"{shop}:{value}"

        url = url or raw.get("url")
        if isinstance(url, str):
            match = _URL_TAIL.search(url)
            if match:
                return f"{shop}:{match.group(1)}"

        content = "|".join(
            str(raw.get(field)) for field in ("name", "title", "brand", "size", "weight") if raw.get(field)
        )
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        return f"{shop}:hash_{digest}"

    def extract_shop_product_id(self, raw: Dict[str, Any], url: Optional[str] = None) -> str:
        if raw.get("id") not in (None, ""):
            return str(raw["id"])

        url = url or raw.get("url")
        if isinstance(url, str):
            match = _URL_TAIL.search(url)
            if match:
                return match.group(1)

        content = "|".join(str(raw.get(field)) for field in ("name", "brand") if raw.get(field))
        return f"generated_{re.sub(r'[^a-zA-Z0-9]', '_', content[:20])}"

    def generate_source(self, shop: str, raw: Dict[str, Any], source_file: str, url: Optional[str] = None) -> Dict[str, Any]:
        return {
            "shop": shop,
            "shop_product_id": self.extract_shop_product_id(raw, url),
            "source_file": source_file,
            "fetched_at": datetime.now(timezone.utc),
        }

    def generate_audit(self, shop: str, notes: Optional[List[str]] = None, rule_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "normalizer_version": self.version,
            "category_rule_id": rule_id,
            "notes": [f"Normalized by {self.name} normalizer v{self.version} for {shop}", *(notes or [])],
        }
