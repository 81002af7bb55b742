"""
Generic normalizer
Reads the common field names seen across vendor exports; used for every shop
without a dedicated normalizer.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from preprocessor.core.exceptions import NormalizationError
from preprocessor.schemas.canonical import CanonicalProduct
from preprocessor.schemas.mapping import MappingContext
from preprocessor.services.category_mapper import CategoryMappingEngine
from preprocessor.services.normalizers.base import BaseNormalizer, NormalizationOptions
from preprocessor.utils.normalization import category_from_filename
from preprocessor.utils.pricing import calculate_unit_price, parse_price, parse_size, parse_unit_price

NAME_FIELDS = [
    "name",
    "title",
    "productName",
    "image_image__nanvf_description",
    "description_2",
    "odsc_tile__link",
]
BRAND_FIELDS = ["brand", "manufacturer", "productdefaultcard_brand__ix27n", "product_grid_box__brand"]
PRICE_FIELDS = ["price", "current_price", "cost", "value"]
ORIGINAL_PRICE_FIELDS = ["original_price", "old_price", "price_old", "list_price"]
UNIT_PRICE_FIELDS = ["unit_price", "price_per_unit", "productprice_perunit__4wcmu"]
SIZE_FIELDS = ["size", "weight", "quantity", "pack_size", "volume"]
IMAGE_FIELDS = ["image", "image_url", "imageUrl", "image_image__nanvf_image", "photo"]
URL_FIELDS = ["url", "product_url", "productUrl", "link", "productdefaultcard_root__5axhf_url"]
GTIN_FIELDS = ["gtin", "ean", "barcode"]
PROMO_FIELDS = ["promo", "promotion", "badge", "discount"]
CATEGORY_URL_FIELDS = ["category_url", "shop_category_url"]

OUT_OF_STOCK_MARKERS = ["out of stock", "indisponibil", "stoc epuizat", "epuizat", "unavailable"]
LIMITED_STOCK_MARKERS = ["stoc limitat", "limited"]
PRE_ORDER_MARKERS = ["precomanda", "pre-order", "preorder"]

_PERCENT = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
_LOOKS_LIKE_PRICE = re.compile(r"^\d+[.,]?\d*\s*(lei|ron|€|\$)?$", re.IGNORECASE)


def first_text(raw: Dict[str, Any], fields: List[str]) -> Optional[str]:
    for field in fields:
        value = raw.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def first_http(raw: Dict[str, Any], fields: List[str]) -> Optional[str]:
    for field in fields:
        value = raw.get(field)
        if isinstance(value, str) and value.startswith("http"):
            return value
    return None


class GenericNormalizer(BaseNormalizer):
    """Field-name driven normalizer that accepts any record with a product name"""

    name = "generic"
    version = "1.0.0"

    def __init__(self, engine: CategoryMappingEngine, currency: str = "RON"):
        self.engine = engine
        self.currency = currency

    def can_handle(self, raw: Any) -> bool:
        return isinstance(raw, dict) and self.extract_name(raw) is not None

    def extract_name(self, raw: Dict[str, Any]) -> Optional[str]:
        return first_text(raw, NAME_FIELDS)

    def extract_brand(self, raw: Dict[str, Any]) -> Optional[str]:
        brand = first_text(raw, BRAND_FIELDS)
        # Some exports put the price in the brand column
        if brand and _LOOKS_LIKE_PRICE.match(brand):
            return None
        return brand

    def extract_price(self, raw: Dict[str, Any]) -> Tuple[float, float]:
        """Returns (price, confidence); 0 when nothing parses"""
        # Split prices: integer part and cents in separate columns
        if raw.get("price") is not None and raw.get("price_1") is not None:
            parsed = parse_price(f"{raw['price']},{raw['price_1']}")
            if parsed.value > 0:
                return parsed.value, parsed.confidence * 0.9

        for field in PRICE_FIELDS:
            if field in raw:
                parsed = parse_price(raw[field])
                if parsed.value > 0:
                    return parsed.value, parsed.confidence
        return 0.0, 0.0

    def extract_original_price(self, raw: Dict[str, Any]) -> Optional[float]:
        for field in ORIGINAL_PRICE_FIELDS:
            if raw.get(field) is not None:
                parsed = parse_price(raw[field])
                if parsed.value > 0:
                    return parsed.value
        return None

    def extract_category(self, raw: Dict[str, Any], source_file: str) -> str:
        category = raw.get("category")
        if isinstance(category, list):
            category = " > ".join(str(level) for level in category if level)
        if isinstance(category, str) and category.strip():
            return category.strip()
        return category_from_filename(Path(source_file).name)

    def extract_stock(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(raw.get("in_stock"), bool):
            in_stock = raw["in_stock"]
            return {"in_stock": in_stock, "status": "in_stock" if in_stock else "out_of_stock"}

        text = " ".join(str(raw.get(field) or "") for field in ("stock", "availability", "stock_status")).lower()
        if any(marker in text for marker in OUT_OF_STOCK_MARKERS):
            return {"in_stock": False, "status": "out_of_stock"}
        if any(marker in text for marker in PRE_ORDER_MARKERS):
            return {"in_stock": False, "status": "pre_order"}
        if any(marker in text for marker in LIMITED_STOCK_MARKERS):
            return {"in_stock": True, "status": "limited_stock"}
        return {"in_stock": True, "status": "in_stock"}

    def extract_discount(self, promo: Optional[str], price: float, original_price: Optional[float]) -> Optional[Dict[str, Any]]:
        if promo:
            match = _PERCENT.search(promo)
            if match:
                discount_type = "second_item_percent" if "al doilea" in promo.lower() else "percent"
                return {"type": discount_type, "value": float(match.group(1).replace(",", ".")), "meta": promo}
        if original_price and original_price > price:
            return {"type": "price_drop", "value": round(original_price - price, 2), "meta": promo}
        return None

    async def perform_normalization(self, raw: Dict[str, Any], options: NormalizationOptions):
        shop = options.shop
        warnings: List[str] = []

        name = self.extract_name(raw)
        if not name:
            raise NormalizationError("Could not extract product name", shop=shop)

        brand = self.extract_brand(raw)
        price, price_confidence = self.extract_price(raw)
        original_price = self.extract_original_price(raw)
        url = first_http(raw, URL_FIELDS)
        image = first_http(raw, IMAGE_FIELDS)
        gtin = first_text(raw, GTIN_FIELDS)

        # Pack size from a dedicated column, else from the title
        size = parse_size(first_text(raw, SIZE_FIELDS))
        if not size.confidence:
            size = parse_size(name)
        has_size = bool(size.confidence) and size.size > 0

        unit_price = parse_unit_price(first_text(raw, UNIT_PRICE_FIELDS), self.currency)
        if unit_price is None and has_size:
            unit_price = calculate_unit_price(price, size, self.currency)

        promo = first_text(raw, PROMO_FIELDS)
        original_category = self.extract_category(raw, options.source_file)

        mapping = await self.engine.map_category(
            MappingContext(
                shop=shop,
                original_category=original_category,
                product_name=name,
                brand_name=brand,
            )
        )
        if options.strict_mapping and mapping.mapping_status != "ok":
            warnings.append(f"Category {original_category!r} mapped with status {mapping.mapping_status}")

        data = {
            "canonical_id": self.generate_canonical_id(shop, raw, url),
            "source": self.generate_source(shop, raw, options.source_file, url),
            "title": name,
            "brand": brand,
            "description": raw.get("description") if isinstance(raw.get("description"), str) else None,
            "category_path": mapping.category_path,
            "category_slug": mapping.category_slug,
            "mapping_status": mapping.mapping_status,
            "images": [{"url": image, "role": "main"}] if image else [],
            "pricing": {
                "price": price,
                "currency": self.currency,
                "unit_price": {"value": unit_price.value, "unit": unit_price.unit} if unit_price else None,
                "original_price": original_price,
                "discount": self.extract_discount(promo, price, original_price),
            },
            "pack": {"size": size.size, "unit": size.unit} if has_size else {"size": 1, "unit": "pcs"},
            "stock": self.extract_stock(raw),
            "gtin": gtin,
            "attributes": {
                "country": first_text(raw, ["country", "origin", "tara_de_origine"]),
                "promo_flags": [promo] if promo else [],
            },
            "urls": (
                {"product": url, "shop_category": first_http(raw, CATEGORY_URL_FIELDS)} if url else None
            ),
            "audit": self.generate_audit(
                shop,
                notes=[
                    f"Category: {' > '.join(mapping.category_path)} ({original_category})",
                    f"Price confidence: {price_confidence:.2f}",
                    *mapping.notes,
                ],
                rule_id=mapping.rule_id,
            ),
        }

        return CanonicalProduct.model_validate(data), warnings
