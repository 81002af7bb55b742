"""
Price and pack-size parsing for vendor exports

Handles Romanian ("12,99 lei", "1.299,99") and international ("1,299.99")
price formats and multi-pack sizes ("2x500ml").
"""
import re
from dataclasses import dataclass
from typing import Any, Optional

UNIT_MAP = {
    'g': 'g',
    'gr': 'g',
    'gram': 'g',
    'grame': 'g',
    'grams': 'g',
    'kg': 'kg',
    'kilo': 'kg',
    'kilogram': 'kg',
    'kilograme': 'kg',
    'ml': 'ml',
    'mililitri': 'ml',
    'milliliter': 'ml',
    'l': 'l',
    'litru': 'l',
    'litri': 'l',
    'liter': 'l',
    'litre': 'l',
    'buc': 'pcs',
    'bucata': 'pcs',
    'bucati': 'pcs',
    'bucăți': 'pcs',
    'pc': 'pcs',
    'pcs': 'pcs',
    'piece': 'pcs',
    'pieces': 'pcs',
}

_CURRENCY = re.compile(r'lei|ron|eur|€|\$', re.IGNORECASE)
_SIZE_UNITS = r'kg|gr|g|ml|l|bucăți|bucati|bucata|buc|pcs|pieces|piece'


@dataclass
class ParsedPrice:
    value: float
    original_text: str
    # 0-1, how confident we are in the parse
    confidence: float


@dataclass
class ParsedSize:
    size: float
    unit: str
    original_text: str
    confidence: float
    total_grams: Optional[float] = None
    total_ml: Optional[float] = None


@dataclass
class ParsedUnitPrice:
    value: float
    # "RON/kg", "RON/l", "RON/pcs"
    unit: str
    original_text: str


def parse_price(value: Any) -> ParsedPrice:
    """
    Parse a price from a number or vendor string.

    Returns value 0 with confidence 0 when nothing usable is found.
    """
    if isinstance(value, bool) or value is None:
        return ParsedPrice(0.0, str(value or ''), 0.0)

    if isinstance(value, (int, float)):
        if value <= 0:
            return ParsedPrice(0.0, str(value), 0.0)
        return ParsedPrice(float(value), str(value), 1.0)

    original = str(value).strip()
    cleaned = _CURRENCY.sub('', original.lower())
    cleaned = re.sub(r'[\s ]+', '', cleaned)
    confidence = 0.8

    if re.fullmatch(r'\d+,\d{1,2}', cleaned):
        # Romanian decimal comma: "12,99"
        cleaned = cleaned.replace(',', '.')
        confidence = 0.95
    elif re.fullmatch(r'\d{1,3}(\.\d{3})+,\d{1,2}', cleaned):
        # "1.299,99"
        cleaned = cleaned.replace('.', '').replace(',', '.')
        confidence = 0.9
    elif re.fullmatch(r'\d{1,3}(,\d{3})+\.\d{1,2}', cleaned):
        # "1,299.99"
        cleaned = cleaned.replace(',', '')
        confidence = 0.85
    elif re.fullmatch(r'\d+', cleaned):
        confidence = 0.7

    if not re.fullmatch(r'\d+(\.\d+)?', cleaned):
        return ParsedPrice(0.0, original, 0.0)

    parsed = float(cleaned)
    if parsed <= 0:
        return ParsedPrice(0.0, original, 0.0)

    # Very high or very low prices are suspicious
    if parsed > 10000:
        confidence *= 0.5
    if parsed < 0.01:
        confidence *= 0.3

    return ParsedPrice(parsed, original, confidence)


def normalize_unit(unit: Optional[str]) -> str:
    """Map a unit spelling onto kg|g|l|ml|pcs, defaulting to pcs"""
    if not unit:
        return 'pcs'
    return UNIT_MAP.get(unit.strip().lower().rstrip('.'), 'pcs')


def parse_size(value: Optional[str]) -> ParsedSize:
    """
    Extract pack size: "500g", "1,5 l", "2x500ml" (multi-pack summed), "12 buc"
    """
    if not value or not isinstance(value, str):
        return ParsedSize(0.0, 'pcs', str(value or ''), 0.0)

    original = value.strip()
    text = re.sub(r'\s+', '', original.lower())

    multi = re.search(rf'(\d+)x(\d+(?:[.,]\d+)?)({_SIZE_UNITS})', text)
    if multi:
        size = int(multi.group(1)) * float(multi.group(2).replace(',', '.'))
        result = ParsedSize(size, normalize_unit(multi.group(3)), original, 0.95)
        return _with_base_units(result)

    single = re.search(rf'(\d+(?:[.,]\d+)?)({_SIZE_UNITS})(?![a-z])', text)
    if single:
        size = float(single.group(1).replace(',', '.'))
        result = ParsedSize(size, normalize_unit(single.group(2)), original, 0.9)
        return _with_base_units(result)

    return ParsedSize(0.0, 'pcs', original, 0.0)


def parse_unit_price(value: Optional[str], currency: str = 'RON') -> Optional[ParsedUnitPrice]:
    """Parse "2,36 Lei/l" or "12.5 RON/kg" into a per-unit price"""
    if not value or not isinstance(value, str):
        return None

    match = re.search(r'(\d+(?:[.,]\d+)?)\s*(?:lei|ron)\s*/\s*(kg|l|ml|g|buc|pcs)', value, re.IGNORECASE)
    if not match:
        return None

    amount = float(match.group(1).replace(',', '.'))
    if amount <= 0:
        return None
    return ParsedUnitPrice(amount, f"{currency}/{normalize_unit(match.group(2))}", value.strip())


def calculate_unit_price(price: float, size: ParsedSize, currency: str = 'RON') -> Optional[ParsedUnitPrice]:
    """Price per kg / l / piece, rounded to 2 decimals"""
    if price <= 0:
        return None
    if size.total_grams:
        return ParsedUnitPrice(round(price / size.total_grams * 1000, 2), f"{currency}/kg", 'calculated')
    if size.total_ml:
        return ParsedUnitPrice(round(price / size.total_ml * 1000, 2), f"{currency}/l", 'calculated')
    if size.unit == 'pcs' and size.size > 0:
        return ParsedUnitPrice(round(price / size.size, 2), f"{currency}/pcs", 'calculated')
    return None


def _with_base_units(result: ParsedSize) -> ParsedSize:
    if result.unit == 'kg':
        result.total_grams = result.size * 1000
    elif result.unit == 'g':
        result.total_grams = result.size
    elif result.unit == 'l':
        result.total_ml = result.size * 1000
    elif result.unit == 'ml':
        result.total_ml = result.size
    return result
