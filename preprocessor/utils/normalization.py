"""
Text normalization utilities for consistent category keys
"""
import re
import unicodedata
from pathlib import Path
from typing import Iterable, Optional


def strip_diacritics(text: str) -> str:
    """Decompose (NFD) and drop combining marks: 'Ouă' -> 'Oua'"""
    decomposed = unicodedata.normalize('NFD', text)
    return ''.join(char for char in decomposed if not unicodedata.combining(char))


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize text for consistency:
    - Convert to lowercase
    - Remove accents
    - Remove special characters
    - Remove extra whitespace
    """
    if not text:
        return ""

    text = strip_diacritics(text.lower())

    # Remove special characters but keep alphanumeric and spaces
    text = re.sub(r'[^a-z0-9\s\-]', ' ', text)

    return ' '.join(text.split())


def slugify_segment(segment: str) -> str:
    """
    URL-safe slug for one category level.

    Deterministic and idempotent: slugify_segment(slugify_segment(x)) equals
    slugify_segment(x).
    """
    slug = strip_diacritics(segment.lower())
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def slugify_path(category_path: Iterable[str]) -> str:
    """Join slugged levels with '/': ['Lactate & Ouă', 'Lapte'] -> 'lactate-oua/lapte'"""
    return '/'.join(slugify_segment(segment) for segment in category_path)


def category_from_filename(filename: str) -> str:
    """
    Derive a raw category hint from an export file name.

    'lactate-si-oua---2024-05-01T10-00-00-000Z---freshful.json' -> 'lactate si oua'
    """
    base = Path(filename).name.lower()
    base = re.sub(r'\.json$', '', base)

    # Drop timestamps and '---' separated shop/domain suffixes
    base = re.sub(r'\d{4}-\d{2}-\d{2}t\d{2}-\d{2}-\d{2}(-\d{3})?z', '', base)
    base = re.sub(r'---.*$', '', base)
    base = re.sub(r'[-_]+', ' ', base)

    return ' '.join(base.split())
