"""
Canonical category taxonomy
This is our source of truth for categorizing products across shops
"""
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from preprocessor.core.config import MatchingThresholds


class TaxonomyDocument(BaseModel):
    """
    Parsed canonical taxonomy file.

    `categories` maps display name -> {slug, subcategories?}; subcategories is
    either another such map or a list of {name, slug} leaves.
    """

    categories: Dict[str, Any] = Field(default_factory=dict)
    # canonical term -> synonyms that point at it
    synonyms: Dict[str, List[str]] = Field(default_factory=dict)
    # Overrides configured thresholds when present
    matching: Optional[MatchingThresholds] = None
    units: Dict[str, Any] = Field(default_factory=dict)


class CategoryIndex:
    """Flattened lookups from category name or slug to its full path"""

    def __init__(self, categories: Dict[str, Any]):
        self._by_name: Dict[str, List[str]] = {}
        self._by_slug: Dict[str, List[str]] = {}
        # Insertion ordered; names and slugs share one table like the lookups
        self._texts: Dict[str, List[str]] = {}
        self._build(categories or {}, [])

    def _build(self, hierarchy: Dict[str, Any], parent: List[str]):
        for name, node in hierarchy.items():
            node = node or {}
            path = parent + [name]
            self._register(name, node.get("slug"), path)

            subcategories = node.get("subcategories")
            if isinstance(subcategories, list):
                # Leaf nodes
                for leaf in subcategories:
                    self._register(leaf["name"], leaf.get("slug"), path + [leaf["name"]])
            elif isinstance(subcategories, dict):
                self._build(subcategories, path)

    def _register(self, name: str, slug: Optional[str], path: List[str]):
        # Later nodes win on duplicate names
        self._by_name[name.lower()] = path
        self._texts[name.lower()] = path
        if slug:
            self._by_slug[slug] = path
            self._texts[slug] = path

    def find_path(self, term: str) -> Optional[List[str]]:
        """Resolve a display name (case-insensitive) or slug to a path"""
        if not term:
            return None
        path = self._by_name.get(term.lower()) or self._by_slug.get(term)
        return list(path) if path else None

    def path_for_slug(self, slug: str) -> Optional[List[str]]:
        path = self._by_slug.get(slug)
        return list(path) if path else None

    def category_texts(self) -> Iterator[Tuple[str, List[str]]]:
        """All known category texts (names and slugs) with their paths"""
        return iter(self._texts.items())

    def all_paths(self) -> List[List[str]]:
        """Distinct paths in document order"""
        seen = set()
        paths = []
        for path in self._by_name.values():
            key = tuple(path)
            if key not in seen:
                seen.add(key)
                paths.append(list(path))
        return paths

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, term: str) -> bool:
        return self.find_path(term) is not None
