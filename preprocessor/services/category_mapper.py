"""
Category Mapping Engine
Maps raw shop categories onto the canonical taxonomy using tiered matching
"""

import asyncio
import random
import re
import string
import time
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import Dict, List, Optional, Pattern

from preprocessor.core.category_config import CategoryConfigLoader
from preprocessor.core.config import MatchingThresholds, Settings
from preprocessor.core.exceptions import RuleValidationError
from preprocessor.core.logging import log
from preprocessor.core.taxonomy import CategoryIndex, TaxonomyDocument
from preprocessor.schemas.mapping import (
    MAX_SAMPLE_PRODUCTS,
    CategoryMappingResult,
    CategoryRule,
    CategoryRuleCreate,
    MappingContext,
    SampleProduct,
    UnmappedCategory,
)
from preprocessor.utils.normalization import normalize_text, slugify_path

# Indirect (name + brand) fuzzy matches count for less than category matches
CONTEXT_FUZZY_PENALTY = 0.8
FALLBACK_CONFIDENCE = 0.3

# Broad parents used when no tier matched; keywords are diacritic-free
BROAD_CATEGORIES = [
    (["aliment", "food", "mancare"], ["Alimente"]),
    (["bautur", "drink", "beverage"], ["Băuturi"]),
    (["cosmetice", "cosmetic", "beauty"], ["Cosmetice & Îngrijire"]),
    (["casa", "home", "household"], ["Casa & Menaj"]),
    (["copii", "baby", "kid"], ["Mama & copilul"]),
]


def generate_rule_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"rule_{int(time.time() * 1000)}_{suffix}"


class CategoryMappingEngine:
    """
    Category mapping using multiple strategies:
    1. Exact shop rules
    2. Regex shop rules
    3. Synonyms from the canonical taxonomy
    4. Fuzzy similarity against every category name and slug

    Misses are queued for review and fall back to a broad parent category.
    """

    def __init__(
        self,
        taxonomy: TaxonomyDocument,
        rules: Optional[Dict[str, List[CategoryRule]]] = None,
        thresholds: Optional[MatchingThresholds] = None,
        loader: Optional[CategoryConfigLoader] = None,
    ):
        """
        Args:
            taxonomy: Parsed canonical taxonomy
            rules: Shop -> ordered rule list
            thresholds: Used when the taxonomy has no `matching` section
            loader: Persists learned rules; without it rules stay in memory
        """
        self.taxonomy = taxonomy
        self.index = CategoryIndex(taxonomy.categories)
        self.thresholds = taxonomy.matching or thresholds or MatchingThresholds()
        self._rules: Dict[str, List[CategoryRule]] = {shop: list(items) for shop, items in (rules or {}).items()}
        self._loader = loader
        self._unmapped: Dict[str, UnmappedCategory] = {}

        # Compiled regex per rule id; None marks a pattern that failed to compile
        self._regex_cache: Dict[str, Optional[Pattern]] = {}

    @classmethod
    def load(cls, settings: Settings) -> "CategoryMappingEngine":
        """Read taxonomy and shop rules from disk and return a ready engine"""
        loader = CategoryConfigLoader(settings.paths.taxonomy_file, settings.paths.shops)
        taxonomy = loader.load_taxonomy()
        rules = loader.load_shop_rules()

        engine = cls(taxonomy, rules, thresholds=settings.mapping, loader=loader)
        log.info(
            f"Category mapping engine ready: {len(engine.index)} categories, "
            f"{sum(len(r) for r in engine._rules.values())} rules"
        )
        return engine

    async def map_category(self, context: MappingContext) -> CategoryMappingResult:
        """Map one raw category; never raises for unknown input"""
        tiers = [
            (self._exact_match, self.thresholds.exact_match),
            (self._regex_match, self.thresholds.regex_match),
            (self._synonym_match, self.thresholds.synonym_match),
            (self._fuzzy_match, self.thresholds.fuzzy_threshold),
        ]

        result = None
        for tier, threshold in tiers:
            result, rule = tier(context)
            if result.confidence and result.confidence >= threshold and result.confidence >= self.thresholds.minimum_confidence:
                if rule is not None:
                    rule.usage_count += 1
                return result

        # No match found - queue for review
        self._add_to_unmapped_queue(context, result)

        return self._fallback_mapping(context)

    def _exact_match(self, context: MappingContext):
        for rule in self._shop_rules(context.shop, "exact"):
            if rule.pattern == context.original_category:
                return self._rule_result(rule, self.thresholds.exact_match), rule

        return CategoryMappingResult.unmapped("No exact match found"), None

    def _regex_match(self, context: MappingContext):
        for rule in self._shop_rules(context.shop, "regex"):
            regex = self._compiled(rule)
            if regex is not None and regex.search(context.original_category):
                return self._rule_result(rule, self.thresholds.regex_match), rule

        return CategoryMappingResult.unmapped("No regex match found"), None

    def _synonym_match(self, context: MappingContext):
        if not self.taxonomy.synonyms:
            return CategoryMappingResult.unmapped("No synonyms configured"), None

        category_text = context.original_category.lower()
        combined_text = " ".join(
            part
            for part in [context.original_category, context.product_name, context.brand_name, *context.hints]
            if part
        ).lower()

        # Every synonym hit carries the same confidence, so the first resolvable one wins
        for canonical_term, synonyms in self.taxonomy.synonyms.items():
            for synonym in synonyms or []:
                needle = synonym.lower()
                if not needle or (needle not in category_text and needle not in combined_text):
                    continue
                path = self.index.find_path(canonical_term)
                if path:
                    return (
                        CategoryMappingResult(
                            category_path=path,
                            category_slug=slugify_path(path),
                            mapping_status="ok",
                            confidence=self.thresholds.synonym_match,
                            notes=["Matched via synonyms"],
                        ),
                        None,
                    )

        return CategoryMappingResult.unmapped("No synonym match found"), None

    def _fuzzy_match(self, context: MappingContext):
        threshold = self.thresholds.fuzzy_threshold
        best_score = 0.0
        best_path = None
        best_text = None

        category_text = context.original_category.lower()
        candidates = list(self.index.category_texts())

        for text, path in candidates:
            score = SequenceMatcher(None, category_text, text.lower()).ratio()
            if score > best_score:
                best_score, best_path, best_text = score, path, text

        # Also test product name + brand for context
        context_text = " ".join(part for part in [context.product_name, context.brand_name] if part).lower()
        if context_text:
            for text, path in candidates:
                score = SequenceMatcher(None, context_text, text.lower()).ratio() * CONTEXT_FUZZY_PENALTY
                if score > best_score:
                    best_score, best_path, best_text = score, path, text

        if best_path and best_score >= threshold:
            return (
                CategoryMappingResult(
                    category_path=list(best_path),
                    category_slug=slugify_path(best_path),
                    mapping_status="fuzzy-match",
                    confidence=round(min(best_score, 1.0), 4),
                    notes=[f'Fuzzy matched to "{best_text}"'],
                ),
                None,
            )

        return CategoryMappingResult.unmapped("No fuzzy match above threshold"), None

    def _fallback_mapping(self, context: MappingContext) -> CategoryMappingResult:
        """Map to a broad category by keyword, else to Other"""
        combined_text = normalize_text(
            " ".join(part for part in [context.original_category, context.product_name, context.brand_name] if part)
        )

        for keywords, path in BROAD_CATEGORIES:
            if any(keyword in combined_text for keyword in keywords):
                return CategoryMappingResult(
                    category_path=list(path),
                    category_slug=slugify_path(path),
                    mapping_status="fallback-parent",
                    confidence=FALLBACK_CONFIDENCE,
                    notes=["Fallback to broad category"],
                )

        return CategoryMappingResult.unmapped("No mapping found - using fallback")

    def _add_to_unmapped_queue(self, context: MappingContext, last_attempt: Optional[CategoryMappingResult]):
        key = f"{context.shop}:{context.original_category}"
        existing = self._unmapped.get(key)

        if existing is None:
            self._unmapped[key] = UnmappedCategory(
                shop=context.shop,
                original_category=context.original_category,
                sample_products=(
                    [SampleProduct(name=context.product_name, brand=context.brand_name)] if context.product_name else []
                ),
                count=1,
                first_seen=datetime.now(timezone.utc),
                suggestions=[last_attempt] if last_attempt else [],
            )
            log.debug(f"New unmapped category for {context.shop}: {context.original_category!r}")
            return

        existing.count += 1
        if context.product_name and len(existing.sample_products) < MAX_SAMPLE_PRODUCTS:
            if all(sample.name != context.product_name for sample in existing.sample_products):
                existing.sample_products.append(SampleProduct(name=context.product_name, brand=context.brand_name))

    def _shop_rules(self, shop: str, pattern_type: str):
        for rule in self._rules.get(shop, []):
            if rule.enabled and rule.pattern_type == pattern_type:
                yield rule

    def _compiled(self, rule: CategoryRule) -> Optional[Pattern]:
        if rule.id not in self._regex_cache:
            try:
                self._regex_cache[rule.id] = re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                log.warning(f"Invalid regex pattern in rule {rule.id}: {e}")
                self._regex_cache[rule.id] = None
        return self._regex_cache[rule.id]

    @staticmethod
    def _rule_result(rule: CategoryRule, confidence: float) -> CategoryMappingResult:
        return CategoryMappingResult(
            category_path=list(rule.target_path),
            category_slug=slugify_path(rule.target_path),
            mapping_status="ok",
            confidence=confidence,
            rule_id=rule.id,
        )

    # Learning and review

    async def add_mapping_rule(self, rule: CategoryRuleCreate) -> CategoryRule:
        """Store a new rule ahead of the shop's existing rules and persist it"""
        if rule.pattern_type == "regex":
            try:
                re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                raise RuleValidationError(f"Invalid regex pattern {rule.pattern!r}: {e}", shop=rule.shop) from e

        stored = CategoryRule(
            **rule.model_dump(),
            id=generate_rule_id(),
            created_at=datetime.now(timezone.utc),
            usage_count=0,
        )
        self._rules.setdefault(rule.shop, []).insert(0, stored)
        await self._persist(rule.shop)

        log.info(f"Added {stored.pattern_type} rule {stored.id} for {stored.shop}: {stored.pattern!r} -> {stored.target_path}")
        return stored

    async def set_rule_enabled(self, shop: str, rule_id: str, enabled: bool) -> bool:
        """Toggle a rule; returns False when the rule does not exist"""
        for rule in self._rules.get(shop, []):
            if rule.id == rule_id:
                rule.enabled = enabled
                await self._persist(shop)
                return True
        return False

    async def _persist(self, shop: str):
        if self._loader is None:
            return
        await asyncio.to_thread(self._loader.save_shop_rules, shop, list(self._rules[shop]))

    def get_rules(self, shop: str) -> List[CategoryRule]:
        return list(self._rules.get(shop, []))

    def known_shops(self) -> List[str]:
        return sorted(self._rules)

    def get_unmapped_queue(self, shop: Optional[str] = None) -> List[UnmappedCategory]:
        """Unmapped categories for review, most frequent first"""
        entries = [entry for entry in self._unmapped.values() if shop is None or entry.shop == shop]
        return sorted(entries, key=lambda entry: entry.count, reverse=True)

    def clear_unmapped_entry(self, shop: str, original_category: str) -> bool:
        """Drop a queue entry after manual mapping; True if it existed"""
        return self._unmapped.pop(f"{shop}:{original_category}", None) is not None
