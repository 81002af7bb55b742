"""
Test configuration and fixtures
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import orjson
import pytest
import yaml
from loguru import logger

from preprocessor.core.config import OutputSettings, PathSettings, ProcessingSettings, Settings
from preprocessor.core.taxonomy import TaxonomyDocument
from preprocessor.schemas.canonical import CanonicalProduct
from preprocessor.schemas.mapping import CategoryRule
from preprocessor.services.category_mapper import CategoryMappingEngine
from preprocessor.utils.normalization import slugify_path

TEST_SHOP = "x"

TAXONOMY = {
    "categories": {
        "Lactate & Ouă": {
            "slug": "lactate-oua",
            "subcategories": [
                {"name": "Lapte", "slug": "lapte"},
                {"name": "Iaurt", "slug": "iaurt"},
                {"name": "Brânzeturi", "slug": "branzeturi"},
            ],
        },
        "Băuturi": {
            "slug": "bauturi",
            "subcategories": [
                {"name": "Apă", "slug": "apa"},
                {"name": "Sucuri", "slug": "sucuri"},
            ],
        },
        "Fructe & legume": {
            "slug": "fructe-legume",
            "subcategories": {
                "Fructe": {"slug": "fructe"},
            },
        },
    },
    "synonyms": {
        "Iaurt": ["iaurt", "yogurt"],
        "Sucuri": ["juice", "nectar"],
    },
}


def make_rule(rule_id, pattern, pattern_type, target_path, shop=TEST_SHOP, enabled=True):
    return CategoryRule(
        id=rule_id,
        shop=shop,
        pattern=pattern,
        pattern_type=pattern_type,
        target_path=target_path,
        created_by="system",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        enabled=enabled,
    )


@pytest.fixture
def taxonomy():
    """Parsed test taxonomy"""
    return TaxonomyDocument.model_validate(TAXONOMY)


@pytest.fixture
def shop_rules():
    """Rules for the test shop; includes one uncompilable regex"""
    return {
        TEST_SHOP: [
            make_rule("rule_exact_lapte", "Lapte", "exact", ["Lactate & Ouă", "Lapte"]),
            make_rule("rule_bad_regex", "([unclosed", "regex", ["Băuturi"]),
            make_rule("rule_regex_sucuri", "^sucuri", "regex", ["Băuturi", "Sucuri"]),
        ]
    }


@pytest.fixture
def engine(taxonomy, shop_rules):
    """In-memory mapping engine"""
    return CategoryMappingEngine(taxonomy, shop_rules)


@pytest.fixture
def settings(tmp_path: Path, shop_rules) -> Settings:
    """Settings rooted in a temporary directory with taxonomy and rule files on disk"""
    paths = PathSettings(
        root=tmp_path,
        data=tmp_path / "data",
        output=tmp_path / "out",
        canonical=tmp_path / "configs" / "canonical",
        shops=tmp_path / "configs" / "shops",
    )
    paths.canonical.mkdir(parents=True)
    paths.shops.mkdir(parents=True)
    paths.data.mkdir()

    with open(paths.taxonomy_file, "w", encoding="utf-8") as f:
        yaml.safe_dump(TAXONOMY, f, allow_unicode=True)

    for shop, rules in shop_rules.items():
        with open(paths.shops / f"{shop}.yaml", "w", encoding="utf-8") as f:
            yaml.safe_dump([rule.model_dump(mode="json") for rule in rules], f, allow_unicode=True)

    return Settings(
        paths=paths,
        processing=ProcessingSettings(batch_size=2, memory_limit_mb=4096),
        output=OutputSettings(shard_size_mb=50),
    )


@pytest.fixture
def loaded_engine(settings):
    """Engine loaded from the on-disk test configuration"""
    return CategoryMappingEngine.load(settings)


@pytest.fixture
def sample_records():
    """One exact-mapped product, one unmappable product, one malformed price"""
    return [
        {"name": "Lapte integral 1L", "brand": "Zuzu", "price": "7,99 lei", "category": "Lapte"},
        {"name": "Mystery item", "price": 5, "category": "Zzz qqq"},
        {"name": "Broken", "price": "abc", "category": "Lapte"},
    ]


@pytest.fixture
def shop_input(settings, sample_records):
    """Write the sample records as the test shop's only input file"""
    shop_dir = settings.data_path(TEST_SHOP)
    shop_dir.mkdir(parents=True)
    (shop_dir / "products.json").write_bytes(orjson.dumps(sample_records))
    return shop_dir


@pytest.fixture
def make_product():
    """Factory for valid canonical products"""

    def _make(title="Lapte", category_path=None, status="ok", price=7.99, canonical_id=None):
        category_path = category_path or ["Lactate & Ouă", "Lapte"]
        return CanonicalProduct(
            canonical_id=canonical_id or f"{TEST_SHOP}:{title}",
            source={
                "shop": TEST_SHOP,
                "shop_product_id": title,
                "source_file": "products.json",
                "fetched_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
            },
            title=title,
            brand="Zuzu",
            category_path=category_path,
            category_slug=slugify_path(category_path),
            mapping_status=status,
            images=[{"url": "https://cdn.example.com/lapte.jpg", "role": "main"}],
            pricing={"price": price, "currency": "RON"},
            pack={"size": 1, "unit": "l"},
            stock={"in_stock": True, "status": "in_stock"},
            audit={"normalizer_version": "1.0.0"},
        )

    return _make


@pytest.fixture
def restore_logging():
    """Rebind loguru to the real stderr after a test reconfigures its sinks"""
    yield
    logger.remove()
    logger.add(lambda message: sys.stderr.write(message), level="INFO")
