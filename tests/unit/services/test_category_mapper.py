"""
Category mapping engine tests
"""

import re

import pytest
import yaml

from preprocessor.core.config import MatchingThresholds
from preprocessor.core.exceptions import RuleValidationError
from preprocessor.core.taxonomy import TaxonomyDocument
from preprocessor.schemas.mapping import CategoryRuleCreate, MappingContext
from preprocessor.services.category_mapper import CategoryMappingEngine
from tests.conftest import TAXONOMY, TEST_SHOP, make_rule


def context(category, name=None, brand=None, shop=TEST_SHOP):
    return MappingContext(shop=shop, original_category=category, product_name=name, brand_name=brand)


@pytest.mark.asyncio
async def test_exact_rule_maps_with_full_confidence(engine):
    result = await engine.map_category(context("Lapte", "Lapte integral"))

    assert result.mapping_status == "ok"
    assert result.confidence == 1.0
    assert result.category_path == ["Lactate & Ouă", "Lapte"]
    assert result.category_slug == "lactate-oua/lapte"
    assert result.rule_id == "rule_exact_lapte"
    assert engine.get_rules(TEST_SHOP)[0].usage_count == 1


@pytest.mark.asyncio
async def test_exact_beats_regex(taxonomy):
    rules = {
        TEST_SHOP: [
            make_rule("rule_regex", "lapte", "regex", ["Băuturi"]),
            make_rule("rule_exact", "Lapte", "exact", ["Lactate & Ouă", "Lapte"]),
        ]
    }
    engine = CategoryMappingEngine(taxonomy, rules)

    result = await engine.map_category(context("Lapte"))

    assert result.rule_id == "rule_exact"


@pytest.mark.asyncio
async def test_exact_beats_fuzzy_on_taxonomy_name(taxonomy):
    # "iaurt" would also match the Iaurt leaf by synonym and by fuzzy score 1.0
    rules = {TEST_SHOP: [make_rule("rule_exact_iaurt", "iaurt", "exact", ["Băuturi", "Apă"])]}
    engine = CategoryMappingEngine(taxonomy, rules)

    result = await engine.map_category(context("iaurt"))

    assert result.mapping_status == "ok"
    assert result.rule_id == "rule_exact_iaurt"
    assert result.confidence == engine.thresholds.exact_match
    assert result.category_path == ["Băuturi", "Apă"]


@pytest.mark.asyncio
async def test_regex_beats_synonym(engine):
    # "juice" is also a synonym, but the regex tier runs first
    result = await engine.map_category(context("Sucuri juice"))

    assert result.rule_id == "rule_regex_sucuri"
    assert result.confidence == 0.9


@pytest.mark.asyncio
async def test_invalid_regex_is_skipped(engine):
    result = await engine.map_category(context("sucuri naturale"))
    again = await engine.map_category(context("sucuri de mere"))

    assert result.category_path == ["Băuturi", "Sucuri"]
    assert again.category_path == ["Băuturi", "Sucuri"]
    assert engine._regex_cache["rule_bad_regex"] is None


@pytest.mark.asyncio
async def test_disabled_rules_are_ignored(taxonomy):
    rules = {TEST_SHOP: [make_rule("rule_off", "Lapte", "exact", ["Băuturi"], enabled=False)]}
    engine = CategoryMappingEngine(taxonomy, rules)

    result = await engine.map_category(context("Lapte"))

    assert result.rule_id is None


@pytest.mark.asyncio
async def test_synonym_from_product_name(engine):
    result = await engine.map_category(context("Diverse", name="Greek yogurt 2%"))

    assert result.mapping_status == "ok"
    assert result.confidence == 0.85
    assert result.category_path == ["Lactate & Ouă", "Iaurt"]
    assert result.notes == ["Matched via synonyms"]


@pytest.mark.asyncio
async def test_fuzzy_match_against_slugs(engine):
    result = await engine.map_category(context("Branzeturii"))

    assert result.mapping_status == "fuzzy-match"
    assert result.category_path == ["Lactate & Ouă", "Brânzeturi"]
    assert result.confidence >= 0.82
    assert result.notes[0].startswith("Fuzzy matched to")


@pytest.mark.asyncio
async def test_rules_are_per_shop(engine):
    result = await engine.map_category(context("Zzz qqq", shop="other-shop"))

    assert result.mapping_status == "unmapped"
    assert result.category_path == ["Other"]
    assert result.category_slug == "other"
    assert result.confidence == 0


@pytest.mark.asyncio
async def test_keyword_fallback(engine):
    result = await engine.map_category(context("Zzz", name="Baby wipes"))

    assert result.mapping_status == "fallback-parent"
    assert result.category_path == ["Mama & copilul"]
    assert result.category_slug == "mama-copilul"
    assert result.confidence == 0.3
    # Fallbacks still go to review
    assert len(engine.get_unmapped_queue(TEST_SHOP)) == 1


@pytest.mark.asyncio
async def test_unmapped_queue_dedups_and_caps_samples(engine):
    for i in range(7):
        await engine.map_category(context("Zzz qqq", name=f"Mystery {i}"))
    await engine.map_category(context("Zzz qqq", name="Mystery 0"))
    await engine.map_category(context("Qqq zzz"))

    queue = engine.get_unmapped_queue()

    assert [entry.original_category for entry in queue] == ["Zzz qqq", "Qqq zzz"]
    first = queue[0]
    assert first.count == 8
    assert [sample.name for sample in first.sample_products] == [f"Mystery {i}" for i in range(5)]
    assert len(first.suggestions) == 1
    assert first.suggestions[0].notes == ["No fuzzy match above threshold"]
    assert queue[1].sample_products == []


@pytest.mark.asyncio
async def test_unmapped_queue_filter_and_clear(engine):
    await engine.map_category(context("Zzz qqq"))
    await engine.map_category(context("Zzz qqq", shop="y"))

    assert len(engine.get_unmapped_queue()) == 2
    assert [entry.shop for entry in engine.get_unmapped_queue("y")] == ["y"]

    assert engine.clear_unmapped_entry("y", "Zzz qqq") is True
    assert engine.clear_unmapped_entry("y", "Zzz qqq") is False
    assert engine.get_unmapped_queue("y") == []


def test_taxonomy_matching_section_overrides_settings():
    document = TaxonomyDocument.model_validate({**TAXONOMY, "matching": {"fuzzy_threshold": 0.75}})
    engine = CategoryMappingEngine(document, thresholds=MatchingThresholds(fuzzy_threshold=0.6, minimum_confidence=0.5))

    assert engine.thresholds.fuzzy_threshold == 0.75
    assert engine.thresholds.minimum_confidence == 0.7


@pytest.mark.asyncio
async def test_add_mapping_rule_persists(loaded_engine, settings):
    stored = await loaded_engine.add_mapping_rule(
        CategoryRuleCreate(shop=TEST_SHOP, pattern="Zzz qqq", pattern_type="exact", target_path=["Băuturi", "Apă"])
    )

    assert re.fullmatch(r"rule_\d+_[a-z0-9]{9}", stored.id)
    assert stored.usage_count == 0
    assert loaded_engine.get_rules(TEST_SHOP)[0].id == stored.id

    saved = yaml.safe_load((settings.paths.shops / f"{TEST_SHOP}.yaml").read_text(encoding="utf-8"))
    assert saved[0]["id"] == stored.id
    assert len(saved) == 4

    reloaded = CategoryMappingEngine.load(settings)
    result = await reloaded.map_category(context("Zzz qqq"))
    assert result.rule_id == stored.id
    assert result.category_path == ["Băuturi", "Apă"]


@pytest.mark.asyncio
async def test_add_mapping_rule_creates_new_shop_file(loaded_engine, settings):
    await loaded_engine.add_mapping_rule(
        CategoryRuleCreate(shop="newshop", pattern="^apa", pattern_type="regex", target_path=["Băuturi", "Apă"])
    )

    assert (settings.paths.shops / "newshop.yaml").exists()
    assert "newshop" in loaded_engine.known_shops()


@pytest.mark.asyncio
async def test_add_mapping_rule_rejects_bad_regex(engine):
    with pytest.raises(RuleValidationError):
        await engine.add_mapping_rule(
            CategoryRuleCreate(shop=TEST_SHOP, pattern="([bad", pattern_type="regex", target_path=["Băuturi"])
        )
    assert len(engine.get_rules(TEST_SHOP)) == 3


@pytest.mark.asyncio
async def test_set_rule_enabled(loaded_engine):
    assert await loaded_engine.set_rule_enabled(TEST_SHOP, "rule_exact_lapte", False) is True
    assert await loaded_engine.set_rule_enabled(TEST_SHOP, "missing", False) is False

    result = await loaded_engine.map_category(context("Lapte"))
    assert result.rule_id is None
