"""
End-to-end pipeline tests against a temporary data directory
"""

import csv

import orjson
import pytest

from preprocessor.schemas.processing import ProcessingError, ProcessingOptions
from preprocessor.services.pipeline_service import ProcessingPipeline
from preprocessor.core.exceptions import ShardWriteError
from preprocessor.services.shard_writer import JsonlShardReader, JsonlShardWriter
from tests.conftest import TEST_SHOP


@pytest.fixture
def pipeline(loaded_engine, settings):
    return ProcessingPipeline(loaded_engine, settings)


@pytest.mark.asyncio
async def test_process_shop(pipeline, settings, shop_input):
    result = await pipeline.process_shop(TEST_SHOP)

    assert result.success
    stats = result.stats
    assert stats.total_input == 3
    assert stats.total_processed == 2
    assert stats.total_mapped == 1
    assert stats.total_unmapped == 1
    assert stats.total_errors == 1
    assert stats.processing_time > 0

    [error] = result.errors
    assert isinstance(error, ProcessingError)
    assert error.line_number == 3
    assert error.product_name == "Broken"
    assert error.source_file == "products.json"
    assert error.message.startswith("Validation failed: pricing.price")

    [unmapped] = result.unmapped_categories
    assert unmapped.original_category == "Zzz qqq"
    assert unmapped.sample_products[0].name == "Mystery item"

    reader = JsonlShardReader(settings.output_path(TEST_SHOP))
    milk = await reader.read_category_shard("lactate-oua/lapte")
    assert [record["title"] for record in milk] == ["Lapte integral 1L"]
    assert milk[0]["audit"]["category_rule_id"] == "rule_exact_lapte"
    other = await reader.read_category_shard("other")
    assert other[0]["mapping_status"] == "unmapped"
    assert len(await reader.read_index()) == 2
    assert len(result.outputs.category_shards) == 2
    assert result.outputs.reports == []


@pytest.mark.asyncio
async def test_reports(pipeline, settings, shop_input):
    result = await pipeline.process_shop(TEST_SHOP, ProcessingOptions(enable_reports=True))

    reports_dir = settings.output_path(TEST_SHOP) / "reports"
    names = sorted(path.name for path in reports_dir.iterdir())
    assert names == [
        "mapping-report.csv",
        "processing-summary.json",
        "rejects-summary.csv",
        "rejects.jsonl",
        "unmapped-summary.csv",
        "unmapped.jsonl",
    ]
    assert len(result.outputs.reports) == 6

    with open(reports_dir / "mapping-report.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["Category", "Product Count", "Percentage"]
    assert sorted(row[2] for row in rows[1:]) == ["50.00%", "50.00%"]

    with open(reports_dir / "unmapped-summary.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[1][0] == "Zzz qqq"
    assert rows[1][3] == "Mystery item"

    rejects = (reports_dir / "rejects.jsonl").read_bytes().splitlines()
    assert orjson.loads(rejects[0])["product_name"] == "Broken"

    summary = orjson.loads((reports_dir / "processing-summary.json").read_bytes())
    assert summary["unmapped_count"] == 1
    assert summary["error_count"] == 1
    assert summary["stats"]["total_processed"] == 2


@pytest.mark.asyncio
async def test_strict_mode_fails_after_writing_reports(pipeline, settings, shop_input):
    result = await pipeline.process_shop(TEST_SHOP, ProcessingOptions(strict=True, enable_reports=True))

    assert not result.success
    assert result.errors[-1] == "Strict mode: Found 1 unmapped categories"
    assert (settings.output_path(TEST_SHOP) / "reports" / "unmapped.jsonl").exists()


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(pipeline, settings, shop_input):
    result = await pipeline.process_shop(TEST_SHOP, ProcessingOptions(dry_run=True))

    assert result.success
    assert result.stats.total_input == 3
    assert result.stats.total_processed == 0
    assert not settings.output_path(TEST_SHOP).exists()


@pytest.mark.asyncio
async def test_limit(pipeline, shop_input):
    result = await pipeline.process_shop(TEST_SHOP, ProcessingOptions(limit=2))

    assert result.success
    assert result.stats.total_processed == 2
    assert result.stats.total_errors == 0
    assert result.errors == []


@pytest.mark.asyncio
async def test_missing_input_directory(pipeline, settings):
    result = await pipeline.process_shop("ghost")

    assert not result.success
    assert result.errors == [f"Input directory not found: {settings.data_path('ghost')}"]


@pytest.mark.asyncio
async def test_empty_input_directory(pipeline, settings):
    settings.data_path("empty").mkdir()

    result = await pipeline.process_shop("empty")

    assert not result.success
    assert result.errors[0].startswith("No JSON files found in")


@pytest.mark.asyncio
async def test_bad_files_are_reported_and_skipped(pipeline, shop_input):
    (shop_input / "a_broken.json").write_bytes(b"{not json")
    (shop_input / "b_object.json").write_bytes(orjson.dumps({"name": "not a list"}))

    result = await pipeline.process_shop(TEST_SHOP)

    assert result.success
    assert result.stats.total_input == 3
    assert result.stats.total_processed == 2
    assert result.stats.total_errors == 1
    file_errors = [error for error in result.errors if isinstance(error, str)]
    assert len(file_errors) == 2
    assert file_errors[0].startswith("Failed to process a_broken.json:")
    assert file_errors[1] == "Failed to process b_object.json: Expected array of products in b_object.json"


@pytest.mark.asyncio
async def test_explicit_paths(pipeline, tmp_path, shop_input):
    out = tmp_path / "elsewhere"

    result = await pipeline.process_shop(TEST_SHOP, ProcessingOptions(input_path=shop_input, output_path=out))

    assert result.success
    assert (out / "metadata.json").exists()


@pytest.mark.asyncio
async def test_process_multiple(pipeline, shop_input):
    results = await pipeline.process_multiple(["ghost", TEST_SHOP])
    assert [result.success for result in results] == [False, True]

    strict = await pipeline.process_multiple(["ghost", TEST_SHOP], ProcessingOptions(strict=True))
    assert [result.shop for result in strict] == ["ghost"]


@pytest.mark.asyncio
async def test_get_processing_stats(pipeline, shop_input):
    await pipeline.process_shop(TEST_SHOP)

    summary = await pipeline.get_processing_stats([TEST_SHOP, "ghost"])

    assert summary["ghost"] == {"processed": False}
    assert summary[TEST_SHOP]["processed"] is True
    assert summary[TEST_SHOP]["total_products"] == 2
    assert summary[TEST_SHOP]["categories"] == 2
    assert summary[TEST_SHOP]["total_shards"] == 2


@pytest.mark.asyncio
async def test_write_failures_become_rejects(pipeline, shop_input, monkeypatch):
    original = JsonlShardWriter.write_product

    async def flaky_write(self, product):
        if product.title == "Mystery item":
            raise ShardWriteError("disk full")
        await original(self, product)

    monkeypatch.setattr(JsonlShardWriter, "write_product", flaky_write)

    result = await pipeline.process_shop(TEST_SHOP)

    assert result.success
    assert result.stats.total_processed == 1
    assert result.stats.total_mapped == 1
    assert result.stats.total_unmapped == 0
    assert result.stats.total_errors == 2
    assert result.errors[-1].product_name == "Mystery item"
    assert result.errors[-1].message == "Write failed: disk full"


@pytest.mark.asyncio
async def test_unlimited_run_spans_batches(pipeline, settings):
    shop_dir = settings.data_path(TEST_SHOP)
    shop_dir.mkdir(parents=True)
    records = [{"name": f"Lapte {n}", "price": "5,49 lei", "category": "Lapte"} for n in range(5)]
    (shop_dir / "products.json").write_bytes(orjson.dumps(records))

    result = await pipeline.process_shop(TEST_SHOP)

    assert settings.processing.batch_size == 2
    assert result.success
    assert result.stats.total_processed == 5
    assert result.stats.total_mapped == 5
    assert result.errors == []
