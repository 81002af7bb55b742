"""
CLI commands for preprocessing shop exports
"""

import asyncio
import shutil
from pathlib import Path
from typing import List, Optional

import orjson
import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from preprocessor.core.config import get_settings
from preprocessor.core.exceptions import PreprocessorError
from preprocessor.core.logging import setup_logging
from preprocessor.schemas.mapping import CategoryRuleCreate
from preprocessor.schemas.processing import ProcessingError, ProcessingOptions, ProcessingResult
from preprocessor.services.category_mapper import CategoryMappingEngine
from preprocessor.services.normalizers import NormalizationOptions, NormalizerRegistry
from preprocessor.services.pipeline_service import ProcessingPipeline

app = typer.Typer(help="Catalog preprocessing: normalize, map and shard shop exports")
console = Console()


def discover_shops() -> List[str]:
    data_dir = get_settings().paths.data
    if not data_dir.exists():
        return []
    return sorted(path.name for path in data_dir.iterdir() if path.is_dir())


def load_engine() -> CategoryMappingEngine:
    try:
        return CategoryMappingEngine.load(get_settings())
    except PreprocessorError as e:
        console.print(f"❌ {e.detail}", style="red")
        raise typer.Exit(code=1)


def print_result(result: ProcessingResult):
    status = "✅" if result.success else "❌"
    table = Table(title=f"{status} {result.shop}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    stats = result.stats
    table.add_row("Input products", str(stats.total_input))
    table.add_row("Processed", str(stats.total_processed))
    table.add_row("Mapped", str(stats.total_mapped))
    table.add_row("Unmapped", str(stats.total_unmapped))
    table.add_row("Errors", str(stats.total_errors))
    table.add_row("Time", f"{stats.processing_time:.2f}s")
    table.add_row("Memory peak", f"{stats.memory_peak / 1024 / 1024:.1f} MiB")
    console.print(table)

    for category in result.unmapped_categories[:10]:
        console.print(f"  ⚠️  unmapped: {category.original_category} ({category.count})", style="yellow")

    for error in result.errors[:5]:
        message = error.message if isinstance(error, ProcessingError) else error
        console.print(f"  • {message}", style="red")
    if len(result.errors) > 5:
        console.print(f"  ... and {len(result.errors) - 5} more errors", style="red")


@app.callback()
def main(log_level: str = typer.Option(None, help="Override configured log level")):
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_file)


@app.command()
def run(
    shop: str = typer.Argument(..., help='Shop to process or "all"'),
    input_path: Optional[Path] = typer.Option(None, "--in", help="Input directory path"),
    output_path: Optional[Path] = typer.Option(None, "--out", help="Output directory path"),
    limit: Optional[int] = typer.Option(None, help="Limit number of products to process"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count inputs without writing output"),
    strict: bool = typer.Option(False, help="Fail on any unmapped categories"),
    report: bool = typer.Option(False, help="Generate processing reports"),
    verbose: bool = typer.Option(False, help="Verbose progress logging"),
    batch_size: Optional[int] = typer.Option(None, help="Records per normalization batch"),
):
    """Normalize, map and shard one shop (or all shops)"""
    if verbose:
        setup_logging("DEBUG", get_settings().log_file)

    shops = discover_shops() if shop == "all" else [shop]
    if not shops:
        console.print("❌ No shops found in data directory", style="red")
        raise typer.Exit(code=1)

    options = ProcessingOptions(
        input_path=input_path if shop != "all" else None,
        output_path=output_path if shop != "all" else None,
        limit=limit,
        dry_run=dry_run,
        strict=strict,
        enable_reports=report,
        verbose=verbose,
        batch_size=batch_size,
    )

    pipeline = ProcessingPipeline(load_engine(), get_settings())
    results = asyncio.run(pipeline.process_multiple(shops, options))

    for result in results:
        print_result(result)

    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@app.command()
def validate(
    shop: str = typer.Argument(..., help="Shop to validate"),
    file: Optional[Path] = typer.Option(None, help="Specific file to validate"),
):
    """Normalize input files without writing anything"""
    settings = get_settings()
    files = [file] if file else sorted(settings.data_path(shop).glob("*.json"))
    if not files:
        console.print(f"❌ No JSON files found for {shop}", style="red")
        raise typer.Exit(code=1)

    normalizer = NormalizerRegistry(load_engine(), currency=settings.output.currency).get(shop)

    async def check(path: Path):
        records = orjson.loads(path.read_bytes())
        if not isinstance(records, list):
            return 0, 0, [f"Expected array of products in {path.name}"]
        ok, failed, messages = 0, 0, []
        options = NormalizationOptions(shop=shop, source_file=path.name)
        async for result in normalizer.normalize_batch(records, options):
            if result.success:
                ok += 1
            else:
                failed += 1
                messages.append(f"line {result.line_number}: {', '.join(result.errors)}")
        return ok, failed, messages

    table = Table(title=f"Validation: {shop}")
    table.add_column("File", style="cyan")
    table.add_column("Valid", style="green")
    table.add_column("Invalid", style="red")
    table.add_column("First error", style="yellow")

    total_failed = 0
    for path in files:
        try:
            ok, failed, messages = asyncio.run(check(path))
        except (OSError, orjson.JSONDecodeError) as e:
            ok, failed, messages = 0, 0, [str(e)]
        total_failed += failed
        table.add_row(path.name, str(ok), str(failed), messages[0] if messages else "")

    console.print(table)
    if total_failed:
        raise typer.Exit(code=1)


@app.command()
def categories(
    shop: Optional[str] = typer.Option(None, help="Show rules for one shop"),
    unmapped: bool = typer.Option(False, help="Show unmapped categories from the last report"),
):
    """Show the canonical taxonomy and shop mapping rules"""
    settings = get_settings()

    if unmapped:
        shops = [shop] if shop else discover_shops()
        table = Table(title="Unmapped categories")
        table.add_column("Shop", style="cyan")
        table.add_column("Original category", style="yellow")
        table.add_column("Count", style="green")
        for name in shops:
            report = settings.output_path(name) / "reports" / "unmapped.jsonl"
            if not report.exists():
                continue
            for line in report.read_bytes().splitlines():
                if line.strip():
                    entry = orjson.loads(line)
                    table.add_row(name, entry["original_category"], str(entry["count"]))
        console.print(table)
        return

    engine = load_engine()

    tree = Tree("📂 Categories")

    def add_branch(branch: Tree, nodes: dict):
        for name, node in nodes.items():
            node = node or {}
            child = branch.add(f"📁 {name} [dim]({node.get('slug', '')})[/dim]")
            subcategories = node.get("subcategories")
            if isinstance(subcategories, list):
                for leaf in subcategories:
                    child.add(f"📄 {leaf['name']} [dim]({leaf.get('slug', '')})[/dim]")
            elif isinstance(subcategories, dict):
                add_branch(child, subcategories)

    add_branch(tree, engine.taxonomy.categories)
    console.print(tree)

    shops = [shop] if shop else engine.known_shops()
    table = Table(title="Mapping rules")
    table.add_column("Shop", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Pattern", style="yellow")
    table.add_column("Target", style="green")
    table.add_column("Used", justify="right")
    table.add_column("Enabled")
    for name in shops:
        for rule in engine.get_rules(name):
            table.add_row(
                name,
                rule.pattern_type,
                rule.pattern,
                " > ".join(rule.target_path),
                str(rule.usage_count),
                "yes" if rule.enabled else "no",
            )
    console.print(table)


@app.command()
def add_rule(
    shop: str = typer.Argument(..., help="Shop the rule applies to"),
    pattern: str = typer.Argument(..., help="Raw category text or regex"),
    target: List[str] = typer.Argument(..., help="Target category path, root first"),
    pattern_type: str = typer.Option("exact", help="exact, regex, synonym or fuzzy"),
    confidence: float = typer.Option(1.0, help="Rule confidence"),
):
    """Learn a new mapping rule and save it to the shop rule file"""
    engine = load_engine()

    try:
        rule = CategoryRuleCreate(
            shop=shop,
            pattern=pattern,
            pattern_type=pattern_type,
            target_path=target,
            confidence=confidence,
            created_by="admin",
        )
        stored = asyncio.run(engine.add_mapping_rule(rule))
    except (PreprocessorError, ValueError) as e:
        console.print(f"❌ {e}", style="red")
        raise typer.Exit(code=1)

    console.print(f"✅ Added rule {stored.id}: '{pattern}' -> {' > '.join(target)}", style="green")


@app.command()
def status():
    """Show last processing results per shop"""
    settings = get_settings()
    shops = sorted(set(discover_shops()) | {p.name for p in settings.paths.output.glob("*") if p.is_dir()})
    pipeline = ProcessingPipeline(load_engine(), settings)
    summary = asyncio.run(pipeline.get_processing_stats(shops))

    table = Table(title="Processing status")
    table.add_column("Shop", style="cyan")
    table.add_column("Processed at", style="yellow")
    table.add_column("Products", justify="right", style="green")
    table.add_column("Categories", justify="right")
    table.add_column("Shards", justify="right")

    for shop, info in summary.items():
        if not info["processed"]:
            table.add_row(shop, "never", "-", "-", "-")
            continue
        table.add_row(
            shop,
            str(info["processed_at"]),
            str(info["total_products"]),
            str(info["categories"]),
            str(info["total_shards"]),
        )
    console.print(table)


@app.command()
def clean(
    shop: Optional[str] = typer.Argument(None, help='Shop to clean or "all"'),
    force: bool = typer.Option(False, "--force", help="Skip confirmation prompt"),
):
    """Delete generated output"""
    settings = get_settings()
    if shop and shop != "all":
        targets = [settings.output_path(shop)]
    else:
        targets = [settings.paths.output]

    targets = [target for target in targets if target.exists()]
    if not targets:
        console.print("Nothing to clean", style="yellow")
        return

    if not force and not typer.confirm(f"Delete {', '.join(str(t) for t in targets)}?"):
        raise typer.Abort()

    for target in targets:
        shutil.rmtree(target)
        console.print(f"🗑  Removed {target}", style="green")


if __name__ == "__main__":
    app()
