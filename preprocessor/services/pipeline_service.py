"""
Processing pipeline service - orchestrates one shop run end to end
"""
import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson

from preprocessor.core.config import Settings, get_settings
from preprocessor.core.exceptions import (
    ErrorDetail,
    InputNotFoundError,
    NoInputFilesError,
    PreprocessorError,
    StrictModeViolation,
)
from preprocessor.core.logging import log
from preprocessor.schemas.processing import (
    ProcessingError,
    ProcessingOptions,
    ProcessingResult,
    ShardingStats,
)
from preprocessor.services.category_mapper import CategoryMappingEngine
from preprocessor.services.normalizers import (
    BaseNormalizer,
    NormalizationOptions,
    NormalizationResult,
    NormalizerRegistry,
)
from preprocessor.services.reports import ReportGenerator
from preprocessor.services.shard_writer import INDEX_FILE, METADATA_FILE, JsonlShardReader, JsonlShardWriter


def load_json_file(path: Path) -> Any:
    return orjson.loads(path.read_bytes())


def raw_product_name(raw: Any) -> str:
    if isinstance(raw, dict):
        return raw.get("image_image__nanvf_description") or raw.get("name") or "Unknown"
    return "Unknown"


class ProcessingPipeline:
    """
    Orchestrates a shop run:
    1. Locate input files and count records
    2. Normalize records in batches (mapping each category)
    3. Stream products into category shards
    4. Finalize shards, collect unmapped categories, write reports
    """

    def __init__(
        self,
        engine: CategoryMappingEngine,
        settings: Optional[Settings] = None,
        normalizers: Optional[NormalizerRegistry] = None,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self.normalizers = normalizers or NormalizerRegistry(engine, currency=self.settings.output.currency)
        self.reports = ReportGenerator(self.settings)

    async def process_shop(self, shop: str, options: Optional[ProcessingOptions] = None) -> ProcessingResult:
        """Process one shop; failures come back in the result, never raised"""
        options = options or ProcessingOptions()
        start = time.perf_counter()
        result = ProcessingResult(shop=shop)

        try:
            input_files, output_dir = self._setup(shop, options)
            result.stats.total_input = await asyncio.to_thread(self._count_products, input_files)

            if options.dry_run:
                log.info(f"[DRY RUN] Would process {result.stats.total_input} products from {len(input_files)} files")
                result.success = True
                return result

            output_dir.mkdir(parents=True, exist_ok=True)
            writer = JsonlShardWriter(shop, output_dir, self.settings)
            await writer.initialize()

            normalizer = self.normalizers.get(shop)
            await self._process_files(input_files, normalizer, writer, options, result)

            sharding_stats = await writer.finalize()
            result.stats.total_processed = sharding_stats.total_products
            result.stats.memory_peak = sharding_stats.memory_peak
            result.outputs.index_file = str(output_dir / INDEX_FILE)
            result.outputs.metadata_file = str(output_dir / METADATA_FILE)
            result.outputs.category_shards = [str(output_dir / shard.file_path) for shard in writer.shard_infos()]

            result.unmapped_categories = self.engine.get_unmapped_queue(shop)

            if options.enable_reports:
                result.outputs.reports = await asyncio.to_thread(
                    self.reports.generate, result, sharding_stats, output_dir
                )

            if options.strict and result.unmapped_categories:
                raise StrictModeViolation(
                    f"Strict mode: Found {len(result.unmapped_categories)} unmapped categories",
                    shop=shop,
                    unmapped=len(result.unmapped_categories),
                )

            result.success = True
            result.stats.processing_time = time.perf_counter() - start
            log.info(
                f"Processed {shop}: {result.stats.total_processed} products in {result.stats.processing_time:.2f}s "
                f"({result.stats.total_mapped} mapped, {result.stats.total_unmapped} unmapped, "
                f"{result.stats.total_errors} errors)"
            )

        except PreprocessorError as e:
            detail = ErrorDetail.from_exception(e)
            result.errors.append(detail.message)
            log.error(f"Failed to process {shop}: {detail.message}")
        except Exception as e:
            result.errors.append(str(e))
            log.exception(f"Failed to process {shop}: {e}")
        finally:
            result.stats.processing_time = time.perf_counter() - start

        return result

    async def process_multiple(self, shops: List[str], options: Optional[ProcessingOptions] = None) -> List[ProcessingResult]:
        """Run shops one after another; strict runs stop at the first failure"""
        options = options or ProcessingOptions()
        results = []

        for shop in shops:
            log.info(f"Processing {shop}...")
            result = await self.process_shop(shop, options)
            results.append(result)

            if options.strict and not result.success:
                log.error(f"Stopping batch processing due to failure in {shop}")
                break

        successful = sum(1 for r in results if r.success)
        total_processed = sum(r.stats.total_processed for r in results)
        total_time = sum(r.stats.processing_time for r in results)
        log.info(
            f"Batch summary: {successful}/{len(shops)} shops successful, "
            f"{total_processed} products, {total_time:.2f}s"
        )
        return results

    async def get_processing_stats(self, shops: List[str]) -> Dict[str, Dict[str, Any]]:
        """Summaries read back from each shop's metadata.json"""
        summary = {}
        for shop in shops:
            metadata = await JsonlShardReader(self.settings.output_path(shop)).read_metadata()
            if metadata is None:
                summary[shop] = {"processed": False}
                continue

            stats = ShardingStats.model_validate(metadata.get("stats", {}))
            summary[shop] = {
                "processed": True,
                "processed_at": metadata.get("processed_at"),
                "total_products": stats.total_products,
                "total_shards": stats.total_shards,
                "categories": len(stats.category_counts),
                "top_categories": sorted(stats.category_counts.items(), key=lambda item: item[1], reverse=True)[:5],
            }
        return summary

    def _setup(self, shop: str, options: ProcessingOptions) -> Tuple[List[Path], Path]:
        input_dir = Path(options.input_path) if options.input_path else self.settings.data_path(shop)
        output_dir = Path(options.output_path) if options.output_path else self.settings.output_path(shop)

        if not input_dir.is_dir():
            raise InputNotFoundError(f"Input directory not found: {input_dir}", shop=shop)

        input_files = sorted(path for path in input_dir.iterdir() if path.suffix == ".json" and path.is_file())
        if not input_files:
            raise NoInputFilesError(f"No JSON files found in {input_dir}", shop=shop)

        return input_files, output_dir

    @staticmethod
    def _count_products(input_files: List[Path]) -> int:
        total = 0
        for path in input_files:
            try:
                data = load_json_file(path)
            except (OSError, orjson.JSONDecodeError):
                # Unreadable files are reported during the real pass
                continue
            total += len(data) if isinstance(data, list) else 0
        return total

    async def _process_files(
        self,
        input_files: List[Path],
        normalizer: BaseNormalizer,
        writer: JsonlShardWriter,
        options: ProcessingOptions,
        result: ProcessingResult,
    ):
        processed = 0
        limit = options.limit
        batch_size = options.batch_size or self.settings.processing.batch_size

        for path in input_files:
            if limit and processed >= limit:
                log.info(f"Reached limit of {limit} products")
                break

            file_name = path.name
            file_processed = 0
            log.info(f"Processing {file_name}...")

            try:
                raw_products = await asyncio.to_thread(load_json_file, path)
                if not isinstance(raw_products, list):
                    raise ValueError(f"Expected array of products in {file_name}")

                for start in range(0, len(raw_products), batch_size):
                    if limit and processed >= limit:
                        break
                    end = min(start + batch_size, len(raw_products))
                    if limit:
                        end = min(end, start + limit - processed)
                    batch = raw_products[start:end]

                    norm_options = NormalizationOptions(
                        shop=result.shop,
                        source_file=file_name,
                        enable_validation=True,
                        strict_mapping=options.strict,
                        verbose=options.verbose,
                        first_line=start + 1,
                    )

                    normalized = []
                    async for norm in normalizer.normalize_batch(batch, norm_options):
                        if norm.success and norm.product is not None:
                            normalized.append(norm)
                            if norm.warnings and options.verbose:
                                log.debug(f"{file_name}:{norm.line_number} {'; '.join(norm.warnings)}")
                        else:
                            self._record_reject(result, file_name, norm, ", ".join(norm.errors))

                    errors = await writer.write_products([norm.product for norm in normalized])
                    for norm, error in zip(normalized, errors):
                        if error is not None:
                            self._record_reject(result, file_name, norm, f"Write failed: {error}")
                        elif norm.product.mapping_status == "ok":
                            result.stats.total_mapped += 1
                        else:
                            result.stats.total_unmapped += 1

                    processed += len(batch)
                    file_processed += len(batch)
                    log.debug(f"{file_name}: {processed} products processed")

                log.info(f"{file_name}: {file_processed} products")

            except Exception as e:
                message = f"Failed to process {file_name}: {e}"
                result.errors.append(message)
                log.warning(message)

    @staticmethod
    def _record_reject(result: ProcessingResult, file_name: str, norm: NormalizationResult, message: str):
        result.stats.total_errors += 1
        result.errors.append(
            ProcessingError(
                message=message,
                source_file=file_name,
                line_number=norm.line_number or 0,
                product_name=raw_product_name(norm.raw_product),
                raw_product=norm.raw_product,
            )
        )
