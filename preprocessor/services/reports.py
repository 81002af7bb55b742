"""
Operator reports written after a shop run
"""

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import orjson

from preprocessor.core.config import Settings
from preprocessor.core.logging import log
from preprocessor.schemas.mapping import UnmappedCategory
from preprocessor.schemas.processing import ProcessingError, ProcessingResult, ShardingStats

MAPPING_HEADERS = ["Category", "Product Count", "Percentage"]
UNMAPPED_HEADERS = ["Original Category", "Product Count", "First Seen", "Sample Product Names"]
REJECT_HEADERS = ["Source File", "Line Number", "Product Name", "Error Message", "Timestamp"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_csv(path: Path, headers: List[str], rows: Iterable[List[Any]]):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        writer.writerow(headers)
        writer.writerows(rows)


def write_jsonl(path: Path, records: Iterable[Any]):
    with open(path, "wb") as f:
        for record in records:
            f.write(orjson.dumps(record) + b"\n")


def mapping_rows(stats: ShardingStats) -> List[List[Any]]:
    total = stats.total_products or 1
    ordered = sorted(stats.category_counts.items(), key=lambda item: item[1], reverse=True)
    return [[category, count, f"{count / total * 100:.2f}%"] for category, count in ordered]


def unmapped_rows(entries: List[UnmappedCategory]) -> List[List[Any]]:
    return [
        [
            entry.original_category or "Unknown",
            entry.count,
            entry.first_seen.isoformat(),
            "; ".join(sample.name for sample in entry.sample_products) or "No samples",
        ]
        for entry in entries
    ]


def reject_record(error) -> Dict[str, Any]:
    if isinstance(error, ProcessingError):
        return error.model_dump(mode="json")
    return {"message": str(error), "timestamp": _now()}


def reject_row(error) -> List[Any]:
    if isinstance(error, ProcessingError):
        return [
            error.source_file or "Unknown",
            error.line_number or "Unknown",
            error.product_name or "Unknown",
            error.message or "Unknown error",
            error.timestamp.isoformat(),
        ]
    return ["Unknown", "Unknown", "Unknown", str(error), _now()]


class ReportGenerator:
    """Writes mapping, unmapped, reject and summary reports under <output>/reports"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def generate(self, result: ProcessingResult, stats: Optional[ShardingStats], output_dir: Path) -> List[str]:
        reports_dir = Path(output_dir) / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)
        stats = stats or ShardingStats()
        written: List[Path] = []

        # 1. Category coverage
        path = reports_dir / "mapping-report.csv"
        write_csv(path, MAPPING_HEADERS, mapping_rows(stats))
        written.append(path)

        # 2. Unmapped categories
        path = reports_dir / "unmapped.jsonl"
        write_jsonl(path, (entry.model_dump(mode="json") for entry in result.unmapped_categories))
        written.append(path)

        path = reports_dir / "unmapped-summary.csv"
        write_csv(path, UNMAPPED_HEADERS, unmapped_rows(result.unmapped_categories))
        written.append(path)

        # 3. Rejects
        path = reports_dir / "rejects.jsonl"
        write_jsonl(path, (reject_record(error) for error in result.errors))
        written.append(path)

        path = reports_dir / "rejects-summary.csv"
        write_csv(path, REJECT_HEADERS, (reject_row(error) for error in result.errors))
        written.append(path)

        # 4. Processing summary
        path = reports_dir / "processing-summary.json"
        summary = {
            "shop": result.shop,
            "timestamp": _now(),
            "stats": result.stats.model_dump(mode="json"),
            "category_coverage": stats.category_counts,
            "unmapped_count": len(result.unmapped_categories),
            "error_count": len(result.errors),
            "config": {
                "batch_size": self.settings.processing.batch_size,
                "memory_limit_mb": self.settings.processing.memory_limit_mb,
                "shard_size_mb": self.settings.output.shard_size_mb,
                "fuzzy_threshold": self.settings.mapping.fuzzy_threshold,
            },
        }
        path.write_bytes(orjson.dumps(summary, option=orjson.OPT_INDENT_2))
        written.append(path)

        log.info(f"Generated {len(written)} reports for {result.shop} in {reports_dir}")
        return [str(path) for path in written]
