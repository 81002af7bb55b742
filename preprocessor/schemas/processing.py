"""
Processing run schemas (options, results, sharding statistics)
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from preprocessor.schemas.mapping import UnmappedCategory


class ProcessingOptions(BaseModel):
    """Per-run options; unset paths fall back to configured directories"""

    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    limit: Optional[int] = Field(None, gt=0)
    dry_run: bool = False
    strict: bool = False
    enable_reports: bool = False
    verbose: bool = False
    batch_size: Optional[int] = Field(None, gt=0)


class ProcessingError(BaseModel):
    """A record that failed normalization or validation"""

    message: str
    source_file: str
    line_number: int = 0
    product_name: str = "Unknown"
    raw_product: Optional[Any] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProcessingStats(BaseModel):
    total_input: int = 0
    total_processed: int = 0
    total_mapped: int = 0
    total_unmapped: int = 0
    total_errors: int = 0
    # Seconds
    processing_time: float = 0.0
    # Bytes of resident memory
    memory_peak: int = 0


class ProcessingOutputs(BaseModel):
    index_file: str = ""
    metadata_file: str = ""
    category_shards: List[str] = []
    reports: List[str] = []


class ProcessingResult(BaseModel):
    """Outcome of one shop run"""

    success: bool = False
    shop: str
    stats: ProcessingStats = Field(default_factory=ProcessingStats)
    outputs: ProcessingOutputs = Field(default_factory=ProcessingOutputs)
    unmapped_categories: List[UnmappedCategory] = []
    # Structured record errors, or plain messages for file/run level failures
    errors: List[Union[ProcessingError, str]] = []


class ShardInfo(BaseModel):
    category_slug: str
    file_path: str
    record_count: int = 0
    size_bytes: int = 0


class ShardingStats(BaseModel):
    total_products: int = 0
    total_shards: int = 0
    # Keyed by "Root > Child" category path
    category_counts: Dict[str, int] = {}
    processing_time: float = 0.0
    memory_peak: int = 0
