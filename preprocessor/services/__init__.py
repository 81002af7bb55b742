"""
Service layer for mapping, normalization and sharded output
"""

from .category_mapper import CategoryMappingEngine
from .pipeline_service import ProcessingPipeline
from .reports import ReportGenerator
from .shard_writer import JsonlShardReader, JsonlShardWriter, ShardSink

__all__ = [
    "CategoryMappingEngine",
    "JsonlShardReader",
    "JsonlShardWriter",
    "ProcessingPipeline",
    "ReportGenerator",
    "ShardSink",
]
