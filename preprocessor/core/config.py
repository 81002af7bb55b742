"""
Preprocessor configuration using Pydantic settings
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class PathSettings(BaseModel):
    """Filesystem locations for inputs, outputs and mapping configuration"""

    root: Path = PROJECT_ROOT
    data: Path = PROJECT_ROOT / "data"
    output: Path = PROJECT_ROOT / "out"
    canonical: Path = PROJECT_ROOT / "configs" / "canonical"
    shops: Path = PROJECT_ROOT / "configs" / "shops"

    @property
    def taxonomy_file(self) -> Path:
        return self.canonical / "categories.yaml"


class ProcessingSettings(BaseModel):
    """Batching and memory ceilings for a run"""

    batch_size: int = Field(500, gt=0)
    memory_limit_mb: int = Field(2048, gt=0)
    # Fraction of memory_limit_mb above which a collection pass is requested
    memory_gc_fraction: float = Field(0.8, gt=0, le=1)
    # Max queued lines per shard sink before writers suspend
    sink_queue_size: int = Field(256, gt=0)


class MatchingThresholds(BaseModel):
    """
    Per-tier confidence values for the category mapping engine.

    Each tier returns its configured value as confidence and wins when that
    value clears both its own threshold and the minimum confidence floor.
    """

    exact_match: float = Field(1.0, ge=0, le=1)
    regex_match: float = Field(0.9, ge=0, le=1)
    synonym_match: float = Field(0.85, ge=0, le=1)
    fuzzy_threshold: float = Field(0.82, ge=0, le=1)
    minimum_confidence: float = Field(0.7, ge=0, le=1)

    @model_validator(mode="after")
    def check_tier_order(self) -> "MatchingThresholds":
        ordered = [self.exact_match, self.regex_match, self.synonym_match, self.fuzzy_threshold]
        if ordered != sorted(ordered, reverse=True):
            raise ValueError("Matching thresholds must satisfy exact >= regex >= synonym >= fuzzy")
        return self


class OutputSettings(BaseModel):
    """Shard output settings"""

    shard_size_mb: float = Field(50, gt=0)
    currency: str = "RON"

    @property
    def shard_size_bytes(self) -> int:
        return int(self.shard_size_mb * 1024 * 1024)


class Settings(BaseSettings):
    """Preprocessor settings from environment variables"""

    app_name: str = "Catalog Preprocessor"
    environment: str = "development"
    version: str = "1.0.0"

    paths: PathSettings = PathSettings()
    processing: ProcessingSettings = ProcessingSettings()
    mapping: MatchingThresholds = MatchingThresholds()
    output: OutputSettings = OutputSettings()

    # Logging
    log_level: str = "INFO"
    # Rotating debug log; unset keeps console only
    log_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="PREPROCESS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def data_path(self, shop: str) -> Path:
        return self.paths.data / shop

    def output_path(self, shop: str) -> Path:
        return self.paths.output / shop


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
