"""
Custom exceptions for the preprocessor
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class PreprocessorError(Exception):
    """Base exception for preprocessing errors"""

    detail: str = "Preprocessing error"

    def __init__(self, detail: Optional[str] = None, **kwargs):
        self.detail = detail or self.detail
        super().__init__(self.detail)
        # Store any additional context
        self.context = kwargs


class ConfigurationError(PreprocessorError):
    """Taxonomy, rule or settings file could not be loaded"""

    detail = "Invalid configuration"


class InputNotFoundError(PreprocessorError):
    """Input directory for a shop does not exist"""

    detail = "Input directory not found"


class NoInputFilesError(PreprocessorError):
    """Input directory holds no eligible files"""

    detail = "No JSON files found"


class StrictModeViolation(PreprocessorError):
    """Strict run finished with unmapped categories"""

    detail = "Strict mode: unmapped categories found"


class RuleValidationError(PreprocessorError):
    """A mapping rule was rejected before being stored"""

    detail = "Invalid mapping rule"


class NormalizationError(PreprocessorError):
    """A raw record could not be turned into a canonical product"""

    detail = "Normalization failed"


class ShardWriteError(PreprocessorError):
    """A shard or index sink failed to accept data"""

    detail = "Shard write failed"


class ErrorDetail(BaseModel):
    """Serializable error detail"""

    message: str
    type: str
    context: Optional[Dict[str, Any]] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorDetail":
        return cls(
            message=getattr(exc, "detail", None) or str(exc),
            type=exc.__class__.__name__,
            context=getattr(exc, "context", None) or None,
        )
