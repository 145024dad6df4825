"""Core package - settings, category table and error taxonomy"""
from scanflow.core.errors import (
    ScanflowError,
    NotFoundError,
    ValidationError,
    DependencyUnavailableError,
    ConflictError,
    StorageError,
    SourceMissingError,
    MoveFailedError,
)

__all__ = [
    "ScanflowError",
    "NotFoundError",
    "ValidationError",
    "DependencyUnavailableError",
    "ConflictError",
    "StorageError",
    "SourceMissingError",
    "MoveFailedError",
]
