"""
Entity models for scanflow
"""
from scanflow.models.document import (
    Document,
    DocumentStatus,
    DocumentOrigin,
    DocumentMode,
    HistoryEntry,
)

__all__ = [
    "Document",
    "DocumentStatus",
    "DocumentOrigin",
    "DocumentMode",
    "HistoryEntry",
]
