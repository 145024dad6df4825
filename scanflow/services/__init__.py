"""
Services package - High-level business logic layer
"""
from scanflow.services.document_service import DocumentService, ActionResult

__all__ = [
    "DocumentService",
    "ActionResult",
]
