"""
Registry and folder storage for scanned documents.
"""
from scanflow.storage.registry import DocumentRegistry
from scanflow.storage.folders import FolderStateMapper, STATUS_FOLDERS, sanitize_filename

__all__ = [
    "DocumentRegistry",
    "FolderStateMapper",
    "STATUS_FOLDERS",
    "sanitize_filename",
]
