"""
Error taxonomy shared by the registry, the folder mapper, the classification
router and the route layer
"""


class ScanflowError(Exception):
    """Base exception for document lifecycle operations"""
    kind = "error"

    def __init__(self, message: str, document_id: str = None):
        super().__init__(message)
        self.message = message
        self.document_id = document_id

    def to_dict(self) -> dict:
        payload = {"error": self.kind, "detail": self.message}
        if self.document_id:
            payload["document_id"] = self.document_id
        return payload


class NotFoundError(ScanflowError):
    """Unknown document id (or no document matches a queue lookup)"""
    kind = "not_found"


class ValidationError(ScanflowError):
    """Malformed upload, non-PDF content or a missing/invalid field"""
    kind = "validation_error"


class DependencyUnavailableError(ScanflowError):
    """Classifier unreachable, timed out or answered with an error"""
    kind = "dependency_unavailable"


class ConflictError(ScanflowError):
    """Document is mid-transition or no longer accepts the requested action"""
    kind = "conflict"


class StorageError(ScanflowError):
    """Move, copy, write or delete failure in the managed folders"""
    kind = "storage_error"


class SourceMissingError(StorageError):
    """The file is not where the document's status says it should be"""
    kind = "file_not_found"


class MoveFailedError(StorageError):
    """Writing or copying the file to its destination folder failed"""
    kind = "move_failed"
