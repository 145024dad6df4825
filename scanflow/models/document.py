"""
Document entity - the registry record kept in sync with the managed folders
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    """Lifecycle state; each value maps to exactly one physical folder"""
    INBOX = "inbox"
    NEEDS_REVIEW = "needs_review"
    PROCESSING = "processing"
    HOLD = "hold"
    PROCESSED = "processed"
    DELETED = "deleted"


class DocumentOrigin(str, Enum):
    SCANNER = "scanner"
    MANUAL = "manual"


class DocumentMode(str, Enum):
    """Provenance of the current metadata"""
    AUTO = "auto"
    CORRECTED = "corrected"
    MANUAL = "manual"


class HistoryEntry(BaseModel):
    """One line of a document's audit trail"""
    action: str
    user: Optional[str] = None
    at: datetime
    detail: Optional[str] = None


class Document(BaseModel):
    """
    Registry record for one scanned document.

    Serialised with camelCase timestamps (createdAt/updatedAt) both in the
    snapshot file and in API responses.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    filename: str
    status: DocumentStatus = DocumentStatus.INBOX
    origin: DocumentOrigin = DocumentOrigin.SCANNER
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict, description="category, docId, subject, docDate, free-form")
    mode: DocumentMode = DocumentMode.AUTO
    user: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    history: List[HistoryEntry] = Field(default_factory=list)

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-ready dict using the public field names."""
        return self.model_dump(mode="json", by_alias=True)

    def __repr__(self):
        return f"<Document(id={self.id}, filename='{self.filename}', status={self.status.value})>"
