from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from scanflow.models.document import Document, HistoryEntry

# ==========================================
# Requests
# ==========================================

class DocumentUpdateRequest(BaseModel):
    """
    Partial update sent by the detail view. Omitted fields stay untouched.
    """
    metadata: Optional[Dict[str, Any]] = Field(None, description="Keys to merge: category, docId, subject, docDate, ...")
    confidence: Optional[float] = Field(None, description="Corrected confidence, 0-1")
    mode: Optional[str] = Field(None, description="auto, corrected or manual")
    status: Optional[str] = Field(None, description="Target status; moves the file")

# ==========================================
# Responses
# ==========================================

class ActionResponse(BaseModel):
    """
    Result of a mutating action. changed=false means the document was
    already in the requested state.
    """
    message: str
    changed: bool = True
    document: Document


class DocumentListResponse(BaseModel):
    total: int = Field(..., description="Total number of documents")
    documents: List[Document] = Field(..., description="List of documents")


class HistoryResponse(BaseModel):
    id: str
    logs: List[HistoryEntry]


class SweepResponse(BaseModel):
    sweep: str
    created: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str = Field(..., description="not_found, validation_error, conflict, dependency_unavailable, storage_error, ...")
    detail: str
    document_id: Optional[str] = None
