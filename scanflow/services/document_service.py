"""
Document business logic service - High-level API for the route layer
"""
import itertools
import logging
import os
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Callable

from scanflow.core.errors import ValidationError, ConflictError
from scanflow.models.document import (
    Document,
    DocumentStatus,
    DocumentOrigin,
    DocumentMode,
    HistoryEntry,
)
from scanflow.pipelines.classification import ClassificationRouter
from scanflow.pipelines.sweepers import LifecycleSweepers, SweepReport
from scanflow.storage.folders import FolderStateMapper, sanitize_filename
from scanflow.storage.registry import DocumentRegistry

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"

# Fields a client may change through update()
UPDATABLE_FIELDS = {"metadata", "confidence", "mode", "status"}


@dataclass
class ActionResult:
    """Outcome of a mutating action. changed=False means nothing had to be done."""
    document: Document
    changed: bool = True
    message: str = ""


class DocumentService:
    """
    High-level service for document operations

    This service handles:
    - Uploads into the inbox
    - Metadata correction
    - Classification and forced transitions (process, hold, delete)
    - On-demand discovery and purge passes

    Every transition runs under the document's registry lock.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        mapper: FolderStateMapper,
        router: ClassificationRouter,
        sweepers: LifecycleSweepers,
        max_upload_bytes: int = 25 * 1024 * 1024,
    ):
        self.registry = registry
        self.mapper = mapper
        self.router = router
        self.sweepers = sweepers
        self.max_upload_bytes = max_upload_bytes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        return self.registry.list(status=status)

    def next_document(self, status: Optional[DocumentStatus] = None) -> Document:
        return self.registry.next(status=status)

    def get_document(self, document_id: str) -> Document:
        return self.registry.get(document_id)

    def get_history(self, document_id: str) -> List[HistoryEntry]:
        return self.registry.get(document_id).history

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def _validate_upload(self, filename: Optional[str], content: bytes) -> str:
        if not filename:
            raise ValidationError("Upload has no file name")
        name = sanitize_filename(filename)
        if not name or not name.lower().endswith(".pdf"):
            raise ValidationError(f"Only PDF files are accepted: {filename}")
        if not content:
            raise ValidationError(f"Uploaded file {filename} is empty")
        if len(content) > self.max_upload_bytes:
            raise ValidationError(
                f"Uploaded file {filename} exceeds {self.max_upload_bytes} bytes"
            )
        if not content.startswith(PDF_MAGIC):
            raise ValidationError(f"Uploaded file {filename} is not a PDF document")
        return name

    def _name_taken(self, filename: str) -> bool:
        return self.registry.find_by_filename(filename) is not None or self.mapper.name_in_use(filename)

    async def upload(self, filename: Optional[str], content: bytes, user: Optional[str]) -> Document:
        """
        Store an uploaded PDF in the inbox and register it (origin=manual).

        A name already used by a tracked document or a managed file gets a
        numeric suffix.

        Args:
            filename: Original client file name
            content: File content
            user: Uploading user

        Returns:
            Created Document

        Raises:
            ValidationError: If the upload is empty, too large or not a PDF
            StorageError: If the file cannot be written to the inbox
        """
        name = self._validate_upload(filename, content)
        stem, ext = os.path.splitext(name)

        for attempt in itertools.count():
            candidate = name if attempt == 0 else f"{stem}_{attempt}{ext}"
            if self._name_taken(candidate):
                continue
            async with self.registry.lock_filename(candidate):
                if self._name_taken(candidate):
                    continue
                await self.mapper.store_upload(candidate, content)
                detail = "uploaded" if candidate == name else f"uploaded as {filename}"
                return await self.registry.create(candidate, DocumentOrigin.MANUAL, user=user, detail=detail)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _validate_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        validated: Dict[str, Any] = {}

        metadata = changes.get("metadata")
        if metadata is not None:
            if not isinstance(metadata, dict):
                raise ValidationError("metadata must be an object")
            metadata = {key: value for key, value in metadata.items() if value is not None}
            if metadata:
                validated["metadata"] = metadata

        confidence = changes.get("confidence")
        if confidence is not None:
            if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
                raise ValidationError("confidence must be a number")
            if not 0.0 <= confidence <= 1.0:
                raise ValidationError("confidence must be between 0 and 1")
            validated["confidence"] = float(confidence)

        for key, enum in (("mode", DocumentMode), ("status", DocumentStatus)):
            value = changes.get(key)
            if value is None:
                continue
            try:
                validated[key] = enum(value)
            except ValueError:
                allowed = ", ".join(member.value for member in enum)
                raise ValidationError(f"Invalid {key} '{value}', expected one of: {allowed}")

        return validated

    async def update(self, document_id: str, changes: Dict[str, Any], user: Optional[str]) -> ActionResult:
        """
        Partially update a document (metadata, confidence, mode, status).

        Metadata is shallow-merged. A status change moves the file.

        Raises:
            ValidationError: If no user is given or a value is invalid
            NotFoundError: If the document does not exist
            ConflictError: If the document is deleted or busy
            StorageError: If a status change could not move the file
        """
        if not user:
            raise ValidationError("An acting user (X-User) is required to update a document")
        validated = self._validate_changes(changes)

        async with self.registry.lock(document_id) as document:
            if document.status == DocumentStatus.DELETED:
                raise ConflictError(f"Document {document_id} is deleted", document_id=document_id)

            target = validated.pop("status", None)
            if target is not None and target != document.status:
                updated = await self.mapper.move_to(
                    document, target, action="updated", detail=f"status -> {target.value}", user=user, **validated
                )
                await self._after_transition(updated)
            else:
                updated = await self.registry.update(document_id, action="updated", user=user, **validated)

        logger.info(f"Document {document_id} updated by {user}")
        return ActionResult(updated, changed=True, message="Document updated")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _after_transition(self, document: Document):
        if document.status == DocumentStatus.PROCESSED:
            await self.router.emit_side_record(document)

    async def _transition(
        self,
        document_id: str,
        target: DocumentStatus,
        user: Optional[str],
        message: str,
        fields_for: Optional[Callable[[Document], Dict[str, Any]]] = None,
    ) -> ActionResult:
        """Shared path for forced transitions: lock, check, move, record."""
        async with self.registry.lock(document_id) as document:
            if document.status == target:
                return ActionResult(document, changed=False, message=f"Document is already {target.value}")
            if document.status == DocumentStatus.DELETED:
                raise ConflictError(f"Document {document_id} is deleted", document_id=document_id)

            fields = fields_for(document) if fields_for else {}
            updated = await self.mapper.move_to(document, target, action=target.value, user=user, **fields)
            await self._after_transition(updated)

        logger.info(f"Document {document_id} -> {target.value} by {user}")
        return ActionResult(updated, changed=True, message=message)

    async def classify(self, document_id: str, user: Optional[str]) -> ActionResult:
        """Classify (or reclassify) a document and route it by confidence."""
        updated = await self.router.classify(document_id, user)
        return ActionResult(updated, changed=True, message=f"Document classified, status {updated.status.value}")

    reclassify = classify

    async def process(self, document_id: str, user: Optional[str]) -> ActionResult:
        """Force a document to processed regardless of its confidence."""
        def corrected_mode(document: Document) -> Dict[str, Any]:
            if document.mode == DocumentMode.MANUAL:
                return {"mode": DocumentMode.MANUAL}
            return {"mode": DocumentMode.CORRECTED}

        return await self._transition(
            document_id, DocumentStatus.PROCESSED, user, "Document processed", fields_for=corrected_mode
        )

    async def hold(self, document_id: str, user: Optional[str]) -> ActionResult:
        return await self._transition(document_id, DocumentStatus.HOLD, user, "Document put on hold")

    async def delete(self, document_id: str, user: Optional[str]) -> ActionResult:
        """Soft delete: move to the deleted folder; the purge removes it later."""
        return await self._transition(document_id, DocumentStatus.DELETED, user, "Document marked for deletion")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sync_now(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        """Run one inbox discovery pass, then list documents."""
        await self.sweepers.discover_inbox()
        return self.registry.list(status=status)

    async def purge(self, immediate: bool = False) -> SweepReport:
        """Run a purge pass: age-gated by default, every deleted document if immediate."""
        if immediate:
            return await self.sweepers.purge_now()
        return await self.sweepers.purge_expired()
