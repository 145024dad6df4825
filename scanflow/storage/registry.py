"""
Document registry: the authoritative in-memory set of document records and
its durable JSON snapshot.

All mutations go through this class. Callers receive copies of the records,
never the records themselves.
"""
import asyncio
import json
import os
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional, List, Callable, AsyncIterator

from pydantic import ValidationError as PydanticValidationError

from scanflow.core.errors import NotFoundError, ConflictError, ValidationError
from scanflow.models.document import Document, DocumentStatus, DocumentOrigin, HistoryEntry

logger = logging.getLogger(__name__)

# Statuses that no longer sit in a work queue
FINISHED_STATUSES = {DocumentStatus.PROCESSED, DocumentStatus.DELETED}

# Fields a caller is never allowed to overwrite through update()
IMMUTABLE_FIELDS = {"id", "created_at", "history"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRegistry:
    """
    Registry of document records with write-through snapshot persistence.

    Per-document mutual exclusion is provided by lock(); every status
    transition (file move + status write) must run inside it. The snapshot is
    best-effort: a failed write is logged and the in-memory state is kept.
    """

    def __init__(
        self,
        snapshot_path: Path,
        lock_timeout: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        :param snapshot_path: JSON file holding the full registry (id -> record)
        :param lock_timeout: Seconds to wait for a document lock before raising ConflictError
        :param clock: Returns the current UTC time. Defaults to datetime.now(timezone.utc)
        """
        self.snapshot_path = Path(snapshot_path)
        self.lock_timeout = lock_timeout
        self._clock = clock or utcnow
        self._documents: Dict[str, Document] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per filename lock
        self._filename_users: Dict[str, int] = {}
        self._write_lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._documents

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Load records from the snapshot file, replacing the in-memory state.

        A missing snapshot yields an empty registry; a corrupted one is
        logged and ignored.

        :return: Number of records loaded
        """
        if not self.snapshot_path.exists():
            logger.info(f"No snapshot at {self.snapshot_path}, starting with an empty registry")
            self._documents = {}
            return 0

        try:
            with open(self.snapshot_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Snapshot file unreadable, starting empty: {e}")
            self._documents = {}
            return 0

        documents = {}
        for doc_id, record in (raw or {}).items():
            try:
                documents[doc_id] = Document.model_validate(record)
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid snapshot record {doc_id}: {e}")

        self._documents = documents
        logger.info(f"Loaded {len(documents)} documents from {self.snapshot_path}")
        return len(documents)

    def _write_snapshot(self, payload: Dict[str, Any]):
        """Write the snapshot file (runs in a worker thread)."""
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.snapshot_path.with_name(self.snapshot_path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.snapshot_path)

    async def persist(self) -> bool:
        """
        Serialize the full registry to the snapshot file.

        :return: True if the snapshot was written, False if the write failed
        """
        async with self._write_lock:
            # Taken under the write lock so snapshots land in mutation order
            payload = {doc_id: doc.to_json_dict() for doc_id, doc in self._documents.items()}
            try:
                await asyncio.to_thread(self._write_snapshot, payload)
                return True
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to write snapshot {self.snapshot_path}: {e}")
                return False

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _acquire(self, key: str, document_id: Optional[str] = None) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError:
            raise ConflictError(
                f"Document is busy with another transition (waited {self.lock_timeout}s)",
                document_id=document_id,
            )
        try:
            yield
        finally:
            lock.release()

    @asynccontextmanager
    async def lock(self, document_id: str) -> AsyncIterator[Document]:
        """
        Hold the per-document lock for the duration of a transition.

        Yields the document as it is once the lock is held, so callers never
        act on a status observed before another transition finished.

        :raises ConflictError: If the lock could not be acquired in time
        :raises NotFoundError: If the document does not exist (or was purged while waiting)
        """
        self.get(document_id)
        async with self._acquire(document_id, document_id=document_id):
            yield self.get(document_id)

    @asynccontextmanager
    async def lock_filename(self, filename: str) -> AsyncIterator[None]:
        """
        Serialize creation of a document for a given file name.

        Used by upload and inbox discovery so neither creates a second record
        for a file the other is registering.
        """
        key = f"file:{filename}"
        self._filename_users[key] = self._filename_users.get(key, 0) + 1
        try:
            async with self._acquire(key):
                yield
        finally:
            self._filename_users[key] -= 1
            if not self._filename_users[key]:
                del self._filename_users[key]
                self._locks.pop(key, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, document_id: str) -> Document:
        """
        :raises NotFoundError: If no document has this id
        """
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", document_id=document_id)
        return document.model_copy(deep=True)

    def list(self, status: Optional[DocumentStatus] = None, oldest_first: bool = False) -> List[Document]:
        """
        List documents, most recent first unless oldest_first is set.

        :param status: Optional status filter
        :param oldest_first: Sort by createdAt ascending
        """
        documents = [
            doc for doc in self._documents.values()
            if status is None or doc.status == status
        ]
        documents.sort(key=lambda d: (d.created_at, d.id), reverse=not oldest_first)
        return [doc.model_copy(deep=True) for doc in documents]

    def next(self, status: Optional[DocumentStatus] = None) -> Document:
        """
        Oldest document in a queue.

        Without a status filter, the oldest document that is neither
        processed nor deleted.

        :raises NotFoundError: If the queue is empty
        """
        for document in self.list(status=status, oldest_first=True):
            if status is None and document.status in FINISHED_STATUSES:
                continue
            return document
        label = status.value if status else "open"
        raise NotFoundError(f"No {label} document in queue")

    def find_by_filename(self, filename: str) -> Optional[Document]:
        for document in self._documents.values():
            if document.filename == filename:
                return document.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        filename: str,
        origin: DocumentOrigin,
        user: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> Document:
        """
        Register a new document in the inbox and persist the snapshot.

        :param filename: File name inside the inbox folder
        :param origin: How the document entered the system
        :param user: Creating actor
        :param detail: Optional note for the history entry
        """
        now = self.now()
        document = Document(
            id=uuid.uuid4().hex,
            filename=filename,
            status=DocumentStatus.INBOX,
            origin=origin,
            confidence=None,
            metadata={},
            user=user,
            created_at=now,
            updated_at=now,
            history=[HistoryEntry(action="created", user=user, at=now, detail=detail)],
        )
        self._documents[document.id] = document
        logger.info(f"Document created: {document.id} ({filename}, origin={origin.value})")
        await self.persist()
        return document.model_copy(deep=True)

    async def update(
        self,
        document_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        action: Optional[str] = None,
        detail: Optional[str] = None,
        **fields: Any,
    ) -> Document:
        """
        Apply a partial update and persist the snapshot.

        Metadata is shallow-merged: keys in `metadata` overwrite, other keys
        are preserved. `updatedAt` is always stamped.

        :param document_id: Document to update
        :param metadata: Metadata keys to merge
        :param action: If given, a history entry with this action is appended
        :param detail: Detail text for the history entry
        :param fields: Other Document fields (status, confidence, mode, user, ...)
        :raises NotFoundError: If the document does not exist
        :raises ValidationError: If a field is immutable or a value is invalid
        """
        current = self._documents.get(document_id)
        if current is None:
            raise NotFoundError(f"Document {document_id} not found", document_id=document_id)

        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(forbidden))}", document_id=document_id)

        now = self.now()
        values = current.model_dump()
        values.update(fields)
        if metadata:
            values["metadata"] = {**current.metadata, **metadata}
        values["updated_at"] = now
        if action:
            values["history"] = values["history"] + [
                {"action": action, "user": fields.get("user", current.user), "at": now, "detail": detail}
            ]

        try:
            updated = Document.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid update for document {document_id}: {e}", document_id=document_id)

        self._documents[document_id] = updated
        await self.persist()
        return updated.model_copy(deep=True)

    async def remove(self, document_id: str):
        """
        Delete a record entirely. Used by the purge and reconciliation sweeps.

        :raises NotFoundError: If the document does not exist
        """
        if self._documents.pop(document_id, None) is None:
            raise NotFoundError(f"Document {document_id} not found", document_id=document_id)
        self._locks.pop(document_id, None)
        logger.info(f"Document removed from registry: {document_id}")
        await self.persist()
