"""
Folder-state mapper: translates a document status into its physical folder
and moves the backing file when the status changes.

This is the only component that moves, writes or deletes managed files.
"""
import asyncio
import errno
import json
import os
import re
import shutil
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from scanflow.core.errors import SourceMissingError, MoveFailedError, StorageError
from scanflow.models.document import Document, DocumentStatus
from scanflow.storage.registry import DocumentRegistry

logger = logging.getLogger(__name__)

# Status -> folder name below the data directory.
# processing and processed share the outbox folder.
STATUS_FOLDERS: Dict[DocumentStatus, str] = {
    DocumentStatus.INBOX: "inbox",
    DocumentStatus.NEEDS_REVIEW: "needs-review",
    DocumentStatus.PROCESSING: "processing",
    DocumentStatus.HOLD: "hold",
    DocumentStatus.PROCESSED: "processing",
    DocumentStatus.DELETED: "deleted",
}

# Status a file is assumed to have when found in a folder during reconciliation
FOLDER_STATUSES: Dict[str, DocumentStatus] = {
    "inbox": DocumentStatus.INBOX,
    "needs-review": DocumentStatus.NEEDS_REVIEW,
    "processing": DocumentStatus.PROCESSED,
    "hold": DocumentStatus.HOLD,
    "deleted": DocumentStatus.DELETED,
}


def sanitize_filename(name: str) -> str:
    """
    Sanitize an uploaded file name for the local filesystem.

    Strips any directory part and removes characters that are invalid on
    most filesystems: / \\ : * ? \" < > |
    """
    name = os.path.basename(name.replace('\\', '/'))
    name = name.replace(':', '-')
    name = name.replace('*', '')
    name = name.replace('?', '')
    name = name.replace('"', "'")
    name = name.replace('<', '')
    name = name.replace('>', '')
    name = name.replace('|', '-')

    # Remove leading/trailing whitespace and dots
    name = name.strip().strip('.')

    # Collapse multiple spaces/dashes
    name = re.sub(r'\s+', ' ', name)
    name = re.sub(r'-+', '-', name)

    if len(name) > 150:
        stem, ext = os.path.splitext(name)
        name = stem[:150 - len(ext)].strip() + ext

    return name


class FolderStateMapper:
    """
    Maps document statuses to folders under a data directory.

    move_to() must be called while holding the document's registry lock; it
    moves the file first and only then writes the new status.
    """

    def __init__(self, data_dir: Path, registry: DocumentRegistry):
        """
        :param data_dir: Root directory holding one sub-folder per status
        :param registry: Registry that receives the status write after a move
        """
        self.data_dir = Path(data_dir)
        self.registry = registry

    def ensure_folders(self):
        """Create the managed folders if they don't exist."""
        for folder in sorted(set(STATUS_FOLDERS.values())):
            (self.data_dir / folder).mkdir(parents=True, exist_ok=True)

    def folder_for(self, status: DocumentStatus) -> Path:
        return self.data_dir / STATUS_FOLDERS[DocumentStatus(status)]

    def path_for(self, document: Document, status: Optional[DocumentStatus] = None) -> Path:
        """Path of the document's file for its current (or the given) status."""
        return self.folder_for(status or document.status) / document.filename

    def list_inbox(self) -> List[str]:
        """PDF file names currently in the inbox folder."""
        inbox = self.folder_for(DocumentStatus.INBOX)
        if not inbox.is_dir():
            return []
        return sorted(
            entry.name for entry in inbox.iterdir()
            if entry.is_file()
            and not entry.name.startswith('.')
            and entry.name.lower().endswith('.pdf')
        )

    def locate(self, filename: str) -> List[str]:
        """Names of the managed folders that currently hold a file with this name."""
        return [
            folder for folder in sorted(set(STATUS_FOLDERS.values()))
            if (self.data_dir / folder / filename).is_file()
        ]

    def name_in_use(self, filename: str) -> bool:
        return bool(self.locate(filename))

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def _move_file(self, source: Path, destination: Path):
        """
        Move one file; atomic rename, or copy-verify-delete across devices.

        Runs in a worker thread. On failure the source is left in place and
        no partial destination remains.
        """
        if not source.is_file():
            raise SourceMissingError(f"Source file does not exist: {source}")
        if destination.exists():
            raise MoveFailedError(f"Destination already exists: {destination}")

        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            os.rename(source, destination)
            return
        except FileNotFoundError:
            raise SourceMissingError(f"Source file disappeared before move: {source}")
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise MoveFailedError(f"Failed to move file from {source} to {destination}: {e}")
            logger.info(f"Rename across devices not supported, copying {source.name} instead")

        try:
            shutil.copy2(source, destination)
            if destination.stat().st_size != source.stat().st_size:
                raise MoveFailedError(f"Copy of {source.name} is incomplete")
        except (OSError, MoveFailedError) as e:
            destination.unlink(missing_ok=True)
            if isinstance(e, MoveFailedError):
                raise
            raise MoveFailedError(f"Failed to copy file from {source} to {destination}: {e}")

        try:
            os.remove(source)
        except OSError as e:
            # Keep the single original rather than two copies
            destination.unlink(missing_ok=True)
            raise MoveFailedError(f"Copied {source.name} but could not remove the source: {e}")

    async def move_to(
        self,
        document: Document,
        target_status: DocumentStatus,
        action: Optional[str] = None,
        detail: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Document:
        """
        Move the document's file to the folder of target_status, then write
        the status (and any accompanying fields) to the registry.

        :param document: Document as observed under its lock
        :param target_status: Status to transition to
        :param action: History action recorded with the update
        :param detail: History detail
        :param metadata: Metadata to merge in the same registry update
        :param fields: Other fields written in the same registry update
        :return: Updated document
        :raises SourceMissingError: If the file is not in the current status folder
        :raises MoveFailedError: If the destination could not be written
        """
        target_status = DocumentStatus(target_status)
        source = self.path_for(document)
        destination = self.path_for(document, target_status)

        if source != destination:
            logger.info(
                f"Moving {document.filename} ({document.id}): "
                f"{document.status.value} -> {target_status.value}"
            )
            try:
                await asyncio.to_thread(self._move_file, source, destination)
            except StorageError as e:
                e.document_id = e.document_id or document.id
                raise
        elif not source.is_file():
            raise SourceMissingError(f"Source file does not exist: {source}", document_id=document.id)

        try:
            updated = await self.registry.update(
                document.id,
                metadata=metadata,
                action=action or f"status:{target_status.value}",
                detail=detail,
                status=target_status,
                **fields,
            )
        except Exception:
            # The status write was rejected; put the file back where the status says it is
            if source != destination:
                try:
                    await asyncio.to_thread(self._move_file, destination, source)
                except StorageError as e:
                    logger.critical(f"Could not restore {document.filename} to {source.parent}: {e}")
            raise

        if document.status == DocumentStatus.PROCESSED and target_status != DocumentStatus.PROCESSED:
            try:
                await self.delete_side_record(updated)
            except StorageError as e:
                logger.error(f"Stale side-record for {document.id} could not be removed: {e}")

        return updated

    # ------------------------------------------------------------------
    # Writes and deletes
    # ------------------------------------------------------------------

    def _write_bytes(self, destination: Path, content: bytes):
        destination.parent.mkdir(parents=True, exist_ok=True)
        # Hidden temp name so inbox discovery never sees a half-written file
        tmp_path = destination.with_name(f".{destination.name}.part")
        try:
            with open(tmp_path, 'wb') as f:
                f.write(content)
            os.replace(tmp_path, destination)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    async def store_upload(self, filename: str, content: bytes) -> Path:
        """
        Write an uploaded file into the inbox.

        :raises MoveFailedError: If the file already exists or cannot be written
        """
        destination = self.folder_for(DocumentStatus.INBOX) / filename
        if destination.exists():
            raise MoveFailedError(f"Inbox already holds a file named {filename}")
        try:
            await asyncio.to_thread(self._write_bytes, destination, content)
        except OSError as e:
            raise MoveFailedError(f"Failed to store upload {filename}: {e}")
        logger.info(f"Upload stored: {destination}")
        return destination

    async def delete_file(self, document: Document) -> bool:
        """
        Permanently delete the document's file.

        :return: True if a file was deleted, False if it was already gone
        :raises StorageError: If the file exists but cannot be deleted
        """
        path = self.path_for(document)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            logger.warning(f"File already gone for document {document.id}: {path}")
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", document_id=document.id)
        logger.info(f"File deleted: {path}")
        return True

    def side_record_path(self, document: Document) -> Path:
        return self.folder_for(DocumentStatus.PROCESSED) / f"{document.id}.json"

    async def delete_side_record(self, document: Document) -> bool:
        """
        Remove the processing side-record of a document that left processed.

        :return: True if a record was deleted, False if there was none
        :raises StorageError: If the record exists but cannot be deleted
        """
        path = self.side_record_path(document)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete side-record {path}: {e}", document_id=document.id)
        logger.info(f"Side-record deleted: {path}")
        return True

    async def write_side_record(self, document: Document, processed_at: datetime) -> Path:
        """
        Write the processing side-record next to the processed file.

        :raises StorageError: If the record cannot be written
        """
        record = {
            "id": document.id,
            "filename": document.filename,
            "status": DocumentStatus.PROCESSED.value,
            "metadata": document.metadata,
            "confidence": document.confidence,
            "user": document.user or "unknown",
            "processedAt": processed_at.isoformat(),
        }
        path = self.side_record_path(document)
        try:
            content = json.dumps(record, indent=2, ensure_ascii=False).encode("utf-8")
            await asyncio.to_thread(self._write_bytes, path, content)
        except (OSError, TypeError) as e:
            raise StorageError(f"Failed to write side-record {path}: {e}", document_id=document.id)
        logger.info(f"Side-record written: {path}")
        return path
