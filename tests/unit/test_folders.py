"""Tests for the folder-state mapper: moves, cross-device fallback, uploads and side-records."""
import errno
import json
import os
import shutil

import pytest

from scanflow.core.errors import MoveFailedError, SourceMissingError, StorageError, ValidationError
from scanflow.models.document import DocumentStatus
from scanflow.storage.folders import STATUS_FOLDERS, sanitize_filename

pytestmark = pytest.mark.unit


def exdev_rename(*args, **kwargs):
    raise OSError(errno.EXDEV, "Invalid cross-device link")


def test_status_folders():
    assert STATUS_FOLDERS[DocumentStatus.NEEDS_REVIEW] == "needs-review"
    assert STATUS_FOLDERS[DocumentStatus.PROCESSED] == STATUS_FOLDERS[DocumentStatus.PROCESSING] == "processing"
    assert set(STATUS_FOLDERS) == set(DocumentStatus)


def test_ensure_folders_creates_every_status_folder(mapper, data_dir):
    for folder in ("inbox", "needs-review", "processing", "hold", "deleted"):
        assert (data_dir / folder).is_dir()


def test_list_inbox_only_reports_visible_pdfs(mapper, place_file):
    place_file("b.pdf")
    place_file("A.PDF")
    place_file("notes.txt")
    place_file(".b.pdf.part")

    assert mapper.list_inbox() == ["A.PDF", "b.pdf"]


def test_sanitize_filename():
    assert sanitize_filename("../../etc/invoice.pdf") == "invoice.pdf"
    assert sanitize_filename("C:\\scans\\a:b*?.pdf") == "a-b.pdf"
    assert sanitize_filename("  rechnung   märz.pdf ") == "rechnung märz.pdf"


async def test_move_to_moves_file_then_writes_status(mapper, inbox_document):
    document = await inbox_document("scan.pdf")

    updated = await mapper.move_to(document, DocumentStatus.HOLD, user="alice")

    assert updated.status == DocumentStatus.HOLD
    assert updated.user == "alice"
    assert not mapper.path_for(document).exists()
    assert mapper.path_for(updated).is_file()
    assert updated.history[-1].action == "status:hold"


async def test_move_between_statuses_sharing_a_folder(mapper, registry, inbox_document):
    document = await inbox_document("scan.pdf")
    processing = await mapper.move_to(document, DocumentStatus.PROCESSING)

    processed = await mapper.move_to(processing, DocumentStatus.PROCESSED)

    assert processed.status == DocumentStatus.PROCESSED
    assert mapper.path_for(processed) == mapper.path_for(processing)
    assert mapper.path_for(processed).is_file()


async def test_move_with_missing_source_leaves_status(mapper, registry, inbox_document):
    document = await inbox_document("scan.pdf")
    mapper.path_for(document).unlink()

    with pytest.raises(SourceMissingError) as exc_info:
        await mapper.move_to(document, DocumentStatus.HOLD)

    assert exc_info.value.document_id == document.id
    assert registry.get(document.id).status == DocumentStatus.INBOX


async def test_move_falls_back_to_copy_across_devices(mapper, registry, inbox_document, monkeypatch, pdf_bytes):
    document = await inbox_document("scan.pdf")
    monkeypatch.setattr(os, "rename", exdev_rename)

    updated = await mapper.move_to(document, DocumentStatus.NEEDS_REVIEW)

    assert updated.status == DocumentStatus.NEEDS_REVIEW
    assert mapper.path_for(updated).read_bytes() == pdf_bytes
    assert not mapper.path_for(document).exists()


async def test_failed_copy_removes_partial_destination(mapper, registry, inbox_document, monkeypatch):
    document = await inbox_document("scan.pdf")
    destination = mapper.path_for(document, DocumentStatus.HOLD)

    def broken_copy(source, target, *args, **kwargs):
        with open(target, "wb") as f:
            f.write(b"%PD")
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(os, "rename", exdev_rename)
    monkeypatch.setattr(shutil, "copy2", broken_copy)

    with pytest.raises(MoveFailedError):
        await mapper.move_to(document, DocumentStatus.HOLD)

    assert not destination.exists()
    assert mapper.path_for(document).is_file()
    assert registry.get(document.id).status == DocumentStatus.INBOX


async def test_other_rename_errors_are_not_retried_as_copy(mapper, inbox_document, monkeypatch):
    document = await inbox_document("scan.pdf")

    def denied(*args, **kwargs):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(os, "rename", denied)

    with pytest.raises(MoveFailedError):
        await mapper.move_to(document, DocumentStatus.HOLD)
    assert mapper.path_for(document).is_file()


async def test_failed_status_write_moves_file_back(mapper, registry, inbox_document, monkeypatch):
    document = await inbox_document("scan.pdf")

    async def rejecting_update(*args, **kwargs):
        raise ValidationError("rejected")

    monkeypatch.setattr(registry, "update", rejecting_update)

    with pytest.raises(ValidationError):
        await mapper.move_to(document, DocumentStatus.HOLD)

    assert mapper.path_for(document).is_file()
    assert not mapper.path_for(document, DocumentStatus.HOLD).exists()


async def test_store_upload_refuses_existing_name(mapper, place_file, pdf_bytes):
    path = await mapper.store_upload("new.pdf", pdf_bytes)
    assert path.read_bytes() == pdf_bytes

    with pytest.raises(MoveFailedError):
        await mapper.store_upload("new.pdf", pdf_bytes)


async def test_delete_file_tolerates_missing_file(mapper, inbox_document):
    document = await inbox_document("scan.pdf")

    assert await mapper.delete_file(document) is True
    assert await mapper.delete_file(document) is False


async def test_write_side_record(mapper, registry, inbox_document, clock):
    document = await inbox_document("scan.pdf")
    document = await registry.update(
        document.id, metadata={"category": "Rechnung"}, confidence=0.9, status=DocumentStatus.PROCESSED
    )

    path = await mapper.write_side_record(document, processed_at=clock())

    assert path.parent.name == "processing"
    record = json.loads(path.read_text(encoding="utf-8"))
    assert record == {
        "id": document.id,
        "filename": "scan.pdf",
        "status": "processed",
        "metadata": {"category": "Rechnung"},
        "confidence": 0.9,
        "user": "system",
        "processedAt": clock().isoformat(),
    }


async def test_side_record_write_failure_is_storage_error(mapper, registry, inbox_document, clock, monkeypatch):
    document = await inbox_document("scan.pdf")

    def broken_write(destination, content):
        raise OSError("read-only file system")

    monkeypatch.setattr(mapper, "_write_bytes", broken_write)

    with pytest.raises(StorageError):
        await mapper.write_side_record(document, processed_at=clock())


async def test_leaving_processed_removes_side_record(mapper, registry, inbox_document, clock):
    document = await inbox_document("scan.pdf")
    processed = await mapper.move_to(document, DocumentStatus.PROCESSED)
    await mapper.write_side_record(processed, processed_at=clock())

    held = await mapper.move_to(processed, DocumentStatus.HOLD)

    assert held.status == DocumentStatus.HOLD
    assert not mapper.side_record_path(held).exists()


async def test_side_record_kept_when_staying_processed(mapper, inbox_document, clock):
    document = await inbox_document("scan.pdf")
    processed = await mapper.move_to(document, DocumentStatus.PROCESSED)
    await mapper.write_side_record(processed, processed_at=clock())

    again = await mapper.move_to(processed, DocumentStatus.PROCESSED)

    assert mapper.side_record_path(again).is_file()


async def test_delete_side_record_tolerates_missing_record(mapper, inbox_document):
    document = await inbox_document("scan.pdf")

    assert await mapper.delete_side_record(document) is False
