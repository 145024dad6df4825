"""Tests for inbox discovery, the purge passes, startup reconciliation and scheduling."""
import asyncio
from datetime import timedelta

import pytest

from scanflow.models.document import DocumentOrigin, DocumentStatus
from scanflow.pipelines.sweepers import LifecycleSweepers

pytestmark = pytest.mark.unit


async def test_discovery_registers_untracked_inbox_pdfs(sweepers, registry, place_file):
    place_file("scan_001.pdf")
    place_file("scan_002.PDF")
    place_file("readme.txt")

    report = await sweepers.discover_inbox()

    assert len(report.created) == 2
    documents = registry.list()
    assert {d.filename for d in documents} == {"scan_001.pdf", "scan_002.PDF"}
    assert all(d.origin == DocumentOrigin.SCANNER for d in documents)
    assert all(d.user == "system" for d in documents)


async def test_discovery_is_idempotent(sweepers, registry, place_file):
    place_file("scan_001.pdf")

    await sweepers.discover_inbox()
    report = await sweepers.discover_inbox()

    assert report.created == []
    assert len(registry) == 1


async def test_discovery_removes_inbox_documents_whose_file_vanished(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    mapper.path_for(document).unlink()

    report = await sweepers.discover_inbox()

    assert report.removed == [document.id]
    assert document.id not in registry


async def test_discovery_keeps_documents_outside_the_inbox(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    await mapper.move_to(document, DocumentStatus.HOLD)

    report = await sweepers.discover_inbox()

    assert report.removed == []
    assert registry.get(document.id).status == DocumentStatus.HOLD


async def test_discovery_ignores_name_tracked_in_another_folder(sweepers, registry, mapper, inbox_document, place_file):
    document = await inbox_document("scan.pdf")
    await mapper.move_to(document, DocumentStatus.NEEDS_REVIEW)
    place_file("scan.pdf")

    report = await sweepers.discover_inbox()

    assert report.created == []
    assert len(registry) == 1


async def test_retention_purge_respects_age(sweepers, registry, mapper, inbox_document, clock):
    old = await inbox_document("old.pdf")
    old = await mapper.move_to(old, DocumentStatus.DELETED)
    clock.advance(days=20)
    recent = await inbox_document("recent.pdf")
    recent = await mapper.move_to(recent, DocumentStatus.DELETED)
    clock.advance(days=11)

    report = await sweepers.purge_expired()

    assert report.removed == [old.id]
    assert old.id not in registry
    assert not mapper.path_for(old).exists()
    assert recent.id in registry
    assert mapper.path_for(recent).is_file()


async def test_purge_now_ignores_age(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    deleted = await mapper.move_to(document, DocumentStatus.DELETED)
    keep = await inbox_document("keep.pdf")

    report = await sweepers.purge_now()

    assert report.removed == [deleted.id]
    assert not mapper.path_for(deleted).exists()
    assert keep.id in registry


async def test_purge_tolerates_missing_file(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    deleted = await mapper.move_to(document, DocumentStatus.DELETED)
    mapper.path_for(deleted).unlink()

    report = await sweepers.purge_now()

    assert report.removed == [deleted.id]


async def test_reconcile_adopts_folder_status(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    mapper.path_for(document).rename(mapper.path_for(document, DocumentStatus.HOLD))

    report = await sweepers.reconcile()

    assert report.updated == [document.id]
    assert registry.get(document.id).status == DocumentStatus.HOLD
    assert registry.get(document.id).history[-1].action == "reconciled"


async def test_reconcile_drops_records_without_file(sweepers, registry, mapper, inbox_document):
    document = await inbox_document("scan.pdf")
    mapper.path_for(document).unlink()

    report = await sweepers.reconcile()

    assert report.removed == [document.id]
    assert len(registry) == 0


async def test_reconcile_keeps_consistent_records(sweepers, registry, inbox_document):
    document = await inbox_document("scan.pdf")

    report = await sweepers.reconcile()

    assert report.updated == report.removed == []
    assert registry.get(document.id) == document


async def test_start_runs_discovery_until_stopped(registry, mapper, place_file):
    sweepers = LifecycleSweepers(registry, mapper, discovery_interval=0.01, purge_interval=60)
    place_file("scan.pdf")

    sweepers.start()
    try:
        for _ in range(100):
            if len(registry):
                break
            await asyncio.sleep(0.01)
    finally:
        await sweepers.stop()

    assert registry.find_by_filename("scan.pdf") is not None
    assert sweepers._tasks == []


async def test_failing_pass_does_not_kill_the_loop(registry, mapper):
    sweepers = LifecycleSweepers(registry, mapper, discovery_interval=0.01, purge_interval=60)
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    task = asyncio.create_task(sweepers._run_periodically("flaky", 0.01, flaky))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(calls) > 1


async def test_purge_removes_leftover_side_record(sweepers, registry, mapper, inbox_document, clock):
    document = await inbox_document("scan.pdf")
    deleted = await mapper.move_to(document, DocumentStatus.DELETED)
    await mapper.write_side_record(deleted, processed_at=clock())

    report = await sweepers.purge_now()

    assert report.removed == [deleted.id]
    assert not mapper.side_record_path(deleted).exists()
