"""
Lifecycle sweepers: periodic jobs reconciling the registry with the folders.

Every job takes the same lock discipline as user actions before creating,
mutating or removing a record, and logs past per-document failures instead
of aborting the pass.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional, Set

from scanflow.core.errors import ScanflowError, NotFoundError
from scanflow.models.document import DocumentOrigin, DocumentStatus
from scanflow.storage.folders import FolderStateMapper, FOLDER_STATUSES, STATUS_FOLDERS
from scanflow.storage.registry import DocumentRegistry

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""
    name: str
    created: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "sweep": self.name,
            "created": self.created,
            "removed": self.removed,
            "updated": self.updated,
            "failed": self.failed,
        }


class LifecycleSweepers:
    """
    Inbox discovery, retention purge and startup reconciliation.

    start() schedules discovery and the age-gated retention purge as asyncio
    tasks. purge_now() removes every deleted document regardless of age and
    is only run on demand.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        mapper: FolderStateMapper,
        retention: timedelta = timedelta(days=30),
        discovery_interval: float = 5.0,
        purge_interval: float = 6 * 60 * 60,
        system_user: str = "system",
    ):
        """
        :param registry: Document registry
        :param mapper: Folder-state mapper
        :param retention: How long a deleted document is kept before the retention purge removes it
        :param discovery_interval: Seconds between inbox discovery passes
        :param purge_interval: Seconds between retention purge passes
        :param system_user: Actor recorded for documents created by discovery
        """
        self.registry = registry
        self.mapper = mapper
        self.retention = retention
        self.discovery_interval = discovery_interval
        self.purge_interval = purge_interval
        self.system_user = system_user
        self._tasks: List[asyncio.Task] = []
        self._shadowed: Set[str] = set()

    # ------------------------------------------------------------------
    # Inbox discovery
    # ------------------------------------------------------------------

    async def discover_inbox(self) -> SweepReport:
        """
        Register untracked inbox PDFs and drop inbox documents whose file
        vanished from the inbox.
        """
        report = SweepReport(name="discovery")
        inbox_files = self.mapper.list_inbox()

        for filename in inbox_files:
            if self.registry.find_by_filename(filename) is not None:
                continue
            try:
                async with self.registry.lock_filename(filename):
                    existing = self.registry.find_by_filename(filename)
                    if existing is not None:
                        continue
                    if filename not in self.mapper.list_inbox():
                        continue
                    document = await self.registry.create(
                        filename,
                        DocumentOrigin.SCANNER,
                        user=self.system_user,
                        detail="discovered in inbox",
                    )
                    report.created.append(document.id)
            except ScanflowError as e:
                logger.error(f"Discovery failed for {filename}: {e}")
                report.failed.append(filename)

        self._warn_shadowed(inbox_files)

        present = set(self.mapper.list_inbox())
        for document in self.registry.list(status=DocumentStatus.INBOX):
            if document.filename in present:
                continue
            try:
                async with self.registry.lock(document.id) as current:
                    # Re-check: a transition may have moved it out of the inbox legitimately
                    if current.status != DocumentStatus.INBOX:
                        continue
                    if self.mapper.path_for(current).is_file():
                        continue
                    logger.warning(
                        f"Inbox file {current.filename} disappeared outside a transition, "
                        f"removing document {current.id}"
                    )
                    await self.registry.remove(current.id)
                    report.removed.append(current.id)
            except NotFoundError:
                continue
            except ScanflowError as e:
                logger.error(f"Inbox reconciliation failed for {document.id}: {e}")
                report.failed.append(document.id)

        if report.created or report.removed or report.failed:
            logger.info(
                f"Discovery pass: {len(report.created)} created, "
                f"{len(report.removed)} removed, {len(report.failed)} failed"
            )
        return report

    def _warn_shadowed(self, inbox_files: List[str]):
        """Log once per file that an inbox file matches a document tracked in another folder."""
        for filename in inbox_files:
            document = self.registry.find_by_filename(filename)
            if document is None or document.status == DocumentStatus.INBOX:
                self._shadowed.discard(filename)
                continue
            if filename not in self._shadowed:
                self._shadowed.add(filename)
                logger.warning(
                    f"Inbox file {filename} ignored: name is already tracked by document "
                    f"{document.id} ({document.status.value})"
                )

    # ------------------------------------------------------------------
    # Purges
    # ------------------------------------------------------------------

    async def _purge(self, name: str, older_than: Optional[timedelta]) -> SweepReport:
        report = SweepReport(name=name)
        cutoff = self.registry.now() - older_than if older_than is not None else None

        for document in self.registry.list(status=DocumentStatus.DELETED, oldest_first=True):
            if cutoff is not None and document.updated_at > cutoff:
                continue
            try:
                async with self.registry.lock(document.id) as current:
                    if current.status != DocumentStatus.DELETED:
                        continue
                    if cutoff is not None and current.updated_at > cutoff:
                        continue
                    await self.mapper.delete_file(current)
                    await self.mapper.delete_side_record(current)
                    await self.registry.remove(current.id)
                    report.removed.append(current.id)
            except NotFoundError:
                continue
            except ScanflowError as e:
                logger.error(f"Purge failed for {document.id}: {e}")
                report.failed.append(document.id)

        if report.removed or report.failed:
            logger.info(f"{name} pass: {len(report.removed)} purged, {len(report.failed)} failed")
        return report

    async def purge_expired(self) -> SweepReport:
        """Permanently remove deleted documents older than the retention window."""
        return await self._purge("retention_purge", self.retention)

    async def purge_now(self) -> SweepReport:
        """Permanently remove every deleted document regardless of age."""
        return await self._purge("immediate_purge", None)

    # ------------------------------------------------------------------
    # Startup reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> SweepReport:
        """
        Bring loaded records back in line with the folders.

        A record whose file sits in another managed folder adopts that
        folder's status; a record whose file is nowhere is dropped.
        """
        report = SweepReport(name="reconcile")

        for document in self.registry.list(oldest_first=True):
            try:
                async with self.registry.lock(document.id) as current:
                    expected = STATUS_FOLDERS[current.status]
                    folders = self.mapper.locate(current.filename)
                    if expected in folders:
                        continue
                    if not folders:
                        logger.warning(
                            f"File {current.filename} of document {current.id} not found in any folder, "
                            "removing record"
                        )
                        await self.registry.remove(current.id)
                        report.removed.append(current.id)
                        continue
                    adopted = FOLDER_STATUSES[folders[0]]
                    logger.warning(
                        f"Document {current.id} is {current.status.value} but its file is in "
                        f"{folders[0]}/, adopting status {adopted.value}"
                    )
                    await self.registry.update(
                        current.id,
                        action="reconciled",
                        detail=f"file found in {folders[0]}/",
                        status=adopted,
                    )
                    report.updated.append(current.id)
            except NotFoundError:
                continue
            except ScanflowError as e:
                logger.error(f"Reconciliation failed for {document.id}: {e}")
                report.failed.append(document.id)

        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_periodically(self, name: str, interval: float, job: Callable[[], Awaitable[SweepReport]]):
        logger.info(f"Sweeper '{name}' started (every {interval}s)")
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sweeper '{name}' pass failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    def start(self):
        """Schedule discovery and the retention purge on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._run_periodically("discovery", self.discovery_interval, self.discover_inbox),
                name="sweeper-discovery",
            ),
            asyncio.create_task(
                self._run_periodically("retention_purge", self.purge_interval, self.purge_expired),
                name="sweeper-retention-purge",
            ),
        ]

    async def stop(self):
        """Cancel the scheduled sweepers and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Sweepers stopped")
