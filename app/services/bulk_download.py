from datetime import datetime
from functools import partial
from typing import BinaryIO, Iterator, List, Optional, Sequence

from starlette.concurrency import run_in_threadpool

from app.models import ArchiveEntry, ArchiveOutcome
from app.services.archive_writer import iter_archive, write_archive
from app.services.storage_manager import StorageManager
from config import ServerConfig
from logger_config import setup_logger

logger = setup_logger()


def download_archive_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"download_{now.strftime('%Y%m%d_%H%M%S')}.zip"


class BulkDownloadCoordinator:
    """Packs requested files into a ZIP written straight to the caller's sink."""

    def __init__(self, storage: StorageManager, settings: ServerConfig):
        self.storage = storage
        self.settings = settings

    async def collect_entries(self, names: Sequence[str]) -> List[ArchiveEntry]:
        """Map requested names to archive entries, skipping missing files.

        Files are opened lazily by the archive writer; one that disappears
        after this check is skipped there.
        """
        entries = []
        for name in names:
            if not await self.storage.exists(name):
                logger.warning(f"Requested file not found, skipping: {name!r}")
                continue
            entries.append((name, partial(self.storage.open_file, name)))
        return entries

    async def handle_bulk_download(self, names: Sequence[str], sink: BinaryIO) -> ArchiveOutcome:
        entries = await self.collect_entries(names)
        outcome = await run_in_threadpool(
            write_archive, entries, sink, chunk_size=self.settings.chunk_size
        )
        self._log_outcome(names, outcome)
        return outcome

    async def stream_bulk_download(self, names: Sequence[str]) -> Iterator[bytes]:
        """Return a byte iterator suitable for a streaming response body."""
        entries = await self.collect_entries(names)
        return iter_archive(
            entries,
            chunk_size=self.settings.chunk_size,
            on_complete=partial(self._log_outcome, names),
        )

    def _log_outcome(self, names: Sequence[str], outcome: ArchiveOutcome):
        logger.info(
            f"Downloaded {len(outcome.written)}/{len(names)} files as zip"
        )
