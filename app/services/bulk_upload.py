from datetime import datetime
from typing import Optional, Sequence, Union

import aiofiles.os
from starlette.concurrency import run_in_threadpool

from app.errors import FileTransferError, IOFailure
from app.models import ArchiveResult, BulkResult, UploadedPart
from app.services.archive_writer import write_archive
from app.services.storage_manager import StorageManager
from config import ServerConfig
from logger_config import setup_logger

logger = setup_logger()


def bulk_archive_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"bulk_{now.strftime('%Y%m%d_%H%M%S')}.zip"


class BulkUploadCoordinator:
    """Stores a batch of uploaded parts, individually or as one archive.

    The mode is picked once per request: above `threshold` parts the whole
    batch goes into a single `bulk_<timestamp>.zip` in storage.
    """

    def __init__(self, storage: StorageManager, settings: ServerConfig):
        self.storage = storage
        self.settings = settings

    async def handle_bulk_upload(
        self,
        parts: Sequence[UploadedPart],
        threshold: Optional[int] = None,
    ) -> Union[BulkResult, ArchiveResult]:
        if threshold is None:
            threshold = self.settings.threshold

        if len(parts) > threshold:
            logger.warning(
                f"More than {threshold} files detected ({len(parts)}), creating zip archive..."
            )
            return await self._store_as_archive(parts)
        return await self._store_individually(parts)

    async def _store_individually(self, parts: Sequence[UploadedPart]) -> BulkResult:
        uploaded = 0
        failed = []

        for part in parts:
            try:
                filename = await self.storage.save_stream(part.name, part.open())
            except (FileTransferError, OSError, ValueError) as e:
                logger.warning(f"Upload failed for {part.name!r}: {e}")
                failed.append(part.name)
                continue

            uploaded += 1
            logger.info(f"Uploaded: {filename} ({part.size} bytes)")

        return BulkResult(uploaded=uploaded, total=len(parts), failed=failed)

    async def _store_as_archive(self, parts: Sequence[UploadedPart]) -> ArchiveResult:
        archive_name = bulk_archive_name()
        archive_path = self.storage.get_file_path(archive_name)
        entries = [(part.name, part.open) for part in parts]

        def build():
            with open(archive_path, 'wb') as sink:
                return write_archive(entries, sink, chunk_size=self.settings.chunk_size)

        try:
            outcome = await run_in_threadpool(build)
        except OSError as e:
            logger.error(f"Failed to create zip archive {archive_name}: {e}", exc_info=True)
            # Don't leave a truncated archive in the shared directory
            if await aiofiles.os.path.exists(archive_path):
                await aiofiles.os.unlink(archive_path)
            raise IOFailure("Failed to create zip archive")

        if outcome.skipped:
            logger.warning(f"{len(outcome.skipped)} files could not be added to {archive_name}")
        logger.info(f"Zip archive created: {archive_name} ({len(outcome.written)} files)")
        return ArchiveResult(filename=archive_name, file_count=len(parts))
