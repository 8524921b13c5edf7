import posixpath
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List

import aiofiles
import aiofiles.os
from starlette.concurrency import run_in_threadpool

import config
from app.errors import InvalidInput, IOFailure, NotFound
from app.models import StoredFile
from logger_config import setup_logger

logger = setup_logger()


def sanitize_filename(name: str) -> str:
    """Reduce a client-supplied name to a bare basename.

    Raises InvalidInput when nothing usable is left.
    """
    base = posixpath.basename((name or "").replace("\\", "/"))
    if base in ("", ".", ".."):
        raise InvalidInput(f"Invalid filename: {name!r}")
    return base


class StorageManager:
    def __init__(self, upload_dir: Path, chunk_size: int = config.CHUNK_SIZE):
        self.upload_dir = Path(upload_dir)
        self.chunk_size = chunk_size

    async def initialize(self):
        """Create the upload directory if it doesn't exist."""
        self.upload_dir.mkdir(exist_ok=True, parents=True)
        logger.info(f"Storage directory ready: {self.upload_dir.resolve()}")

    def get_file_path(self, name: str) -> Path:
        """Get the path a file is stored at, based on its sanitized name."""
        return self.upload_dir / sanitize_filename(name)

    async def exists(self, name: str) -> bool:
        try:
            path = self.get_file_path(name)
        except InvalidInput:
            return False
        return await aiofiles.os.path.isfile(path)

    async def list_files(self) -> List[StoredFile]:
        """List every entry of the upload directory with its metadata."""
        try:
            names = await aiofiles.os.listdir(self.upload_dir)
        except OSError as e:
            logger.error(f"Failed to read directory {self.upload_dir}: {e}", exc_info=True)
            raise IOFailure("Failed to read directory")

        files = []
        for name in sorted(names):
            path = self.upload_dir / name
            try:
                stat = await aiofiles.os.stat(path)
                is_dir = await aiofiles.os.path.isdir(path)
            except OSError:
                # Removed between listdir and stat
                continue
            files.append(StoredFile(
                name=name,
                size=stat.st_size,
                modified_time=datetime.fromtimestamp(stat.st_mtime).astimezone(),
                is_dir=is_dir,
            ))
        return files

    async def save_stream(self, name: str, source: BinaryIO) -> str:
        """Copy a binary stream into the upload directory.

        Returns the sanitized name the file was stored under. The destination
        is overwritten if it already exists.
        """
        filename = sanitize_filename(name)
        path = self.upload_dir / filename
        size = 0
        try:
            async with aiofiles.open(path, 'wb') as f:
                # Source reads block (spooled temp files), keep them off the loop
                while chunk := await run_in_threadpool(source.read, self.chunk_size):
                    size += len(chunk)
                    await f.write(chunk)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to store {filename}: {e}")
            raise IOFailure(f"Failed to save file {filename}")

        logger.debug(f"Stored {filename} ({size} bytes)")
        return filename

    async def delete_file(self, name: str):
        """Delete a file. Raises NotFound if it doesn't exist."""
        path = self.get_file_path(name)
        if not await aiofiles.os.path.isfile(path):
            raise NotFound("File not found")
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFound("File not found")
        except OSError as e:
            logger.error(f"Failed to delete {path.name}: {e}", exc_info=True)
            raise IOFailure("Failed to delete file")

    def open_file(self, name: str) -> BinaryIO:
        """Open a stored file for blocking reads (used from worker threads)."""
        return open(self.get_file_path(name), 'rb')
