"""Streaming ZIP archive writer.

Entries are copied chunk by chunk, so memory stays bounded by one chunk
regardless of how large or numerous the sources are. Sources that fail to
open or read are skipped; whatever reaches the sink is always a valid
archive, possibly empty.
"""
import zipfile
from contextlib import closing
from typing import BinaryIO, Callable, Iterable, Iterator, Optional

import config
from app.errors import InvalidInput
from app.models import ArchiveEntry, ArchiveOutcome, ByteSource
from app.services.storage_manager import sanitize_filename
from logger_config import setup_logger

logger = setup_logger()


class _SourceReadError(Exception):
    pass


class _ChunkSink:
    """Write-only sink that buffers encoded bytes until they are drained.

    It has no tell()/seek(), so zipfile treats it as an unseekable stream
    and writes data descriptors after each member.
    """

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer += data
        return len(data)

    def flush(self):
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def _is_seekable(sink) -> bool:
    seekable = getattr(sink, "seekable", None)
    return bool(seekable and seekable())


class ArchiveWriter:
    def __init__(
        self,
        sink: BinaryIO,
        chunk_size: int = config.CHUNK_SIZE,
        compression: int = zipfile.ZIP_DEFLATED,
    ):
        self.chunk_size = chunk_size
        self.outcome = ArchiveOutcome()
        self._sink = sink
        self._seekable = _is_seekable(sink)
        self._zip = zipfile.ZipFile(sink, mode="w", compression=compression)
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def close(self):
        """Write the central directory. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._zip.close()

    def abort(self):
        """Give up on the archive without writing anything more to the sink.

        The sink is broken or the request is gone. Detaching the encoder's
        file object keeps ZipFile.close() (also run on garbage collection)
        from touching the sink again.
        """
        if self._closed:
            return
        self._closed = True
        self._zip.fp = None

    def add(self, name: str, source: ByteSource) -> bool:
        """Add one entry. Returns False if the entry was skipped."""
        written = len(self.outcome.written)
        for _ in self.iter_add(name, source):
            pass
        return len(self.outcome.written) > written

    def iter_add(self, name: str, source: ByteSource) -> Iterator[None]:
        """Add one entry, yielding after every chunk copied into it."""
        try:
            arcname = sanitize_filename(name)
        except InvalidInput:
            logger.warning(f"Skipping archive entry with invalid name: {name!r}")
            self.outcome.skipped.append(name)
            return

        try:
            stream = source()
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping {arcname}: cannot open source ({e})")
            self.outcome.skipped.append(name)
            return

        mark = len(self._zip.filelist)
        with stream:
            try:
                with self._zip.open(arcname, mode="w", force_zip64=True) as member:
                    while True:
                        try:
                            chunk = stream.read(self.chunk_size)
                        except (OSError, ValueError) as e:
                            raise _SourceReadError(str(e)) from e
                        if not chunk:
                            break
                        member.write(chunk)
                        yield
            except _SourceReadError as e:
                self._discard_members(mark)
                logger.warning(f"Skipping {arcname}: read failed mid-copy ({e})")
                self.outcome.skipped.append(name)
                return

        self.outcome.written.append(arcname)

    def _discard_members(self, mark: int):
        """Drop members registered after `mark` from the central directory.

        On seekable sinks the member bytes are truncated as well; on streams
        they are already sent, but readers go by the central directory.
        """
        removed = self._zip.filelist[mark:]
        if not removed:
            return
        del self._zip.filelist[mark:]
        for info in removed:
            if self._zip.NameToInfo.get(info.filename) is info:
                del self._zip.NameToInfo[info.filename]

        if self._seekable:
            offset = removed[0].header_offset
            self._sink.seek(offset)
            self._sink.truncate()
            self._zip.start_dir = offset


def write_archive(
    entries: Iterable[ArchiveEntry],
    sink: BinaryIO,
    chunk_size: int = config.CHUNK_SIZE,
) -> ArchiveOutcome:
    """Write every readable entry into a ZIP archive on `sink`.

    The archive is finalized exactly once, even when no entry succeeded.
    """
    with ArchiveWriter(sink, chunk_size=chunk_size) as writer:
        for name, source in entries:
            writer.add(name, source)
    return writer.outcome


def iter_archive(
    entries: Iterable[ArchiveEntry],
    chunk_size: int = config.CHUNK_SIZE,
    on_complete: Optional[Callable[[ArchiveOutcome], None]] = None,
) -> Iterator[bytes]:
    """Generate a ZIP archive as a stream of byte chunks.

    Nothing is buffered beyond the bytes produced by one chunk copy. Closing
    the generator early (client went away) releases any open source without
    finalizing the archive.
    """
    sink = _ChunkSink()
    writer = ArchiveWriter(sink, chunk_size=chunk_size)

    try:
        for name, source in entries:
            with closing(writer.iter_add(name, source)) as steps:
                for _ in steps:
                    data = sink.drain()
                    if data:
                        yield data
            data = sink.drain()
            if data:
                yield data
    except BaseException:
        # Includes GeneratorExit when the client disconnects
        writer.abort()
        raise

    writer.close()
    yield sink.drain()

    if on_complete is not None:
        on_complete(writer.outcome)
