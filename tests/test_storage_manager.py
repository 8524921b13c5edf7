import io
import os
import sys

import pytest
import pytest_asyncio

# Add the parent directory to sys.path so we can import the app modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.errors import InvalidInput, NotFound
from app.services.storage_manager import StorageManager, sanitize_filename


@pytest_asyncio.fixture
async def storage(tmp_path):
    manager = StorageManager(tmp_path / "nested" / "uploads", chunk_size=4)
    await manager.initialize()
    return manager


@pytest.mark.parametrize("raw, expected", [
    ("report.pdf", "report.pdf"),
    ("../../etc/passwd", "passwd"),
    ("/absolute/path/file.txt", "file.txt"),
    ("C:\\Users\\me\\photo.jpg", "photo.jpg"),
    ("..hidden", "..hidden"),
])
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


@pytest.mark.parametrize("raw", ["", ".", "..", "dir/", "a/.."])
def test_sanitize_filename_rejects_unusable_names(raw):
    with pytest.raises(InvalidInput):
        sanitize_filename(raw)


@pytest.mark.asyncio
async def test_initialize_creates_directory(storage):
    assert storage.upload_dir.is_dir()


@pytest.mark.asyncio
async def test_save_stream_and_list(storage):
    content = b"some bytes spanning several chunks"

    filename = await storage.save_stream("notes.txt", io.BytesIO(content))
    (storage.upload_dir / "folder").mkdir()

    assert filename == "notes.txt"
    assert (storage.upload_dir / "notes.txt").read_bytes() == content

    files = await storage.list_files()
    assert [f.name for f in files] == ["folder", "notes.txt"]
    notes = files[1]
    assert notes.size == len(content)
    assert notes.is_dir is False
    assert files[0].is_dir is True
    assert set(notes.model_dump(by_alias=True)) == {"name", "size", "modifiedTime", "isDir"}


@pytest.mark.asyncio
async def test_save_stream_overwrites_existing_file(storage):
    await storage.save_stream("same.txt", io.BytesIO(b"first version"))
    await storage.save_stream("same.txt", io.BytesIO(b"second"))

    assert (storage.upload_dir / "same.txt").read_bytes() == b"second"


@pytest.mark.asyncio
async def test_exists(storage):
    await storage.save_stream("here.txt", io.BytesIO(b"x"))

    assert await storage.exists("here.txt")
    assert not await storage.exists("absent.txt")
    assert not await storage.exists("..")


@pytest.mark.asyncio
async def test_delete_twice(storage):
    """Deleting succeeds once, then reports NotFound."""
    await storage.save_stream("doomed.txt", io.BytesIO(b"bye"))

    await storage.delete_file("doomed.txt")
    assert not (storage.upload_dir / "doomed.txt").exists()

    with pytest.raises(NotFound):
        await storage.delete_file("doomed.txt")


@pytest.mark.asyncio
async def test_open_file(storage):
    await storage.save_stream("read-me.txt", io.BytesIO(b"content"))

    with storage.open_file("read-me.txt") as f:
        assert f.read() == b"content"
