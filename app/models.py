from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Opens a readable binary stream; may raise OSError
ByteSource = Callable[[], BinaryIO]
ArchiveEntry = Tuple[str, ByteSource]


@dataclass
class UploadedPart:
    """One file part of a multipart upload. Lives for a single request."""
    name: str
    content: BinaryIO
    size: Optional[int] = None

    def open(self) -> BinaryIO:
        self.content.seek(0)
        return self.content


class StoredFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    size: int
    modified_time: datetime = Field(alias="modifiedTime")
    is_dir: bool = Field(alias="isDir")


class BulkResult(BaseModel):
    uploaded: int
    total: int
    failed: List[str] = []


class ArchiveResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    file_count: int = Field(alias="fileCount")


class ArchiveOutcome(BaseModel):
    written: List[str] = []
    skipped: List[str] = []


class ApiResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None


class DownloadRequest(BaseModel):
    files: List[str]


class UploadZipNotice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_count: int = Field(alias="fileCount")
    message: str = ""
