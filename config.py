"""Configuration settings for the LAN file transfer server."""
import os

from pydantic import BaseModel, ConfigDict, field_validator

# Directory paths
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Network
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "6061"))

# Bulk upload switches to a single archive above this many files
BULK_ARCHIVE_THRESHOLD = int(os.getenv("BULK_ARCHIVE_THRESHOLD", "500"))

# Multipart parsing limit (Starlette defaults to 1000)
MAX_FORM_FILES = int(os.getenv("MAX_FORM_FILES", "10000"))

# Copy buffer
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", str(64 * 1024)))  # 64KB


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    upload_dir: str = UPLOAD_DIR
    host: str = HOST
    port: int = PORT
    threshold: int = BULK_ARCHIVE_THRESHOLD
    max_form_files: int = MAX_FORM_FILES
    chunk_size: int = CHUNK_SIZE

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v):
        if v < 1:
            raise ValueError("threshold must be at least 1")
        return v

    @field_validator("chunk_size", "max_form_files")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("value must be positive")
        return v
