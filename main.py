from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, StreamingResponse
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import FileTransferError, InvalidInput, NotFound
from app.models import ApiResponse, ArchiveResult, DownloadRequest, UploadedPart, UploadZipNotice
from app.services.bulk_download import BulkDownloadCoordinator, download_archive_name
from app.services.bulk_upload import BulkUploadCoordinator
from app.services.storage_manager import StorageManager
from app.utils.network import get_local_ip
from config import ServerConfig
from logger_config import setup_logger

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Settings may be injected on app.state before startup (tests, __main__)
    settings = getattr(app.state, "settings", None) or ServerConfig()

    # Create and initialize storage and the bulk coordinators
    storage_manager = StorageManager(Path(settings.upload_dir), chunk_size=settings.chunk_size)
    await storage_manager.initialize()
    app.state.settings = settings
    app.state.storage_manager = storage_manager
    app.state.bulk_upload = BulkUploadCoordinator(storage_manager, settings)
    app.state.bulk_download = BulkDownloadCoordinator(storage_manager, settings)
    yield


# Create FastAPI app with lifespan
app = FastAPI(title="LAN File Transfer Server", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


def envelope(success: bool, message: str, data: Any = None) -> dict:
    """Build the JSON body shared by every API response."""
    response = ApiResponse(success=success, message=message, data=data)
    return response.model_dump(exclude={"data"} if data is None else None)


@app.exception_handler(FileTransferError)
async def file_transfer_error_handler(request: Request, exc: FileTransferError):
    return JSONResponse(status_code=exc.status_code, content=envelope(False, exc.message))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Rejected request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content=envelope(False, "Invalid request"))


async def parse_form(request: Request) -> FormData:
    """Parse a multipart body, allowing as many parts as configured."""
    settings: ServerConfig = request.app.state.settings
    try:
        return await request.form(max_files=settings.max_form_files)
    except StarletteHTTPException as e:
        logger.warning(f"Failed to parse form: {e.detail}")
        raise InvalidInput("Failed to parse form")


@app.get("/", response_class=PlainTextResponse)
async def index():
    return "The local-ftp server is running successfully!"


@app.get("/api/files")
async def list_files(request: Request):
    """List all files in the upload directory with their metadata."""
    storage_manager: StorageManager = request.app.state.storage_manager
    files = await storage_manager.list_files()
    return envelope(
        True,
        "Files retrieved successfully",
        [f.model_dump(mode="json", by_alias=True) for f in files],
    )


@app.post("/api/upload")
async def upload_file(request: Request):
    """Upload a single file from the multipart field `file`."""
    storage_manager: StorageManager = request.app.state.storage_manager
    form = await parse_form(request)

    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        raise InvalidInput("Failed to get file")

    logger.info(f"Receiving upload request for {upload.filename!r}")
    filename = await storage_manager.save_stream(upload.filename or "", upload.file)

    logger.info(f"File uploaded: {filename} ({upload.size} bytes)")
    return envelope(True, "File uploaded successfully", {"filename": filename})


@app.post("/api/upload-multiple")
async def upload_multiple(request: Request):
    """Upload every part of the repeated multipart field `files`.

    Above the configured threshold the batch is stored as one zip archive.
    """
    coordinator: BulkUploadCoordinator = request.app.state.bulk_upload
    form = await parse_form(request)

    uploads = [f for f in form.getlist("files") if isinstance(f, UploadFile)]
    if not uploads:
        raise InvalidInput("No files uploaded")

    logger.info(f"Receiving bulk upload of {len(uploads)} files")
    parts = [
        UploadedPart(name=u.filename or "", content=u.file, size=u.size)
        for u in uploads
    ]
    result = await coordinator.handle_bulk_upload(parts)

    if isinstance(result, ArchiveResult):
        message = f"Files compressed into {result.filename}"
    else:
        message = f"Uploaded {result.uploaded}/{result.total} files successfully"
    return envelope(True, message, result.model_dump(by_alias=True))


@app.post("/api/upload-zip")
async def upload_zip_notice(notice: UploadZipNotice):
    """Acknowledge a client that bundled its files into a zip before upload.

    The notice is only logged; the response carries no data.
    """
    logger.warning(f"Zip upload requested for {notice.file_count} files: {notice.message}")
    return envelope(True, "Zip upload notification received")


@app.get("/api/download/")
@app.delete("/api/delete/")
async def missing_filename():
    raise InvalidInput("Filename is required")


@app.get("/api/download/{filename}")
async def download_file(filename: str, request: Request):
    """Stream a single stored file as an attachment."""
    storage_manager: StorageManager = request.app.state.storage_manager
    logger.info(f"Receiving download request for {filename!r}")

    if not await storage_manager.exists(filename):
        raise NotFound("File not found")

    path = storage_manager.get_file_path(filename)
    logger.info(f"File downloaded: {path.name}")
    return FileResponse(path, media_type="application/octet-stream", filename=path.name)


@app.post("/api/download-multiple")
async def download_multiple(payload: DownloadRequest, request: Request):
    """Stream the requested files as one zip archive. Missing files are skipped."""
    coordinator: BulkDownloadCoordinator = request.app.state.bulk_download

    if not payload.files:
        raise InvalidInput("No files specified")

    logger.info(f"Receiving bulk download request for {len(payload.files)} files")
    body = await coordinator.stream_bulk_download(payload.files)
    return StreamingResponse(
        body,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename={download_archive_name()}"},
    )


@app.delete("/api/delete/{filename}")
async def delete_file(filename: str, request: Request):
    """Delete a stored file."""
    storage_manager: StorageManager = request.app.state.storage_manager
    logger.info(f"Receiving delete request for {filename!r}")

    await storage_manager.delete_file(filename)

    logger.info(f"File deleted: {filename}")
    return envelope(True, "File deleted successfully")


if __name__ == "__main__":
    settings = ServerConfig()
    app.state.settings = settings
    local_ip = get_local_ip()
    logger.info("===========================================")
    logger.info("  Local FTP Server Started")
    logger.info("===========================================")
    logger.info(f"  Local Access:   http://127.0.0.1:{settings.port}")
    logger.info(f"  Network Access: http://{local_ip}:{settings.port}")
    logger.info(f"  Upload Dir:     {settings.upload_dir}")
    logger.info(f"  Max Files:      {settings.threshold} (auto-zip if exceeded)")
    logger.info("===========================================")
    uvicorn.run(app, host=settings.host, port=settings.port)
