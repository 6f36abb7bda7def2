"""
HTTP interface of bucketview: listings served from the directory cache, and
pass-through file operations on the bucket.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bucketview.config import Settings, get_settings
from bucketview.services import BackendError, DirectoryService, NotFound
from bucketview.utils.files import FileChecker, normalize_prefix

router = APIRouter()


def get_service(request: Request) -> DirectoryService:
    return request.app.state.directory_service


def get_file_checker(request: Request) -> FileChecker:
    return request.app.state.file_checker


def _failure(error: str, exc: Exception, status_code: int = 500) -> JSONResponse:
    logging.error(f"{error}: {exc}")
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, "message": str(exc)})


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": error})


@router.get("/files")
async def list_files(prefix: str = "", refresh: bool = False, service: DirectoryService = Depends(get_service)):
    """List the folders and files directly under a prefix."""
    prefix = normalize_prefix(prefix)
    try:
        files = await service.list_directory(prefix, force_refresh=refresh)
    except BackendError as e:
        return _failure("Failed to list files", e)
    service.notify_viewed(prefix)
    return {
        "success": True,
        "prefix": prefix,
        "files": [entry.model_dump(mode="json", by_alias=True) for entry in files],
    }


@router.get("/files/metadata")
async def file_metadata(key: str = "", service: DirectoryService = Depends(get_service)):
    if not key:
        return _bad_request("File key is required")
    try:
        metadata = await service.get_metadata(key)
    except NotFound as e:
        return _failure("File not found", e, status_code=404)
    except BackendError as e:
        return _failure("Failed to get file metadata", e)
    return {"success": True, "key": key, "metadata": metadata.model_dump(by_alias=True)}


@router.get("/files/download")
async def download_file(key: str = "", service: DirectoryService = Depends(get_service)):
    if not key:
        return _bad_request("File key is required")
    try:
        content, content_type = await service.download(key)
    except NotFound as e:
        return _failure("File not found", e, status_code=404)
    except BackendError as e:
        return _failure("Failed to download file", e)
    return Response(content=content, media_type=content_type)


@router.post("/files/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    path: str = Form(""),
    service: DirectoryService = Depends(get_service),
    checker: FileChecker = Depends(get_file_checker),
):
    """Upload a file to the folder given as path, the root by default."""
    if file is None:
        return _bad_request("No file uploaded")
    if not file.filename:
        return _bad_request("File name is required")
    await checker.check_size([file])
    try:
        key = await service.upload(path, file.filename, await file.read(), file.content_type)
    except BackendError as e:
        return _failure("Failed to upload file", e)
    return {"success": True, "message": "File uploaded successfully", "key": key}


@router.put("/files/replace")
async def replace_file(
    file: Optional[UploadFile] = File(None),
    key: str = Form(""),
    service: DirectoryService = Depends(get_service),
    checker: FileChecker = Depends(get_file_checker),
):
    if not key:
        return _bad_request("File key is required")
    if file is None:
        return _bad_request("No file uploaded")
    await checker.check_size([file])
    try:
        await service.replace(key, await file.read(), file.content_type)
    except NotFound as e:
        return _failure("File not found", e, status_code=404)
    except BackendError as e:
        return _failure("Failed to replace file", e)
    return {"success": True, "message": "File replaced successfully", "key": key}


@router.delete("/files")
async def delete_file(key: str = "", service: DirectoryService = Depends(get_service)):
    if not key:
        return _bad_request("File key is required")
    try:
        await service.delete(key)
    except BackendError as e:
        return _failure("Failed to delete file", e)
    return {"success": True, "message": "File deleted successfully", "key": key}


@router.get("/cache/stats")
async def cache_stats(service: DirectoryService = Depends(get_service)):
    return {"success": True, "stats": service.cache_stats().model_dump(by_alias=True)}


@router.post("/cache/invalidate")
async def invalidate_cache(prefix: Optional[str] = None, service: DirectoryService = Depends(get_service)):
    """Drop the cached listing of one prefix, or the whole cache when no prefix is given."""
    service.invalidate(None if prefix is None else normalize_prefix(prefix))
    return {"success": True, "prefix": prefix}


@asynccontextmanager
async def lifespan(app: FastAPI):
    service: DirectoryService = app.state.directory_service
    await service.start()
    try:
        yield
    finally:
        await service.shutdown()


def create_app(service: Optional[DirectoryService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around a directory service, made from the settings if not given."""
    settings = settings or get_settings()
    app = FastAPI(title="bucketview", lifespan=lifespan)
    app.state.directory_service = service or DirectoryService.from_settings(settings)
    app.state.file_checker = FileChecker(settings.max_upload_size)
    app.include_router(router, prefix="/api")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
