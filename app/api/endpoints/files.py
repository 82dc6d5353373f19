import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_file_service
from app.schemas.file import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    DeleteResponse,
    FileListResponse,
    StatsResponse,
)
from app.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "chunked-file-server-admin"


@router.get("/files", response_model=FileListResponse)
async def list_files(file_service: FileService = Depends(get_file_service)):
    try:
        files = await file_service.list_files()
    except OSError as e:
        logger.error(f"Failed to read directory {file_service.files_dir}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read directory: {e}")
    return FileListResponse(files=files, total=len(files))


@router.delete("/files/{filename}", response_model=DeleteResponse)
async def delete_file(filename: str, file_service: FileService = Depends(get_file_service)):
    try:
        sanitized = await file_service.delete_file(filename)
    except OSError as e:
        logger.error(f"Failed to delete file {filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to delete file: {e}")
    return DeleteResponse(filename=sanitized)


@router.post("/batch-delete", response_model=BatchDeleteResponse)
async def batch_delete_files(req: BatchDeleteRequest, file_service: FileService = Depends(get_file_service)):
    results = await file_service.batch_delete(req.filenames)
    successful = sum(1 for r in results if r["success"])
    return BatchDeleteResponse(
        total=len(results),
        successful=successful,
        failed=len(results) - successful,
        results=results,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(file_service: FileService = Depends(get_file_service)):
    try:
        stats = await file_service.stats()
    except OSError as e:
        logger.error(f"Failed to read directory for stats: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read directory: {e}")
    return StatsResponse(**stats)


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
