import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from starlette.datastructures import UploadFile

from app.api.deps import get_file_service, get_upload_service
from app.core.exceptions import UploadNotFoundError
from app.schemas.upload import (
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadResponse,
    UploadStatusResponse,
)
from app.services.file_service import FileService
from app.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _first_form_file(request: Request) -> Optional[UploadFile]:
    form = await request.form()
    for value in form.values():
        if isinstance(value, UploadFile):
            return value
    return None


async def _read_chunk_payload(request: Request) -> bytes:
    """Chunk bytes come either as the raw body or as the first file of a multipart form."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        upload = await _first_form_file(request)
        if upload is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No chunk data provided")
        try:
            return await upload.read()
        finally:
            await upload.close()
    return await request.body()


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    file_service: FileService = Depends(get_file_service),
):
    """
    POST /admin/upload - Single request multipart upload
    """
    upload = await _first_form_file(request)
    if upload is None:
        logger.warning("Upload request contained no file field")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    if not upload.filename:
        logger.warning("Upload request missing filename")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    try:
        data = await upload.read()
    finally:
        await upload.close()

    try:
        filename, size = await file_service.save_file(upload.filename, data)
    except OSError as e:
        logger.error(f"Failed to write file {upload.filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to write file: {e}")
    return UploadResponse(filename=filename, size=size)


@router.post("/upload/chunk/init", response_model=InitUploadResponse)
async def init_chunked_upload(
    req: InitUploadRequest,
    upload_service: UploadService = Depends(get_upload_service),
):
    result = await upload_service.init(req.filename, req.total_size, req.chunk_size)
    return InitUploadResponse(
        upload_id=result.upload_id,
        chunk_size=result.chunk_size,
        total_chunks=result.total_chunks,
    )


@router.post("/upload/chunk/complete", response_model=CompleteUploadResponse)
async def complete_chunked_upload(
    req: CompleteUploadRequest,
    upload_service: UploadService = Depends(get_upload_service),
):
    result = await upload_service.complete(req.upload_id)
    return CompleteUploadResponse(filename=result.filename, size=result.size)


@router.post("/upload/chunk/{upload_id}/{chunk_number}", response_model=ChunkUploadResponse)
async def upload_chunk(
    request: Request,
    upload_id: str,
    chunk_number: int = Path(..., ge=0),
    upload_service: UploadService = Depends(get_upload_service),
):
    if upload_id not in upload_service.registry:
        logger.warning(f"Upload ID not found: {upload_id}")
        raise UploadNotFoundError(upload_id)

    chunk_data = await _read_chunk_payload(request)
    if not chunk_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty chunk received")

    result = await upload_service.ingest(upload_id, chunk_number, chunk_data)
    return ChunkUploadResponse(
        chunk_number=result.chunk_number,
        received_chunks=result.received_chunks,
        total_chunks=result.total_chunks,
    )


@router.get("/upload/chunk/{upload_id}", response_model=UploadStatusResponse)
async def chunked_upload_status(
    upload_id: str,
    upload_service: UploadService = Depends(get_upload_service),
):
    progress = upload_service.status(upload_id)
    return UploadStatusResponse(
        upload_id=progress.upload_id,
        filename=progress.filename,
        total_size=progress.total_size,
        chunk_size=progress.chunk_size,
        total_chunks=progress.total_chunks,
        received_chunks=progress.received,
        missing_chunks=progress.missing,
        created_at=progress.created_at,
    )


@router.delete("/upload/chunk/{upload_id}", response_model=AbortUploadResponse)
async def abort_chunked_upload(
    upload_id: str,
    upload_service: UploadService = Depends(get_upload_service),
):
    """
    DELETE /admin/upload/chunk/{upload_id} - Drop an abandoned upload and its staged chunks
    """
    removed = await upload_service.abort(upload_id)
    return AbortUploadResponse(upload_id=upload_id, chunks_removed=removed)
