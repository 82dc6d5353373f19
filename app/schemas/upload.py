from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class InitUploadRequest(BaseModel):
    filename: str
    total_size: int = Field(..., ge=0)
    chunk_size: int = Field(..., ge=0)


class InitUploadResponse(BaseModel):
    upload_id: str
    chunk_size: int
    total_chunks: int


class ChunkUploadResponse(BaseModel):
    success: bool = True
    chunk_number: int
    received_chunks: int
    total_chunks: int


class CompleteUploadRequest(BaseModel):
    upload_id: str


class CompleteUploadResponse(BaseModel):
    success: bool = True
    filename: str
    size: int


class UploadStatusResponse(BaseModel):
    upload_id: str
    filename: str
    total_size: int
    chunk_size: int
    total_chunks: int
    received_chunks: List[int]
    missing_chunks: List[int]
    created_at: datetime


class AbortUploadResponse(BaseModel):
    success: bool = True
    upload_id: str
    chunks_removed: int


class UploadResponse(BaseModel):
    success: bool = True
    filename: str
    size: int
