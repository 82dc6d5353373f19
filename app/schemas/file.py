from typing import List, Optional

from pydantic import BaseModel


class FileInfo(BaseModel):
    name: str
    size: int
    modified: str
    is_dir: bool


class FileListResponse(BaseModel):
    files: List[FileInfo]
    total: int


class DeleteResponse(BaseModel):
    success: bool = True
    filename: str


class BatchDeleteRequest(BaseModel):
    filenames: List[str]


class BatchDeleteResult(BaseModel):
    filename: str
    success: bool
    error: Optional[str] = None


class BatchDeleteResponse(BaseModel):
    total: int
    successful: int
    failed: int
    results: List[BatchDeleteResult]


class StatsResponse(BaseModel):
    total_files: int
    total_size: int
    files_dir: str
