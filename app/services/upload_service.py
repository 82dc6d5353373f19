import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import (
    ChunkNotFoundError,
    IncompleteUploadError,
    InvalidUploadRequestError,
    StorageError,
    UploadNotFoundError,
)
from app.core.filenames import sanitize_filename
from app.core.session import UploadProgress, UploadRegistry, UploadSession
from app.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitResult:
    upload_id: str
    chunk_size: int
    total_chunks: int


@dataclass(frozen=True)
class ChunkResult:
    chunk_number: int
    received_chunks: int
    total_chunks: int


@dataclass(frozen=True)
class CompleteResult:
    filename: str
    size: int


def _require_complete(session: UploadSession) -> None:
    if not session.is_complete():
        raise IncompleteUploadError(len(session.received_chunks), session.total_chunks)


class UploadService:
    """
    Runs the chunked upload protocol: init, then any number of chunk
    ingests (possibly concurrent), then a single complete.
    """

    def __init__(
        self,
        storage: BaseStorage,
        files_dir: str,
        registry: Optional[UploadRegistry] = None,
        max_upload_size: Optional[int] = None,
    ):
        self.storage = storage
        self.files_dir = str(files_dir)
        self.registry = registry if registry is not None else UploadRegistry()
        self.max_upload_size = max_upload_size

    async def init(self, filename: str, total_size: int, chunk_size: int) -> InitResult:
        if chunk_size <= 0:
            logger.warning(f"Rejected chunked upload init with chunk_size={chunk_size}")
            raise InvalidUploadRequestError("chunk_size must be greater than 0")
        if total_size < 0:
            raise InvalidUploadRequestError("total_size must not be negative")
        if self.max_upload_size is not None and total_size > self.max_upload_size:
            logger.warning(f"Rejected chunked upload of {total_size} bytes (limit {self.max_upload_size})")
            raise InvalidUploadRequestError(f"total_size exceeds maximum upload size of {self.max_upload_size} bytes")

        upload_id = str(uuid.uuid4())
        sanitized = sanitize_filename(filename)
        total_chunks = (total_size + chunk_size - 1) // chunk_size
        logger.debug(f"Calculated {total_chunks} chunks for size {total_size} (chunk size {chunk_size})")

        self.registry.create(UploadSession(
            upload_id=upload_id,
            filename=sanitized,
            total_size=total_size,
            chunk_size=chunk_size,
            total_chunks=total_chunks,
        ))
        try:
            await self.storage.prepare(upload_id)
        except StorageError:
            self.registry.remove(upload_id)
            logger.error(f"Failed to prepare staging area for upload {upload_id}")
            raise

        logger.info(f"Initialized chunked upload: {sanitized} (ID: {upload_id})")
        return InitResult(upload_id=upload_id, chunk_size=chunk_size, total_chunks=total_chunks)

    async def ingest(self, upload_id: str, chunk_index: int, data: bytes) -> ChunkResult:
        if chunk_index < 0:
            raise InvalidUploadRequestError("chunk index must not be negative")
        if upload_id not in self.registry:
            logger.warning(f"Upload ID not found: {upload_id}")
            raise UploadNotFoundError(upload_id)

        try:
            await self.storage.write_chunk(upload_id, chunk_index, data)
        except StorageError:
            if upload_id not in self.registry:
                # completed or aborted while the chunk was being written
                logger.warning(f"Upload {upload_id} went away while writing chunk {chunk_index}")
                raise UploadNotFoundError(upload_id)
            logger.error(f"Failed to store chunk {chunk_index} for upload {upload_id}")
            raise

        try:
            with self.registry.mutate(upload_id) as session:
                session.mark_received(chunk_index)
                received = len(session.received_chunks)
                total = session.total_chunks
        except UploadNotFoundError:
            logger.warning(f"Upload {upload_id} completed before chunk {chunk_index} was recorded")
            raise

        logger.debug(f"Received chunk {chunk_index}/{total} for upload {upload_id}")
        return ChunkResult(chunk_number=chunk_index, received_chunks=received, total_chunks=total)

    async def complete(self, upload_id: str) -> CompleteResult:
        try:
            session = self.registry.remove(upload_id, precondition=_require_complete)
        except UploadNotFoundError:
            logger.warning(f"Upload ID not found for completion: {upload_id}")
            raise
        except IncompleteUploadError as e:
            logger.warning(f"Incomplete upload {upload_id}: {e.received}/{e.total} chunks")
            raise

        final_path = os.path.join(self.files_dir, session.filename)
        logger.debug(f"Assembling chunks into: {final_path}")
        try:
            size = await self.storage.assemble(upload_id, session.total_chunks, final_path)
        except ChunkNotFoundError as e:
            logger.error(f"Registry and staging area disagree for upload {upload_id}: {e}")
            with session.lock:
                session.received_chunks.discard(e.chunk_index)
            self._reopen(session)
            raise StorageError(f"Failed to read chunk {e.chunk_index}") from e
        except StorageError as e:
            logger.error(f"Failed to assemble upload {upload_id}: {e}")
            self._reopen(session)
            raise

        result = await self.storage.teardown(upload_id)
        if not result.get("success", False):
            logger.error(f"Failed to clean up chunks for upload {upload_id}: {result.get('error')}")

        logger.info(f"Completed chunked upload: {session.filename} ({size} bytes)")
        return CompleteResult(filename=session.filename, size=size)

    def _reopen(self, session: UploadSession) -> None:
        # the staging area is still there, so the upload can be resumed or aborted
        self.registry.restore(session)
        logger.info(f"Upload {session.upload_id} reopened after failed assembly")

    async def abort(self, upload_id: str) -> int:
        try:
            self.registry.remove(upload_id)
        except UploadNotFoundError:
            logger.warning(f"Upload ID not found for abort: {upload_id}")
            raise
        result = await self.storage.teardown(upload_id)
        if not result.get("success", False):
            logger.error(f"Failed to clean up chunks for aborted upload {upload_id}: {result.get('error')}")
        logger.info(f"Aborted chunked upload {upload_id}")
        return result.get("files_removed", 0)

    def status(self, upload_id: str) -> UploadProgress:
        try:
            return self.registry.get(upload_id)
        except UploadNotFoundError:
            logger.warning(f"Upload ID not found for status: {upload_id}")
            raise
