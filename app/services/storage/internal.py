import os
import shutil
import uuid
import asyncio
import logging
import concurrent.futures
from typing import Optional

from .base import BaseStorage
from app.core.exceptions import ChunkNotFoundError, StorageError

logger = logging.getLogger(__name__)

ASSEMBLY_FILENAME = "assembled.part"
CHUNK_TEMP_SUFFIX = ".tmp"


def _fsync_dir(path: str) -> None:
    # persist directory entries (new files, renames); not supported everywhere
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _size_or_zero(path: str) -> int:
    # a temp chunk file may be renamed away between listing and stat
    try:
        return os.path.getsize(path)
    except FileNotFoundError:
        return 0


class InternalStorage(BaseStorage):
    """Chunk staging on the local filesystem, one directory per upload."""

    def __init__(self, chunks_dir: str, executor: Optional[concurrent.futures.Executor] = None):
        self.chunks_dir = str(chunks_dir)
        self.executor = executor or concurrent.futures.ThreadPoolExecutor(max_workers=4)

    def session_dir(self, upload_id: str) -> str:
        return os.path.join(self.chunks_dir, upload_id)

    def chunk_path(self, upload_id: str, chunk_index: int) -> str:
        return os.path.join(self.session_dir(upload_id), f"chunk_{chunk_index}")

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def _prepare_sync(self, upload_id: str) -> None:
        base_path = self.session_dir(upload_id)
        try:
            if os.path.isfile(base_path):
                os.remove(base_path)
            os.makedirs(base_path, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create chunks directory {base_path}: {e}")
            raise StorageError(f"Failed to create chunks directory: {e}") from e
        logger.debug(f"Prepared chunks directory: {base_path}")

    async def prepare(self, upload_id: str) -> None:
        await self._run(self._prepare_sync, upload_id)

    def _write_chunk_sync(self, upload_id: str, chunk_index: int, chunk_data: bytes) -> str:
        chunk_path = self.chunk_path(upload_id, chunk_index)
        # a retried chunk replaces the old file in one step, so a concurrent merge
        # only ever reads a whole copy of it
        temp_path = f"{chunk_path}.{uuid.uuid4().hex}{CHUNK_TEMP_SUFFIX}"
        try:
            # the staging directory must already exist; a torn down session is not recreated
            with open(temp_path, "xb") as f:
                f.write(chunk_data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, chunk_path)
        except FileNotFoundError as e:
            logger.error(f"Chunks directory missing for upload {upload_id}, dropping chunk {chunk_index}")
            self._discard(temp_path)
            raise StorageError(f"Chunks directory missing for upload {upload_id}") from e
        except OSError as e:
            logger.error(f"Error saving chunk {chunk_index} for session {upload_id}: {e}")
            self._discard(temp_path)
            raise StorageError(f"Failed to write chunk: {e}") from e

        logger.debug(f"Chunk saved successfully: {chunk_path} ({len(chunk_data)} bytes)")
        return chunk_path

    async def write_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes) -> str:
        return await self._run(self._write_chunk_sync, upload_id, chunk_index, chunk_data)

    def _read_chunk_sync(self, upload_id: str, chunk_index: int) -> bytes:
        try:
            with open(self.chunk_path(upload_id, chunk_index), "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise ChunkNotFoundError(upload_id, chunk_index) from e
        except OSError as e:
            raise StorageError(f"Failed to read chunk {chunk_index}: {e}") from e

    async def read_chunk(self, upload_id: str, chunk_index: int) -> bytes:
        return await self._run(self._read_chunk_sync, upload_id, chunk_index)

    def _assemble_sync(self, upload_id: str, total_chunks: int, output_path: str) -> int:
        base_path = self.session_dir(upload_id)
        temp_path = os.path.join(base_path, ASSEMBLY_FILENAME)
        output_dir = os.path.dirname(os.path.abspath(output_path))

        logger.info(f"Starting merge of {total_chunks} chunks from {base_path} to {output_path}")
        total_size = 0
        try:
            with open(temp_path, "wb") as merged:
                for i in range(total_chunks):
                    chunk_path = self.chunk_path(upload_id, i)
                    try:
                        chunk_file = open(chunk_path, "rb")
                    except FileNotFoundError as e:
                        raise ChunkNotFoundError(upload_id, i) from e
                    with chunk_file:
                        shutil.copyfileobj(chunk_file, merged)
                    logger.debug(f"Chunk {i + 1}/{total_chunks} merged")
                merged.flush()
                os.fsync(merged.fileno())
                total_size = merged.tell()

            os.makedirs(output_dir, exist_ok=True)
            os.replace(temp_path, output_path)
            _fsync_dir(output_dir)
        except ChunkNotFoundError:
            self._discard(temp_path)
            raise
        except OSError as e:
            logger.error(f"Error merging chunks for {upload_id}: {e}")
            self._discard(temp_path)
            raise StorageError(f"Failed to assemble upload: {e}") from e

        logger.info(f"Merge completed: {total_chunks} chunks, {total_size} bytes -> {output_path}")
        return total_size

    def _discard(self, path: str) -> None:
        try:
            os.remove(path)
            logger.info(f"Removed incomplete output file: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove incomplete output file {path}: {e}")

    async def assemble(self, upload_id: str, total_chunks: int, output_path: str) -> int:
        return await self._run(self._assemble_sync, upload_id, total_chunks, output_path)

    def _teardown_sync(self, upload_id: str) -> dict:
        base_path = self.session_dir(upload_id)
        if not os.path.exists(base_path):
            return {"files_removed": 0, "total_size": 0, "success": True}
        try:
            files = os.listdir(base_path)
            total_size = sum(_size_or_zero(os.path.join(base_path, f)) for f in files)
            shutil.rmtree(base_path)
        except OSError as e:
            logger.error(f"Error cleaning up chunks in {base_path}: {e}")
            return {"files_removed": 0, "total_size": 0, "success": False, "error": str(e)}

        logger.info(f"Cleaned up {base_path}: {len(files)} files, {total_size} bytes")
        return {"files_removed": len(files), "total_size": total_size, "success": True}

    async def teardown(self, upload_id: str) -> dict:
        return await self._run(self._teardown_sync, upload_id)
