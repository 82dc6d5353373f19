import os
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from app.core.exceptions import StoredFileNotFoundError
from app.core.filenames import sanitize_filename

logger = logging.getLogger(__name__)


def _format_mtime(timestamp: float) -> str:
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class FileService:
    """Plain file operations on the shared directory."""

    def __init__(self, files_dir: str):
        self.files_dir = str(files_dir)

    def path_for(self, filename: str) -> Tuple[str, str]:
        sanitized = sanitize_filename(filename)
        return sanitized, os.path.join(self.files_dir, sanitized)

    def _save_sync(self, path: str, data: bytes) -> None:
        with open(path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

    async def save_file(self, filename: str, data: bytes) -> Tuple[str, int]:
        sanitized, path = self.path_for(filename)
        logger.debug(f"Sanitized filename: {filename} -> {sanitized}")
        await asyncio.to_thread(self._save_sync, path, data)
        logger.info(f"Uploaded file: {sanitized} ({len(data)} bytes)")
        return sanitized, len(data)

    def _list_sync(self) -> List[dict]:
        files = []
        with os.scandir(self.files_dir) as entries:
            for entry in entries:
                # dot entries hold upload staging data
                if entry.name.startswith("."):
                    continue
                stat = entry.stat()
                files.append({
                    "name": entry.name,
                    "size": stat.st_size,
                    "modified": _format_mtime(stat.st_mtime),
                    "is_dir": entry.is_dir(),
                })
        files.sort(key=lambda f: f["name"])
        return files

    async def list_files(self) -> List[dict]:
        files = await asyncio.to_thread(self._list_sync)
        logger.debug(f"Found {len(files)} files total")
        return files

    def _delete_sync(self, path: str) -> None:
        os.remove(path)

    async def delete_file(self, filename: str) -> str:
        sanitized, path = self.path_for(filename)
        if not os.path.isfile(path):
            logger.warning(f"File not found for deletion: {sanitized}")
            raise StoredFileNotFoundError(sanitized)
        await asyncio.to_thread(self._delete_sync, path)
        logger.info(f"Deleted file: {sanitized}")
        return sanitized

    async def batch_delete(self, filenames: List[str]) -> List[dict]:
        results = []
        for filename in filenames:
            sanitized, path = self.path_for(filename)
            try:
                await asyncio.to_thread(self._delete_sync, path)
            except OSError as e:
                logger.warning(f"Failed to delete file {sanitized}: {e}")
                results.append({"filename": sanitized, "success": False, "error": str(e)})
                continue
            logger.info(f"Batch deleted file: {sanitized}")
            results.append({"filename": sanitized, "success": True, "error": None})
        successful = sum(1 for r in results if r["success"])
        logger.info(f"Batch delete completed: {successful}/{len(results)} successful")
        return results

    def _stats_sync(self) -> Tuple[int, int]:
        total_files = 0
        total_size = 0
        with os.scandir(self.files_dir) as entries:
            for entry in entries:
                if entry.is_file():
                    total_files += 1
                    total_size += entry.stat().st_size
        return total_files, total_size

    async def stats(self) -> dict:
        total_files, total_size = await asyncio.to_thread(self._stats_sync)
        logger.debug(f"Stats: {total_files} files, {total_size} bytes total")
        return {
            "total_files": total_files,
            "total_size": total_size,
            "files_dir": os.path.realpath(self.files_dir),
        }
