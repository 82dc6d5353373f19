from abc import ABC, abstractmethod


class BaseStorage(ABC):
    """Staging area for the chunks of in-progress uploads."""

    @abstractmethod
    async def prepare(self, upload_id: str) -> None:
        pass

    @abstractmethod
    async def write_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes) -> str:
        pass

    @abstractmethod
    async def read_chunk(self, upload_id: str, chunk_index: int) -> bytes:
        pass

    @abstractmethod
    async def assemble(self, upload_id: str, total_chunks: int, output_path: str) -> int:
        pass

    @abstractmethod
    async def teardown(self, upload_id: str) -> dict:
        pass
