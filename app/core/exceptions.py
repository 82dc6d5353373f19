class ServiceError(Exception):
    """Base class for client-visible service errors."""

    status_code: int = 500
    category: str = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadNotFoundError(ServiceError):
    status_code = 404
    category = "not_found"

    def __init__(self, upload_id: str):
        super().__init__("Upload ID not found")
        self.upload_id = upload_id


class InvalidUploadRequestError(ServiceError):
    status_code = 400
    category = "invalid_request"


class IncompleteUploadError(ServiceError):
    status_code = 400
    category = "incomplete"

    def __init__(self, received: int, total: int):
        super().__init__(f"Missing chunks: received {received}/{total}")
        self.received = received
        self.total = total

    @property
    def missing(self) -> int:
        return self.total - self.received


class StorageError(ServiceError):
    status_code = 500
    category = "internal"


class ChunkNotFoundError(StorageError):
    def __init__(self, upload_id: str, chunk_index: int):
        super().__init__(f"Chunk {chunk_index} not found for upload {upload_id}")
        self.upload_id = upload_id
        self.chunk_index = chunk_index


class StoredFileNotFoundError(ServiceError):
    status_code = 404
    category = "not_found"

    def __init__(self, filename: str):
        super().__init__(f"File not found: {filename}")
        self.filename = filename
