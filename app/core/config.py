import hashlib
import logging
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_API_KEY = "changeme"


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Directory served publicly and written by the admin API
    FILES_DIR: str = "./files"
    # Staging area for chunked uploads, defaults to FILES_DIR/.chunks
    CHUNKS_DIR: Optional[str] = None

    PUBLIC_HOST: str = "127.0.0.1"
    PUBLIC_PORT: int = 4848
    ADMIN_HOST: str = "127.0.0.1"
    ADMIN_PORT: int = 4849

    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024 * 1024
    WORKER_THREADS: int = 8

    ADMIN_API_KEY: str = DEFAULT_API_KEY
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_BURST: int = 5

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def files_path(self) -> Path:
        return Path(self.FILES_DIR)

    @property
    def chunks_path(self) -> Path:
        if self.CHUNKS_DIR:
            return Path(self.CHUNKS_DIR)
        return self.files_path / ".chunks"

    @property
    def api_key_hash(self) -> str:
        return hash_api_key(self.ADMIN_API_KEY)

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    def warn_insecure_defaults(self) -> None:
        if self.ADMIN_API_KEY == DEFAULT_API_KEY:
            logger.warning("No ADMIN_API_KEY set! Using default 'changeme' - CHANGE THIS IN PRODUCTION!")


settings = Settings()
