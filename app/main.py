import asyncio
import logging
import concurrent.futures
import os
import traceback
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.endpoints.files import router as files_router
from app.api.endpoints.upload import router as upload_router
from app.core.config import Settings, settings
from app.core.exceptions import ServiceError
from app.core.security import (
    BodyLimitMiddleware,
    RateLimiter,
    rate_limit_middleware,
    security_headers_middleware,
    verify_api_key,
)
from app.services.file_service import FileService
from app.services.storage.internal import InternalStorage
from app.services.upload_service import UploadService

logger = logging.getLogger(__name__)


class PublicFiles(StaticFiles):
    """Static files that refuse any hidden path segment, e.g. the .chunks staging area."""

    async def get_response(self, path: str, scope):
        segments = path.replace("\\", "/").split("/")
        if any(segment.startswith(".") and segment != "." for segment in segments):
            raise StarletteHTTPException(status_code=404)
        return await super().get_response(path, scope)


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "category": exc.category},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_public_app(config: Settings) -> FastAPI:
    os.makedirs(config.files_path, exist_ok=True)
    logger.debug(f"Building public app for directory: {config.files_path}")

    app = FastAPI(title="Chunked File Server", openapi_url=None, docs_url=None, redoc_url=None)
    app.middleware("http")(security_headers_middleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.mount("/", PublicFiles(directory=str(config.files_path), html=True), name="files")
    return app


def create_admin_app(config: Settings, executor: Optional[concurrent.futures.Executor] = None) -> FastAPI:
    os.makedirs(config.files_path, exist_ok=True)
    os.makedirs(config.chunks_path, exist_ok=True)
    logger.debug(f"Building admin app with max upload size: {config.MAX_UPLOAD_SIZE} bytes")

    app = FastAPI(
        title="Chunked File Server Admin",
        version="1.0.0",
        openapi_url=None if config.ENV == "production" else "/openapi.json",
        docs_url=None if config.ENV == "production" else "/docs",
        redoc_url=None if config.ENV == "production" else "/redoc",
    )

    executor = executor or concurrent.futures.ThreadPoolExecutor(max_workers=config.WORKER_THREADS)
    storage = InternalStorage(str(config.chunks_path), executor=executor)
    app.state.api_key_hash = config.api_key_hash
    app.state.file_service = FileService(str(config.files_path))
    app.state.upload_service = UploadService(
        storage,
        str(config.files_path),
        max_upload_size=config.MAX_UPLOAD_SIZE,
    )

    add_error_handlers(app)

    # middleware added last runs first
    app.add_middleware(BodyLimitMiddleware, max_size=config.MAX_UPLOAD_SIZE)
    app.middleware("http")(rate_limit_middleware(
        RateLimiter(config.RATE_LIMIT_PER_MINUTE, config.RATE_LIMIT_BURST)
    ))
    app.middleware("http")(security_headers_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origin_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(upload_router, prefix="/admin", tags=["upload"], dependencies=[Depends(verify_api_key)])
    app.include_router(files_router, prefix="/admin", tags=["files"], dependencies=[Depends(verify_api_key)])
    return app


def print_startup_banner(config: Settings) -> None:
    logger.info("Chunked file server starting...")
    logger.info("-" * 53)
    logger.info(f"PUBLIC FILE SERVER: http://{config.PUBLIC_HOST}:{config.PUBLIC_PORT}")
    logger.info(f"ADMIN API SERVER: http://{config.ADMIN_HOST}:{config.ADMIN_PORT}")
    logger.info(f"Serving files from: {os.path.realpath(config.files_path)}")
    logger.info("-" * 53)


async def serve(config: Settings) -> None:
    public_server = uvicorn.Server(uvicorn.Config(
        create_public_app(config),
        host=config.PUBLIC_HOST,
        port=config.PUBLIC_PORT,
        log_level=config.LOG_LEVEL.lower(),
    ))
    admin_server = uvicorn.Server(uvicorn.Config(
        create_admin_app(config),
        host=config.ADMIN_HOST,
        port=config.ADMIN_PORT,
        log_level=config.LOG_LEVEL.lower(),
    ))
    print_startup_banner(config)
    await asyncio.gather(public_server.serve(), admin_server.serve())


def run() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    settings.warn_insecure_defaults()
    asyncio.run(serve(settings))


if __name__ == "__main__":
    run()
