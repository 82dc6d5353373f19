import hmac
import logging
import threading
import time
from typing import Dict, Tuple

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.config import hash_api_key

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'self'; style-src 'self' 'unsafe-inline'; img-src 'self' data:",
}


def verify_api_key(request: Request, provided_key: str = Depends(api_key_header)) -> None:
    """
    Compare the sha256 of the X-API-Key header against the configured hash.
    The expected hash lives on app.state so each app carries its own key.
    """
    if not provided_key:
        logger.warning("Missing X-API-Key header")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    expected_hash = request.app.state.api_key_hash
    if not hmac.compare_digest(hash_api_key(provided_key), expected_hash):
        logger.warning("Invalid API key attempt")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    logger.debug("API key validated successfully")


async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


class BodyLimitMiddleware:
    """
    Cap request bodies at max_size bytes.

    A declared Content-Length over the limit is refused before the app runs.
    Bodies without one (chunked transfer encoding) are counted as they are
    received, and reading past the limit raises a 413 HTTPException inside
    the handler that is reading the body.
    """

    def __init__(self, app: ASGIApp, max_size: int):
        self.app = app
        self.max_size = max_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                response = JSONResponse(status_code=400, content={"error": "Invalid Content-Length header"})
                await response(scope, receive, send)
                return
            if declared > self.max_size:
                logger.warning(f"Rejected request body of {declared} bytes (limit {self.max_size})")
                response = JSONResponse(status_code=413, content={"error": "Request body too large"})
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_size:
                    logger.warning(f"Request body exceeded {self.max_size} bytes while streaming")
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail="Request body too large",
                    )
            return message

        await self.app(scope, limited_receive, send)


class RateLimiter:
    """Per-client token bucket: `burst` tokens, refilled at per_minute/60 per second."""

    def __init__(self, per_minute: int, burst: int, max_entries: int = 10000):
        self.rate = per_minute / 60.0
        self.burst = max(burst, 1)
        self.max_entries = max_entries
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _refilled(self, tokens: float, last: float, now: float) -> float:
        return min(self.burst, tokens + (now - last) * self.rate)

    def _prune(self, now: float) -> None:
        # a full bucket holds no state beyond the default, so it can be dropped
        full = [
            key for key, (tokens, last) in self._buckets.items()
            if self._refilled(tokens, last, now) >= self.burst
        ]
        for key in full:
            del self._buckets[key]
        if full:
            logger.debug(f"Pruned {len(full)} idle rate limit buckets")

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            if key not in self._buckets and len(self._buckets) >= self.max_entries:
                self._prune(now)
            tokens, last = self._buckets.get(key, (float(self.burst), now))
            tokens = self._refilled(tokens, last, now)
            if tokens < 1:
                self._buckets[key] = (tokens, now)
                return False
            self._buckets[key] = (tokens - 1, now)
            return True


def rate_limit_middleware(limiter: RateLimiter):
    async def middleware(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        if not limiter.allow(client):
            logger.warning(f"Rate limit exceeded for {client}")
            return JSONResponse(status_code=429, content={"error": "Too many requests"})
        return await call_next(request)

    return middleware
