import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Set

from app.core.exceptions import UploadNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class UploadSession:
    """Server side record of one chunked upload in progress."""

    upload_id: str
    filename: str
    total_size: int
    chunk_size: int
    total_chunks: int
    received_chunks: Set[int] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    removed: bool = field(default=False, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_received(self, index: int) -> None:
        # indices past the end are stored by the caller but never counted
        if 0 <= index < self.total_chunks:
            self.received_chunks.add(index)

    def is_complete(self) -> bool:
        return len(self.received_chunks) == self.total_chunks


@dataclass(frozen=True)
class UploadProgress:
    upload_id: str
    filename: str
    total_size: int
    chunk_size: int
    total_chunks: int
    received: List[int]
    created_at: datetime

    @property
    def missing(self) -> List[int]:
        received = set(self.received)
        return [i for i in range(self.total_chunks) if i not in received]


class UploadRegistry:
    """
    Concurrent map of upload id -> UploadSession.

    The registry lock only guards the dict itself. Mutations of a session
    happen under that session's own lock, so work on one upload never waits
    on another. Lock order is always session lock, then registry lock.
    """

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def __contains__(self, upload_id: str) -> bool:
        with self._lock:
            return upload_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, session: UploadSession) -> None:
        with self._lock:
            if session.upload_id in self._sessions:
                raise ValueError(f"Upload session {session.upload_id} already exists")
            self._sessions[session.upload_id] = session
        logger.debug(f"Registered upload session {session.upload_id}")

    def _lookup(self, upload_id: str) -> UploadSession:
        with self._lock:
            session = self._sessions.get(upload_id)
        if session is None:
            raise UploadNotFoundError(upload_id)
        return session

    @contextmanager
    def mutate(self, upload_id: str) -> Iterator[UploadSession]:
        """Yield the session while holding its lock."""
        session = self._lookup(upload_id)
        with session.lock:
            if session.removed:
                raise UploadNotFoundError(upload_id)
            yield session

    def get(self, upload_id: str) -> UploadProgress:
        with self.mutate(upload_id) as session:
            return UploadProgress(
                upload_id=session.upload_id,
                filename=session.filename,
                total_size=session.total_size,
                chunk_size=session.chunk_size,
                total_chunks=session.total_chunks,
                received=sorted(session.received_chunks),
                created_at=session.created_at,
            )

    def remove(
        self,
        upload_id: str,
        precondition: Optional[Callable[[UploadSession], None]] = None,
    ) -> UploadSession:
        """
        Atomically remove and return a session.

        `precondition` runs under the session lock before removal; if it
        raises, the session stays registered and the error propagates.
        """
        session = self._lookup(upload_id)
        with session.lock:
            if session.removed:
                raise UploadNotFoundError(upload_id)
            if precondition is not None:
                precondition(session)
            with self._lock:
                del self._sessions[upload_id]
            session.removed = True
        logger.debug(f"Removed upload session {upload_id}")
        return session

    def restore(self, session: UploadSession) -> None:
        """Put a removed session back, e.g. after its assembly failed."""
        with session.lock:
            with self._lock:
                if session.upload_id in self._sessions:
                    raise ValueError(f"Upload session {session.upload_id} already exists")
                self._sessions[session.upload_id] = session
            session.removed = False
        logger.debug(f"Restored upload session {session.upload_id}")
