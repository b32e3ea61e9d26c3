"""Process-local upload session repository."""
import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from media_ingest.core.exceptions import ValidationException
from media_ingest.models.upload_session import UploadSession
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class InMemorySessionRepository:
    """
    Session table held in a dict, with one ``asyncio.Lock`` per upload id.

    Sessions are copied on the way in and out so callers only mutate stored
    state through :meth:`save`.
    """

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def create(self, session: UploadSession) -> None:
        if session.upload_id in self._sessions:
            raise ValidationException(f"Upload session already exists: {session.upload_id}", field="upload_id")
        self._sessions[session.upload_id] = session.model_copy(deep=True)
        logger.debug(f"Upload session stored in memory: {session.upload_id}")

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        session = self._sessions.get(upload_id)
        return session.model_copy(deep=True) if session else None

    async def save(self, session: UploadSession) -> None:
        self._sessions[session.upload_id] = session.model_copy(deep=True)

    async def delete(self, upload_id: str) -> bool:
        return self._sessions.pop(upload_id, None) is not None

    @asynccontextmanager
    async def lock(self, upload_id: str) -> AsyncIterator[None]:
        """Hold the lock for ``upload_id``; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(upload_id, asyncio.Lock())
        self._lock_users[upload_id] = self._lock_users.get(upload_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[upload_id] -= 1
            if not self._lock_users[upload_id]:
                del self._lock_users[upload_id]
                del self._locks[upload_id]

    async def list_stale(self, cutoff_timestamp: float) -> List[str]:
        return [
            upload_id
            for upload_id, session in self._sessions.items()
            if session.updated_at.timestamp() < cutoff_timestamp
        ]

    async def get_stats(self) -> Dict[str, Any]:
        by_status = Counter(session.status.value for session in self._sessions.values())
        return {
            "backend": "memory",
            "total_sessions": len(self._sessions),
            "by_status": dict(by_status)
        }

    def __len__(self) -> int:
        return len(self._sessions)
