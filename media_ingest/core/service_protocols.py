"""Service interface protocol definitions for type-safe contracts."""
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from media_ingest.core.types import ProgressEvent
from media_ingest.models.upload_session import UploadSession


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol describing durable object storage capabilities."""

    async def put(self, path: str, data: bytes) -> None:
        """Store ``data`` under ``path``, replacing any existing object."""
        ...

    async def put_stream(self, path: str, stream: AsyncIterator[bytes]) -> int:
        """Consume ``stream`` into ``path`` and return the number of bytes written."""
        ...

    async def get(self, path: str) -> bytes:
        """Return the object stored under ``path``."""
        ...

    async def delete(self, path: str) -> None:
        """Remove ``path``; missing objects are ignored."""
        ...

    async def exists(self, path: str) -> bool:
        """Return whether ``path`` exists."""
        ...

    async def url(self, path: str) -> str:
        """Return a URL clients can use to fetch ``path``."""
        ...

    async def move(self, source: str, destination: str) -> None:
        """Promote ``source`` to ``destination``."""
        ...


@runtime_checkable
class ChunkStore(Protocol):
    """Protocol for per-upload chunk staging."""

    async def put(self, upload_id: str, index: int, data: bytes) -> None:
        ...

    async def get(self, upload_id: str, index: int) -> bytes:
        ...

    async def exists(self, upload_id: str, index: int) -> bool:
        ...

    async def delete_all(self, upload_id: str) -> int:
        ...


@runtime_checkable
class SessionRepository(Protocol):
    """Key-value store of upload sessions with a per-session lock."""

    async def create(self, session: UploadSession) -> None:
        """Persist a new session."""
        ...

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        """Return a copy of the stored session or None."""
        ...

    async def save(self, session: UploadSession) -> None:
        """Overwrite the stored session."""
        ...

    async def delete(self, upload_id: str) -> bool:
        """Remove the session; returns False when it did not exist."""
        ...

    def lock(self, upload_id: str) -> AsyncContextManager[None]:
        """Mutual exclusion scoped to one upload id."""
        ...

    async def list_stale(self, cutoff_timestamp: float) -> List[str]:
        """Return ids of sessions last updated before ``cutoff_timestamp``."""
        ...

    async def get_stats(self) -> Dict[str, Any]:
        """Return aggregate counts."""
        ...


@runtime_checkable
class ProgressObserver(Protocol):
    """Fire-and-forget sink for upload progress events."""

    async def notify(self, upload_id: str, event: ProgressEvent) -> None:
        ...
