"""Progress observers notified by the upload lifecycle."""
import asyncio
import json
import logging
from typing import List, Optional

from redis.asyncio.client import Redis

from media_ingest.core.service_protocols import ProgressObserver
from media_ingest.core.types import ProgressEvent
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class LoggingProgressObserver:
    """Observer that logs upload progress updates."""

    async def notify(self, upload_id: str, event: ProgressEvent) -> None:
        if event.event == "progress":
            logger.info(
                f"Upload progress [{upload_id}]: {event.file_name} - "
                f"{event.progress}% ({event.uploaded_chunks}/{event.total_chunks} chunks)"
            )
        elif event.event == "completed":
            logger.info(f"Upload completed [{upload_id}]: {event.file_name} ({event.file_size} bytes)")
        else:
            logger.warning(f"Upload failed [{upload_id}]: {event.file_name} - {event.message}")


class RedisProgressPublisher:
    """Publishes events as JSON on ``{channel_prefix}:{upload_id}``."""

    def __init__(self, client: Redis, channel_prefix: str = "upload:progress"):
        self.redis = client
        self.channel_prefix = channel_prefix

    def channel(self, upload_id: str) -> str:
        return f"{self.channel_prefix}:{upload_id}"

    async def notify(self, upload_id: str, event: ProgressEvent) -> None:
        payload = {"upload_id": upload_id, **event.to_dict()}
        receivers = await self.redis.publish(self.channel(upload_id), json.dumps(payload))
        logger.debug(f"Published {event.event} for {upload_id} to {receivers} subscriber(s)")


class CompositeProgressObserver:
    """Fans one event out to several observers; one failing does not stop the rest."""

    def __init__(self, observers: Optional[List[ProgressObserver]] = None):
        self.observers: List[ProgressObserver] = list(observers or [])

    def attach(self, observer: ProgressObserver) -> None:
        self.observers.append(observer)

    def detach(self, observer: ProgressObserver) -> None:
        try:
            self.observers.remove(observer)
        except ValueError:
            logger.warning(f"Observer not attached: {observer!r}")

    async def notify(self, upload_id: str, event: ProgressEvent) -> None:
        if not self.observers:
            return
        results = await asyncio.gather(
            *(observer.notify(upload_id, event) for observer in self.observers),
            return_exceptions=True
        )
        for observer, result in zip(self.observers, results):
            if isinstance(result, Exception):
                logger.error(f"Progress observer {type(observer).__name__} failed for {upload_id}: {result}")
