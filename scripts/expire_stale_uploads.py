#!/usr/bin/env python3
"""Remove upload sessions (and their staged chunks) that have gone stale."""
import argparse
import asyncio
import sys
from pathlib import Path

# Add the project root to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from media_ingest.config import settings
from media_ingest.core.service_factory import UploadServiceFactory
from media_ingest.services.redis_service import RedisSessionRepository
from media_ingest.utils.logger import get_logger

logger = get_logger("expire_stale_uploads")


async def expire(max_age_hours: float) -> int:
    services = UploadServiceFactory(settings).build()
    if isinstance(services.repository, RedisSessionRepository):
        await services.repository.connect()
    try:
        return await services.upload_service.expire_stale(max_age_hours)
    finally:
        await services.close()


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=settings.stale_session_max_age_hours,
        help="Sessions not updated for this many hours are removed (default: %(default)s)",
    )
    args = parser.parse_args()

    if settings.session_backend == "memory":
        logger.warning("Session backend is in-memory; this process cannot see server sessions")

    expired = asyncio.run(expire(args.max_age_hours))
    print(f"Expired {expired} upload sessions")
    return 0


if __name__ == "__main__":
    sys.exit(main())
