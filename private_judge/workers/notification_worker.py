"""Worker that fans notification jobs out to per-user Redis channels."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..jobs import JobType, utcnow
from ..models import Job
from ..payloads import NotificationJobPayload, parse_payload
from ..store import StoreFactory
from .base import JobWorker

logger = logging.getLogger(__name__)

Publisher = Callable[[str, str], Awaitable[Any]]


def user_channel(user_id: str) -> str:
    return f"channel:user:{user_id}"


async def redis_publish(channel: str, message: str) -> int:
    from ..redis_client import get_redis_client

    return await get_redis_client().publish(channel, message)


class NotificationWorker(JobWorker):
    types = (JobType.NOTIFICATION,)

    def __init__(
        self,
        store_factory: StoreFactory,
        *,
        publisher: Publisher | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(store_factory, **kwargs)
        self.publisher = publisher or redis_publish

    async def process(self, job: Job) -> dict[str, Any]:
        payload: NotificationJobPayload = parse_payload(job.type, job.payload)  # type: ignore[assignment]
        message = {
            "job_id": job.id,
            "type": payload.type,
            "message": payload.message,
            "room_id": payload.room_id,
            "sent_at": utcnow().isoformat(),
        }
        channel = user_channel(payload.user_id)
        receivers = await self.publisher(channel, json.dumps(message))
        logger.info("Notification %s sent to %s (%s receivers)", payload.type, channel, receivers)
        return {"channel": channel, "receivers": receivers}


def main() -> None:
    from ..db import store_scope
    from ..events import install_default_handlers

    logging.basicConfig(level=logging.INFO)
    install_default_handlers()
    asyncio.run(NotificationWorker(store_scope).run_forever())


if __name__ == "__main__":
    main()
