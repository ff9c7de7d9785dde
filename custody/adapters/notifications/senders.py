"""Owner notification senders."""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class LogNotificationSender:
    def __init__(self):
        self._logger = logging.getLogger("custody.notifications")

    async def send(self, owner_user_id: str, notification: Dict[str, Any]) -> None:
        self._logger.info(json.dumps({"owner_user_id": owner_user_id, **notification}, default=str))


class RecordingNotificationSender:
    """Keeps notifications in memory. Used by dev mode and tests."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, owner_user_id: str, notification: Dict[str, Any]) -> None:
        self.sent.append({"owner_user_id": owner_user_id, **notification})


class WebhookNotificationSender:
    """Posts notifications to the notification service from a background queue.

    send() only enqueues, so a slow or failing webhook never delays the access
    that triggered it.
    """

    def __init__(self, service_url: str, api_key: Optional[str] = None, max_queue_size: int = 1000):
        self.url = f"{service_url.rstrip('/')}/notifications"
        self.api_key = api_key
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker_task: Optional[asyncio.Task] = None

    def _start_worker(self):
        if self._worker_task is None:
            self._worker_task = asyncio.get_running_loop().create_task(self._worker())

    async def _worker(self):
        timeout = aiohttp.ClientTimeout(total=5.0)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while True:
                payload = await self.queue.get()
                try:
                    headers = {"Content-Type": "application/json"}
                    if self.api_key:
                        headers["Authorization"] = f"Bearer {self.api_key}"

                    async with session.post(self.url, json=payload, headers=headers) as resp:
                        if resp.status >= 400:
                            logger.error(f"Notification service error: {resp.status}")
                except Exception as e:
                    logger.error(f"Notification transmission error: {e}")
                finally:
                    self.queue.task_done()

    async def send(self, owner_user_id: str, notification: Dict[str, Any]) -> None:
        self._start_worker()

        if self.queue.full():
            logger.warning("Notification queue full, dropping newest notification")
            return

        await self.queue.put({"owner_user_id": owner_user_id, **notification})

    async def close(self):
        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
