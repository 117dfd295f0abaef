"""Long-running queue consumer."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from convreport.ports import MessageQueue, QueueMessage

logger = structlog.get_logger()


class QueuePoller:
    """
    Pulls messages and hands them to ``handler`` strictly one at a time.

    A message is deleted only after ``handler`` returns. When it raises, the
    message stays on the queue and becomes visible again for redelivery.
    """

    def __init__(
        self,
        queue: MessageQueue,
        handler: Callable[[QueueMessage], Awaitable[object]],
        *,
        idle_sleep_seconds: float = 0.0,
        error_sleep_seconds: float = 5.0,
    ):
        self._queue = queue
        self._handler = handler
        self._idle_sleep_seconds = idle_sleep_seconds
        self._error_sleep_seconds = error_sleep_seconds
        self._stopping = False

    def stop(self) -> None:
        self._stopping = True

    async def poll_once(self) -> dict[str, int]:
        stats = {"received": 0, "processed": 0, "failed": 0}
        messages = await asyncio.to_thread(self._queue.receive)
        stats["received"] = len(messages)

        for message in messages:
            if self._stopping:
                break
            try:
                await self._handler(message)
            except Exception as e:
                logger.error("Message left for redelivery", message_id=message.message_id, error=str(e))
                stats["failed"] += 1
                continue
            await asyncio.to_thread(self._queue.delete, message.receipt_handle)
            stats["processed"] += 1

        return stats

    async def run(self, *, max_polls: int | None = None) -> None:
        polls = 0
        logger.info("Queue polling started")
        while not self._stopping and (max_polls is None or polls < max_polls):
            polls += 1
            try:
                stats = await self.poll_once()
            except Exception as e:
                logger.error("Queue receive failed", error=str(e), retry_in=self._error_sleep_seconds)
                if self._error_sleep_seconds:
                    await asyncio.sleep(self._error_sleep_seconds)
                continue
            if not stats["received"] and self._idle_sleep_seconds:
                await asyncio.sleep(self._idle_sleep_seconds)
        logger.info("Queue polling stopped", polls=polls)
