"""
Notification outbox.

Write paths publish RealtimeEvent / PushMessage items after their storage
write has committed; a single worker task drains the queue and performs the
actual fan-out and push delivery. Publishing never blocks or raises, and a
delivery failure is logged without reaching the request that caused it.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from starlette.concurrency import run_in_threadpool

from notifications import PushDispatcher, TokenRegistry
from realtime import RealtimeHub

logger = logging.getLogger(__name__)


@dataclass
class RealtimeEvent:
    event: str
    data: Dict[str, Any]
    room: Optional[str] = None  # None broadcasts to every session


@dataclass
class PushMessage:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    role: str = "kitchen"


OutboxItem = Union[RealtimeEvent, PushMessage]


class Outbox:
    def __init__(self, hub: RealtimeHub, push: PushDispatcher, tokens: TokenRegistry):
        self.hub = hub
        self.push = push
        self.tokens = tokens
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        logger.info("Notification outbox started")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        self._loop = None
        logger.info("Notification outbox stopped")

    def publish(self, item: OutboxItem) -> bool:
        """Queue an item for delivery. Safe to call from worker threads."""
        if not self.running or self._loop is None:
            logger.warning("Outbox not running, dropping %s", item)
            return False
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError as e:
            logger.warning(f"Outbox loop unavailable, dropping {item}: {e}")
            return False
        return True

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.deliver(item)
            except Exception:
                logger.exception("Delivery failed for %s", item)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued item has been delivered."""
        # publish() enqueues on the next loop iteration
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()

    async def deliver(self, item: OutboxItem) -> None:
        if isinstance(item, RealtimeEvent):
            await self.hub.emit(item.event, item.data, item.room)
        elif isinstance(item, PushMessage):
            await self._deliver_push(item)
        else:
            logger.error("Unknown outbox item: %r", item)

    async def _deliver_push(self, message: PushMessage) -> None:
        tokens = self.tokens.role_tokens(message.role)
        if not tokens:
            logger.warning("No %s FCM tokens available for notification", message.role)
            return
        result = await run_in_threadpool(self.push.send_multicast, tokens, message.title, message.body, message.data)
        if result.success:
            logger.info(f"FCM sent to {result.success_count} {message.role} devices")
        else:
            logger.warning(f"FCM multicast failed: {result.error}")
