"""
Bounded feed channels — decouple ingestion rate from state updates.

One channel per feed source (prices, fills, limits). Producers push
records; a single worker task drains the queue into the handler. When the
queue is full the channel either drops the oldest queued record
(``drop_oldest``, the default: for prices the newest tick is what matters)
or makes the producer wait (``block``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Generic, TypeVar

from tradingrisk.config import OverflowPolicy, settings
from tradingrisk.risk.errors import RiskError, StaleDataError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FeedChannel(Generic[T]):
    """Bounded queue + worker feeding one handler.

    Usage:
        channel = FeedChannel("prices", service.on_price)
        channel.start()
        await channel.publish(PriceUpdate("AAPL", 150.0, 1.0))
        ...
        await channel.stop()
    """

    def __init__(
        self,
        name: str,
        handler: Callable[[T], object],
        maxsize: int | None = None,
        policy: OverflowPolicy | str | None = None,
    ) -> None:
        self.name = name
        self._handler = handler
        self.maxsize = maxsize or settings.feed_queue_size
        self.policy = OverflowPolicy(policy or settings.feed_overflow_policy)
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=self.maxsize)
        self._task: asyncio.Task | None = None
        self.processed = 0
        self.dropped = 0
        self.failed = 0
        self.stale = 0

    # ── Producer side ─────────────────────────────────────────────────────

    async def publish(self, event: T) -> None:
        """Enqueue ``event``, waiting for room under the ``block`` policy."""
        if self.policy is OverflowPolicy.BLOCK:
            await self._queue.put(event)
        else:
            self._put_dropping_oldest(event)

    def offer(self, event: T) -> bool:
        """Enqueue without waiting. Returns False if the record was refused."""
        if self.policy is OverflowPolicy.BLOCK:
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                return False
            return True
        self._put_dropping_oldest(event)
        return True

    def _put_dropping_oldest(self, event: T) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                except asyncio.QueueEmpty:
                    continue
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 1000 == 0:
                    logger.warning(
                        "[%s] queue full (%d), dropped %d oldest records so far",
                        self.name, self.maxsize, self.dropped,
                    )

    # ── Consumer side ─────────────────────────────────────────────────────

    def _dispatch(self, event: T) -> None:
        try:
            self._handler(event)
            self.processed += 1
        except StaleDataError as e:
            self.stale += 1
            logger.warning("[%s] dropped stale record: %s", self.name, e)
        except RiskError as e:
            self.failed += 1
            logger.warning("[%s] rejected record %s: %s", self.name, event, e)
        except Exception:
            self.failed += 1
            logger.exception("[%s] handler failed for %s", self.name, event)

    async def run(self) -> None:
        """Drain the queue forever. One bad record never stops the channel."""
        while True:
            event = await self._queue.get()
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()

    def drain(self) -> int:
        """Process everything currently queued, synchronously."""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()
            count += 1

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"feed-{self.name}")
            logger.info("[%s] feed channel started (maxsize=%d, policy=%s)",
                        self.name, self.maxsize, self.policy.value)
        return self._task

    async def join(self) -> None:
        """Wait until every queued record has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("[%s] feed channel stopped", self.name)

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def stats(self) -> dict:
        return {
            "depth": self.depth,
            "maxsize": self.maxsize,
            "policy": self.policy.value,
            "processed": self.processed,
            "dropped": self.dropped,
            "stale": self.stale,
            "failed": self.failed,
        }
