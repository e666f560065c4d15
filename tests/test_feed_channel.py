"""
Tests for feed channels: overflow policies, worker loop and error isolation.
"""

import asyncio

import pytest

from tradingrisk.config import OverflowPolicy
from tradingrisk.feed.channel import FeedChannel
from tradingrisk.models.types import Instrument, PriceUpdate
from tradingrisk.risk.errors import InvalidRequestError, StaleDataError
from tradingrisk.services.risk.service import RiskService


class TestOverflowPolicies:
    def test_drop_oldest_keeps_newest(self):
        seen = []
        channel = FeedChannel("t", seen.append, maxsize=3, policy=OverflowPolicy.DROP_OLDEST)
        for i in range(1, 6):
            assert channel.offer(i) is True
        assert channel.depth == 3
        assert channel.dropped == 2

        assert channel.drain() == 3
        assert seen == [3, 4, 5]

    def test_block_policy_refuses_offer_when_full(self):
        channel = FeedChannel("t", lambda e: None, maxsize=2, policy="block")
        assert channel.offer(1) is True
        assert channel.offer(2) is True
        assert channel.offer(3) is False
        assert channel.dropped == 0

    @pytest.mark.asyncio
    async def test_block_policy_publish_waits_for_worker(self):
        seen = []
        channel = FeedChannel("t", seen.append, maxsize=2, policy=OverflowPolicy.BLOCK)
        channel.start()
        for i in range(10):
            await asyncio.wait_for(channel.publish(i), timeout=2)
        await asyncio.wait_for(channel.join(), timeout=2)
        await channel.stop()
        assert seen == list(range(10))

    @pytest.mark.asyncio
    async def test_drop_oldest_publish_never_waits(self):
        channel = FeedChannel("t", lambda e: None, maxsize=1, policy=OverflowPolicy.DROP_OLDEST)
        for i in range(5):
            await asyncio.wait_for(channel.publish(i), timeout=1)
        assert channel.depth == 1
        assert channel.dropped == 4


class TestErrorIsolation:
    def test_handler_errors_do_not_stop_channel(self):
        seen = []

        def handler(event):
            if event == "stale":
                raise StaleDataError("AAPL", 1.0, 2.0)
            if event == "bad":
                raise InvalidRequestError("bad record")
            if event == "boom":
                raise RuntimeError("unexpected")
            seen.append(event)

        channel = FeedChannel("t", handler, maxsize=10)
        for e in ["a", "stale", "bad", "boom", "b"]:
            channel.offer(e)
        channel.drain()

        assert seen == ["a", "b"]
        stats = channel.stats()
        assert stats["processed"] == 2
        assert stats["stale"] == 1
        assert stats["failed"] == 2

    @pytest.mark.asyncio
    async def test_worker_survives_failures(self):
        seen = []

        def handler(event):
            if event < 0:
                raise ValueError("negative")
            seen.append(event)

        channel = FeedChannel("t", handler, maxsize=10)
        channel.start()
        for e in [1, -1, 2]:
            await channel.publish(e)
        await asyncio.wait_for(channel.join(), timeout=2)
        await channel.stop()
        assert seen == [1, 2]
        assert channel.failed == 1


def test_stale_prices_dropped_through_service_feed():
    service = RiskService(queue_size=10)
    service.register_instrument(Instrument("AAPL"))
    service.price_feed.offer(PriceUpdate("AAPL", 150.0, 10.0))
    service.price_feed.offer(PriceUpdate("AAPL", 999.0, 5.0))
    service.price_feed.offer(PriceUpdate("AAPL", 151.0, 11.0))
    service.price_feed.drain()

    assert service.market_data.get("AAPL").price == 151.0
    assert service.price_feed.stale == 1
    assert service.price_feed.processed == 2
