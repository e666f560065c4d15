"""
Kafka transport for the feed channels.

Reads JSON records from the price, fill and limits topics, validates them
against the boundary schemas and pushes the domain records into the
matching FeedChannel. Malformed records are logged and skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Callable

from aiokafka import AIOKafkaConsumer
from pydantic import BaseModel, ValidationError

from tradingrisk.config import settings
from tradingrisk.feed.channel import FeedChannel
from tradingrisk.models.schemas import FillIn, PriceUpdateIn, RiskLimitsIn

logger = logging.getLogger(__name__)


class KafkaFeedConsumer:
    """Routes Kafka topics into feed channels.

    Usage:
        consumer = KafkaFeedConsumer({
            settings.kafka_price_topic: (PriceUpdateIn, price_channel),
            ...
        })
        await consumer.start()
        asyncio.create_task(consumer.consume())
    """

    def __init__(
        self,
        routes: dict[str, tuple[type[BaseModel], FeedChannel]],
        bootstrap_servers: str | None = None,
        group_id: str | None = None,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
    ) -> None:
        self._routes = routes
        self._bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self._group_id = group_id or settings.kafka_group_id
        self._consumer_factory = consumer_factory
        self._consumer: AIOKafkaConsumer | None = None
        self.invalid = 0

    async def start(self) -> None:
        self._consumer = self._consumer_factory(
            *self._routes.keys(),
            bootstrap_servers=self._bootstrap_servers.split(","),
            group_id=self._group_id,
        )
        await self._consumer.start()
        logger.info(
            "Kafka feed consumer started on %s (topics: %s)",
            self._bootstrap_servers, ", ".join(self._routes),
        )

    async def stop(self) -> None:
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
            logger.info("Kafka feed consumer stopped")

    async def handle(self, topic: str, payload: bytes | str | dict) -> bool:
        """Decode and validate one record, then publish it. Returns False if skipped.

        Message values arrive as raw bytes; decoding happens here so a
        malformed message is skipped instead of breaking the consumer loop.
        """
        route = self._routes.get(topic)
        if route is None:
            logger.warning("No feed route for topic %s", topic)
            return False
        schema, channel = route
        if isinstance(payload, (bytes, str)):
            try:
                payload = json.loads(payload)
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                self.invalid += 1
                logger.warning("Undecodable record on %s skipped: %s", topic, e)
                return False
        try:
            record = schema.model_validate(payload)
        except ValidationError as e:
            self.invalid += 1
            logger.warning("Invalid record on %s skipped: %s", topic, e.errors())
            return False
        await channel.publish(record.to_domain())
        return True

    async def consume(self) -> None:
        """Consume until the consumer is stopped."""
        if not self._consumer:
            return
        try:
            async for msg in self._consumer:
                await self.handle(msg.topic, msg.value)
        except Exception as e:
            logger.error("Kafka feed consumer error: %s", e)
            raise


def default_routes(
    prices: FeedChannel, fills: FeedChannel, limits: FeedChannel
) -> dict[str, tuple[type[BaseModel], FeedChannel]]:
    return {
        settings.kafka_price_topic: (PriceUpdateIn, prices),
        settings.kafka_fill_topic: (FillIn, fills),
        settings.kafka_limits_topic: (RiskLimitsIn, limits),
    }
