"""Core message intake pipeline.

This module is integration-agnostic. It only relies on ports and core
services, enabling other frontends or adapters without changes here.

Order per message:
1) Channel lookup, fast exit for unknown or inactive channels
2) Ledger check (plus an in-flight guard for concurrent re-deliveries)
3) Content extraction
4) Album fragments go to the aggregator, everything else is published
5) Ledger commit for single messages once the publish attempt is over
"""

from __future__ import annotations

import logging
from typing import Set, Tuple

from core.aggregator import GroupAggregator
from core.dedup import DedupLedger
from core.errors import LedgerUnavailableError
from core.extractor import extract_content
from core.models import Destination, SourceMessage
from core.ports import ChannelRegistryPort
from core.publisher import PublishPipeline

LOGGER = logging.getLogger(__name__)


class MessageProcessor:
    """Orchestrates lookup, dedup, extraction, aggregation and publishing."""

    def __init__(
        self,
        registry: ChannelRegistryPort,
        ledger: DedupLedger,
        aggregator: GroupAggregator,
        publisher: PublishPipeline,
        destination_chat_id: int,
        default_markup: float,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._aggregator = aggregator
        self._publisher = publisher
        self._destination_chat_id = destination_chat_id
        self._default_markup = default_markup
        self._in_flight: Set[Tuple[int, str]] = set()

    async def handle(self, message: SourceMessage) -> None:
        """Process one inbound message. Never raises."""

        try:
            await self._handle(message)
        except Exception:
            LOGGER.exception(
                "Error while processing message %s/%s",
                message.source_channel_id,
                message.message_id,
            )

    async def _handle(self, message: SourceMessage) -> None:
        channel = self._registry.lookup(message.source_channel_id)
        if channel is None or not channel.active:
            LOGGER.debug("Ignoring message from unmonitored channel %s", message.source_channel_id)
            return

        key = (message.message_id, message.source_channel_id)
        if key in self._in_flight:
            LOGGER.debug("Message %s/%s is already being published", key[1], key[0])
            return
        if self._ledger.has_processed(*key):
            LOGGER.debug("Message %s/%s already processed", key[1], key[0])
            return

        content = extract_content(message, channel, self._default_markup)
        destination = Destination(chat_id=self._destination_chat_id, topic_id=channel.destination_topic)

        if content.group_id:
            self._aggregator.add(message, content, channel, destination)
            return

        has_text = bool(message.text) and channel.include_text
        if not content.media and not has_text and content.price is None:
            LOGGER.debug("Message %s/%s has nothing to publish", key[1], key[0])
            return

        ref = f"message {message.source_channel_id}/{message.message_id}"
        self._in_flight.add(key)
        try:
            published = await self._publisher.publish_single(content, destination, channel, ref=ref)
        finally:
            self._in_flight.discard(key)
            self._commit(message)

        if published:
            LOGGER.info("Relayed %s from %s", ref, channel.name or channel.channel_id)

    def _commit(self, message: SourceMessage) -> None:
        try:
            self._ledger.mark_processed(message.message_id, message.source_channel_id)
        except LedgerUnavailableError:
            LOGGER.exception(
                "Could not ledger message %s/%s",
                message.source_channel_id,
                message.message_id,
            )
