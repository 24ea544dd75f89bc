"""Album aggregation (core domain).

Telegram delivers an album as separate messages sharing a ``grouped_id``.
The aggregator collects them for a fixed window after the first fragment
and hands the merged accumulator to the publisher exactly once.

Per group: Absent -> Collecting -> Flushing -> Absent. The flush timer is
armed once by the first fragment and never reset. A periodic sweep flushes
accumulators that outlived the stale ceiling; the ``flushed`` flag makes
whichever of timer and sweep comes second a no-op.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from core.config import AggregationConfig, ChannelConfig
from core.dedup import DedupLedger
from core.errors import LedgerUnavailableError
from core.models import Destination, MediaGroupAccumulator, ProcessedContent, SourceMessage
from core.ports import SchedulerPort, TimerHandle
from core.publisher import PublishPipeline

LOGGER = logging.getLogger(__name__)


class GroupAggregator:
    """Owns the live map of in-flight albums."""

    def __init__(
        self,
        publisher: PublishPipeline,
        ledger: DedupLedger,
        scheduler: SchedulerPort,
        config: AggregationConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._publisher = publisher
        self._ledger = ledger
        self._scheduler = scheduler
        self._config = config
        self._clock = clock
        self._groups: Dict[str, MediaGroupAccumulator] = {}
        # group_id -> flush time, so late fragments cannot start a second post.
        self._closed: Dict[str, float] = {}
        self._sweep_timer: Optional[TimerHandle] = None
        self._running = False

    @property
    def pending_groups(self) -> List[str]:
        return list(self._groups)

    def get(self, group_id: str) -> Optional[MediaGroupAccumulator]:
        return self._groups.get(group_id)

    def add(
        self,
        message: SourceMessage,
        content: ProcessedContent,
        channel: ChannelConfig,
        destination: Destination,
    ) -> None:
        """Merge one fragment into its group.

        Runs without suspending, so fragments of the same group never
        interleave. The fragment is ledgered right away.
        """

        group_id = content.group_id or message.group_id
        if group_id is None:
            raise ValueError(f"Message {message.message_id} has no group id")

        self._mark(message)

        accumulator = self._groups.get(group_id)
        if group_id in self._closed or (accumulator is not None and accumulator.flushed):
            LOGGER.warning(
                "Fragment %s/%s arrived after group %s was flushed, dropping it",
                message.source_channel_id,
                message.message_id,
                group_id,
            )
            return

        if accumulator is None:
            accumulator = MediaGroupAccumulator(
                group_id=group_id,
                channel=channel,
                destination=destination,
                created_at=self._clock(),
            )
            self._groups[group_id] = accumulator
            accumulator.timer = self._scheduler.call_later(
                self._config.flush_window,
                lambda: self.flush(group_id, reason="window"),
            )
            accumulator.flush_scheduled = True
            LOGGER.debug("Collecting group %s (window %ss)", group_id, self._config.flush_window)

        accumulator.media.extend(content.media)
        if content.item_name and len(content.item_name) > len(accumulator.text):
            accumulator.text = content.item_name
        if accumulator.price is None and content.price is not None:
            accumulator.price = content.price
        accumulator.messages.append(message)

    def _mark(self, message: SourceMessage) -> None:
        try:
            self._ledger.mark_processed(message.message_id, message.source_channel_id)
        except LedgerUnavailableError:
            LOGGER.exception(
                "Could not ledger fragment %s/%s, continuing",
                message.source_channel_id,
                message.message_id,
            )

    async def flush(self, group_id: str, reason: str = "window") -> bool:
        """Publish a group once and remove it. Returns the publish result."""

        accumulator = self._groups.get(group_id)
        if accumulator is None or accumulator.flushed:
            return False
        accumulator.flushed = True
        if reason != "window" and accumulator.timer is not None:
            accumulator.timer.cancel()

        try:
            if not accumulator.media and not accumulator.text and accumulator.price is None:
                LOGGER.warning("Group %s has nothing to publish, dropping it", group_id)
                return False
            LOGGER.info(
                "Flushing group %s (%s, %s media, %s fragments)",
                group_id,
                reason,
                len(accumulator.media),
                len(accumulator.messages),
            )
            published = await self._publisher.publish_group(accumulator, accumulator.destination)
            if not published:
                message_ids = ", ".join(str(m.message_id) for m in accumulator.messages)
                LOGGER.error(
                    "Group %s from %s was not published (messages: %s)",
                    group_id,
                    accumulator.channel.channel_id,
                    message_ids,
                )
            return published
        except Exception:
            LOGGER.exception("Unexpected error while publishing group %s", group_id)
            return False
        finally:
            self._groups.pop(group_id, None)
            self._closed[group_id] = self._clock()

    async def sweep(self) -> int:
        """Flush accumulators older than the stale ceiling.

        Returns the number of groups flushed.
        """

        now = self._clock()
        for group_id, closed_at in list(self._closed.items()):
            if now - closed_at >= self._config.stale_after:
                del self._closed[group_id]

        stale = [
            group_id
            for group_id, accumulator in self._groups.items()
            if not accumulator.flushed and now - accumulator.created_at >= self._config.stale_after
        ]
        flushed = 0
        for group_id in stale:
            LOGGER.warning("Group %s is stale, flushing it from the sweep", group_id)
            await self.flush(group_id, reason="stale")
            flushed += 1
        return flushed

    def start(self) -> None:
        """Arm the periodic stale sweep."""

        if self._running:
            return
        self._running = True
        self._schedule_sweep()

    def _schedule_sweep(self) -> None:
        self._sweep_timer = self._scheduler.call_later(self._config.sweep_interval, self._sweep_tick)

    async def _sweep_tick(self) -> None:
        if not self._running:
            return
        try:
            await self.sweep()
        finally:
            if self._running:
                self._schedule_sweep()

    async def stop(self) -> None:
        """Stop sweeping and flush every pending group once."""

        self._running = False
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None
        for group_id in list(self._groups):
            await self.flush(group_id, reason="shutdown")
