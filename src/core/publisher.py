"""Publication of processed items to the destination surface.

Delivery is a two-stage pipeline. Every send goes through ``_deliver``,
which retries transient failures with linear backoff and reports a
``DeliveryOutcome``. Albums try one batched send first; only a structural
outcome routes them to the sequential fallback, where the first item
carries the caption and the rest are sent as replies to it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from core.captions import DEFAULT_ITEM_NAME, build_caption
from core.config import ChannelConfig, RetryConfig
from core.errors import MediaRetrievalError, StructuralDeliveryError, TransientDeliveryError
from core.models import (
    Destination,
    MediaGroupAccumulator,
    MediaPayload,
    MediaRef,
    ProcessedContent,
)
from core.ports import DeliveryPort, MediaDownloaderPort

LOGGER = logging.getLogger(__name__)

SendCall = Callable[[], Awaitable[Union[int, List[int]]]]


class DeliveryOutcome(Enum):
    DELIVERED = "delivered"
    STRUCTURAL_FAILURE = "structural_failure"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    message_ids: List[int] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED


class PublishPipeline:
    """Sends single items and albums with retries and album fallback."""

    def __init__(
        self,
        delivery: DeliveryPort,
        downloader: MediaDownloaderPort,
        retry: RetryConfig,
        default_caption: str = DEFAULT_ITEM_NAME,
        show_markup: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._delivery = delivery
        self._downloader = downloader
        self._retry = retry
        self._default_caption = default_caption
        self._show_markup = show_markup
        self._sleep = sleep

    async def _deliver(self, send: SendCall, ref: str, what: str) -> DeliveryResult:
        attempts = max(1, self._retry.attempts)
        for attempt in range(1, attempts + 1):
            try:
                sent = await send()
            except StructuralDeliveryError as exc:
                LOGGER.warning("Destination rejected %s for %s: %s", what, ref, exc)
                return DeliveryResult(DeliveryOutcome.STRUCTURAL_FAILURE)
            except TransientDeliveryError as exc:
                LOGGER.warning("Attempt %s/%s to send %s for %s failed: %s", attempt, attempts, what, ref, exc)
                if attempt < attempts:
                    await self._sleep(self._retry.delay * attempt)
                continue
            message_ids = list(sent) if isinstance(sent, (list, tuple)) else [sent]
            return DeliveryResult(DeliveryOutcome.DELIVERED, message_ids)
        return DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE)

    async def _retrieve(self, media: MediaRef, ref: str) -> Optional[MediaPayload]:
        try:
            data = await self._downloader.download(media)
        except MediaRetrievalError as exc:
            LOGGER.warning("Could not download %s for %s, skipping it: %s", media.kind.value, ref, exc)
            return None
        return MediaPayload(data=data, kind=media.kind, file_name=media.file_name)

    async def _send_one(
        self,
        payload: Optional[MediaPayload],
        caption: str,
        destination: Destination,
        ref: str,
    ) -> DeliveryResult:
        if payload is None:
            return await self._deliver(partial(self._delivery.send_text, destination, caption), ref, "text")
        send = partial(
            self._delivery.send_media,
            destination,
            payload.data,
            payload.kind,
            caption,
            payload.file_name,
        )
        return await self._deliver(send, ref, payload.kind.value)

    async def publish_single(
        self,
        content: ProcessedContent,
        destination: Destination,
        channel: Optional[ChannelConfig] = None,
        ref: str = "message",
    ) -> bool:
        """Publish one non-grouped item as text or as a single media post."""

        caption = build_caption(
            content.item_name, content.price, channel, self._default_caption, self._show_markup
        )
        payload = None
        if content.media:
            if len(content.media) > 1:
                LOGGER.warning("%s carries %s media items, sending only the first", ref, len(content.media))
            payload = await self._retrieve(content.media[0], ref)
            if payload is None:
                if not content.item_name and content.price is None:
                    LOGGER.warning("%s has no media and no text left, dropping it", ref)
                    return False
                LOGGER.warning("Publishing %s as text only", ref)

        result = await self._send_one(payload, caption, destination, ref)
        if result.delivered:
            LOGGER.info("Published %s as message %s", ref, result.message_ids[0])
            return True
        LOGGER.error("Publishing %s failed (%s)", ref, result.outcome.value)
        return False

    async def publish_group(self, accumulator: MediaGroupAccumulator, destination: Destination) -> bool:
        """Publish an aggregated album.

        Media that fail to download are left out. One surviving item goes
        through the single-item path; several go out as one batch, falling
        back to sequential sends when the batch shape is rejected.
        """

        ref = f"group {accumulator.group_id}"
        caption = build_caption(
            accumulator.text,
            accumulator.price,
            accumulator.channel,
            self._default_caption,
            self._show_markup,
        )

        payloads: List[MediaPayload] = []
        for media in accumulator.media:
            payload = await self._retrieve(media, ref)
            if payload is not None:
                payloads.append(payload)

        if not payloads:
            if not accumulator.text and accumulator.price is None:
                LOGGER.warning("%s has no media and no text left, dropping it", ref)
                return False
            if accumulator.media:
                LOGGER.warning("No media of %s could be downloaded, publishing text only", ref)

        if len(payloads) <= 1:
            result = await self._send_one(payloads[0] if payloads else None, caption, destination, ref)
            if result.delivered:
                LOGGER.info("Published %s as message %s", ref, result.message_ids[0])
                return True
            LOGGER.error("Publishing %s failed (%s)", ref, result.outcome.value)
            return False

        result = await self._attempt_batch(payloads, caption, destination, ref)
        if result.delivered:
            LOGGER.info("Published %s as album of %s items", ref, len(payloads))
            return True
        if result.outcome is DeliveryOutcome.STRUCTURAL_FAILURE:
            LOGGER.info("Falling back to sequential delivery for %s", ref)
            return await self._attempt_sequential(payloads, caption, destination, ref)
        LOGGER.error("Publishing %s failed (%s)", ref, result.outcome.value)
        return False

    async def _attempt_batch(
        self,
        payloads: Sequence[MediaPayload],
        caption: str,
        destination: Destination,
        ref: str,
    ) -> DeliveryResult:
        items = [replace(payloads[0], caption=caption)] + [replace(p, caption=None) for p in payloads[1:]]
        return await self._deliver(partial(self._delivery.send_media_batch, destination, items), ref, "album")

    async def _attempt_sequential(
        self,
        payloads: Sequence[MediaPayload],
        caption: str,
        destination: Destination,
        ref: str,
    ) -> bool:
        head = await self._send_one(payloads[0], caption, destination, ref)
        if not head.delivered:
            LOGGER.error("Sequential delivery of %s failed on the first item (%s)", ref, head.outcome.value)
            return False

        reply_to = head.message_ids[0]
        sent = 1
        total = len(payloads)
        for index, payload in enumerate(payloads[1:], start=2):
            send = partial(
                self._delivery.send_media_as_reply,
                destination,
                payload.data,
                payload.kind,
                reply_to,
                payload.file_name,
            )
            result = await self._deliver(send, ref, f"album item {index}/{total}")
            if result.delivered:
                sent += 1
            else:
                LOGGER.warning("Skipped album item %s/%s of %s", index, total, ref)

        LOGGER.info("Sequential delivery of %s sent %s/%s items", ref, sent, total)
        return True
