"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, channel lookup, delivery,
media download and timers so that the core can be reused with different
backends and driven by fakes in tests.
"""

from __future__ import annotations

from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from core.config import ChannelConfig
from core.models import Destination, MediaKind, MediaPayload, MediaRef


class LedgerStoragePort(Protocol):
    """Persistence for (message_id, source_channel_id) records.

    ``insert_processed`` must raise ``DuplicateRecordError`` when the pair
    already exists and ``LedgerUnavailableError`` when the store is down.
    """

    def exists_processed(self, message_id: int, source_channel_id: str) -> bool:
        ...

    def insert_processed(self, message_id: int, source_channel_id: str) -> None:
        ...


class ChannelRegistryPort(Protocol):
    """Resolves a source channel id to its monitoring configuration."""

    def lookup(self, source_channel_id: str) -> Optional[ChannelConfig]:
        ...


class DeliveryPort(Protocol):
    """Send operations against the destination surface.

    Every method returns the delivered message id(s) and raises
    ``TransientDeliveryError`` or ``StructuralDeliveryError`` on failure.
    """

    async def send_text(self, destination: Destination, caption: str) -> int:
        ...

    async def send_media(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        caption: Optional[str],
        file_name: Optional[str] = None,
    ) -> int:
        ...

    async def send_media_batch(
        self, destination: Destination, items: Sequence[MediaPayload]
    ) -> List[int]:
        ...

    async def send_media_as_reply(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        reply_to_message_id: int,
        file_name: Optional[str] = None,
    ) -> int:
        ...


class MediaDownloaderPort(Protocol):
    """Fetches a media reference into memory or raises ``MediaRetrievalError``."""

    async def download(self, media: MediaRef) -> bytes:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class SchedulerPort(Protocol):
    """One-shot timers that run an async callback after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle:
        ...
