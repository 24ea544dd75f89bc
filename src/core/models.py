"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

if TYPE_CHECKING:
    from core.config import ChannelConfig


class MediaKind(str, Enum):
    """Closed set of media kinds, resolved once at ingestion."""

    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"


@dataclass(frozen=True)
class MediaRef:
    """Opaque reference to a downloadable media item.

    ``handle`` is whatever the downloader adapter needs (a Telethon message
    in production) and is never inspected by the core.
    """

    kind: MediaKind
    handle: Any
    file_name: Optional[str] = None


@dataclass(frozen=True)
class SourceMessage:
    """Immutable inbound post from a monitored channel."""

    message_id: int
    source_channel_id: str
    text: Optional[str]
    media: Tuple[MediaRef, ...] = ()
    group_id: Optional[str] = None
    date: Optional[datetime] = None


@dataclass(frozen=True)
class Price:
    """Extracted price with the markup applied to ``final``."""

    original: float
    currency: str
    markup_percent: float = 0.0
    final: Optional[float] = None

    def __post_init__(self) -> None:
        if self.final is None:
            object.__setattr__(self, "final", self.original)


@dataclass(frozen=True)
class ProcessedContent:
    """Result of running the extractor over one SourceMessage."""

    item_name: str
    price: Optional[Price]
    media: Tuple[MediaRef, ...]
    group_id: Optional[str] = None


@dataclass(frozen=True)
class Destination:
    """Destination chat and optional forum topic."""

    chat_id: int
    topic_id: Optional[int] = None


@dataclass(frozen=True)
class MediaPayload:
    """Downloaded media ready to be sent."""

    data: bytes
    kind: MediaKind
    caption: Optional[str] = None
    file_name: Optional[str] = None


@dataclass
class MediaGroupAccumulator:
    """Mutable state for one album while it is being collected."""

    group_id: str
    channel: ChannelConfig
    destination: Destination
    created_at: float
    media: List[MediaRef] = field(default_factory=list)
    text: str = ""
    price: Optional[Price] = None
    messages: List[SourceMessage] = field(default_factory=list)
    flush_scheduled: bool = False
    flushed: bool = False
    timer: Any = None
