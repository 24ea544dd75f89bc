"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from typing import Optional, Tuple

from telethon.tl.custom import Message
from telethon.tl.types import PeerChannel

from core.channel_ids import marked_channel_id
from core.models import MediaKind, MediaRef, SourceMessage


def source_channel_id_from_message(message: Message) -> Optional[str]:
    """Return the marked channel id, or None for non-channel peers."""

    peer_id = getattr(message, "peer_id", None)
    if not isinstance(peer_id, PeerChannel):
        return None
    return marked_channel_id(peer_id.channel_id)


def media_kind_of(message: Message) -> Optional[MediaKind]:
    """Resolve the media kind once; videos are documents too, so check them first."""

    if getattr(message, "photo", None):
        return MediaKind.PHOTO
    if getattr(message, "video", None):
        return MediaKind.VIDEO
    if getattr(message, "document", None):
        return MediaKind.DOCUMENT
    return None


def _file_name(message: Message) -> Optional[str]:
    file = getattr(message, "file", None)
    name = getattr(file, "name", None)
    return name if isinstance(name, str) and name else None


def _media_refs(message: Message) -> Tuple[MediaRef, ...]:
    kind = media_kind_of(message)
    if kind is None:
        return ()
    return (MediaRef(kind=kind, handle=message, file_name=_file_name(message)),)


def build_source_message(message: Message) -> Optional[SourceMessage]:
    """Build a core SourceMessage from a Telethon Message.

    Returns None for messages that do not come from a channel.
    """

    channel_id = source_channel_id_from_message(message)
    if channel_id is None:
        return None

    grouped_id = getattr(message, "grouped_id", None)
    return SourceMessage(
        message_id=message.id,
        source_channel_id=channel_id,
        text=message.raw_text or None,
        media=_media_refs(message),
        group_id=str(grouped_id) if grouped_id else None,
        date=getattr(message, "date", None),
    )
