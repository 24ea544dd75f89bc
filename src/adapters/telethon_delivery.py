"""Telethon user-client delivery adapter.

Sends to the destination chat with the logged-in user account and downloads
source media into memory. Forum topics are addressed by replying to the
topic's root message, which is how Telethon posts into a topic.
"""

from __future__ import annotations

import asyncio
import io
from typing import Callable, List, Optional, Sequence

from telethon import TelegramClient, errors

from core.errors import MediaRetrievalError, StructuralDeliveryError, TransientDeliveryError
from core.models import Destination, MediaKind, MediaPayload, MediaRef

DEFAULT_FILE_NAMES = {
    MediaKind.PHOTO: "photo.jpg",
    MediaKind.VIDEO: "video.mp4",
    MediaKind.DOCUMENT: "document.bin",
}


def _as_file(data: bytes, kind: MediaKind, file_name: Optional[str]) -> io.BytesIO:
    # Telethon infers the upload type from the buffer's name.
    buffer = io.BytesIO(data)
    buffer.name = file_name or DEFAULT_FILE_NAMES[kind]
    return buffer


def translate_telethon_error(exc: Exception) -> Exception:
    """Map Telethon/network errors to the core delivery taxonomy."""

    if isinstance(exc, errors.FloodWaitError):
        return TransientDeliveryError(f"flood wait {exc.seconds}s")
    if isinstance(exc, errors.BadRequestError):
        return StructuralDeliveryError(str(exc))
    return TransientDeliveryError(str(exc))


_DELIVERY_ERRORS = (errors.RPCError, OSError, asyncio.TimeoutError)


class TelethonDelivery:
    """DeliveryPort implementation using a Telethon TelegramClient."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def _call(self, send: Callable):
        try:
            return await send()
        except _DELIVERY_ERRORS as exc:
            raise translate_telethon_error(exc) from exc

    async def send_text(self, destination: Destination, caption: str) -> int:
        message = await self._call(
            lambda: self._client.send_message(destination.chat_id, caption, reply_to=destination.topic_id)
        )
        return message.id

    async def send_media(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        caption: Optional[str],
        file_name: Optional[str] = None,
    ) -> int:
        message = await self._call(
            lambda: self._client.send_file(
                destination.chat_id,
                _as_file(data, kind, file_name),
                caption=caption or "",
                reply_to=destination.topic_id,
                force_document=kind is MediaKind.DOCUMENT,
            )
        )
        return message.id

    async def send_media_batch(self, destination: Destination, items: Sequence[MediaPayload]) -> List[int]:
        files = [_as_file(item.data, item.kind, item.file_name) for item in items]
        captions = [item.caption or "" for item in items]
        messages = await self._call(
            lambda: self._client.send_file(
                destination.chat_id,
                files,
                caption=captions,
                reply_to=destination.topic_id,
            )
        )
        if not isinstance(messages, list):
            messages = [messages]
        return [message.id for message in messages]

    async def send_media_as_reply(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        reply_to_message_id: int,
        file_name: Optional[str] = None,
    ) -> int:
        message = await self._call(
            lambda: self._client.send_file(
                destination.chat_id,
                _as_file(data, kind, file_name),
                reply_to=reply_to_message_id,
                force_document=kind is MediaKind.DOCUMENT,
            )
        )
        return message.id


class TelethonMediaDownloader:
    """MediaDownloaderPort implementation: ``handle`` is a Telethon Message."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def download(self, media: MediaRef) -> bytes:
        # Any failure here costs only this item, never the whole album.
        try:
            data = await self._client.download_media(media.handle, file=bytes)
        except Exception as exc:
            raise MediaRetrievalError(f"{type(exc).__name__}: {exc}") from exc
        if not data:
            raise MediaRetrievalError("download returned no data")
        return data
