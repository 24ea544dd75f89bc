"""Telegram Bot API delivery adapter.

Publishes through a bot so posts in the destination appear under the bot's
name. Media bytes are uploaded directly; nothing is forwarded.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from telegram import (
    Bot,
    InputMediaDocument,
    InputMediaPhoto,
    InputMediaVideo,
    ReplyParameters,
)
from telegram.constants import ChatMemberStatus
from telegram.error import BadRequest, RetryAfter, TelegramError

from core.errors import StructuralDeliveryError, TransientDeliveryError
from core.models import Destination, MediaKind, MediaPayload

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_INPUT_MEDIA = {
    MediaKind.PHOTO: InputMediaPhoto,
    MediaKind.VIDEO: InputMediaVideo,
    MediaKind.DOCUMENT: InputMediaDocument,
}


def translate_bot_error(exc: TelegramError) -> Exception:
    """Map python-telegram-bot errors to the core delivery taxonomy."""

    if isinstance(exc, RetryAfter):
        return TransientDeliveryError(f"retry after {exc.retry_after}s")
    # BadRequest subclasses NetworkError, so it has to be checked first.
    if isinstance(exc, BadRequest):
        return StructuralDeliveryError(exc.message)
    return TransientDeliveryError(str(exc))


class BotApiDelivery:
    """DeliveryPort implementation backed by ``telegram.Bot``."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def initialize(self) -> None:
        await self._bot.initialize()

    async def shutdown(self) -> None:
        await self._bot.shutdown()

    async def check_destination(self, chat_id: int) -> bool:
        """Log whether the bot can post to ``chat_id`` as an administrator.

        Only warns: posting may still work in groups that allow members to
        send media. Returns True when the bot is an administrator or owner.
        """

        try:
            chat = await self._bot.get_chat(chat_id)
            member = await self._bot.get_chat_member(chat_id, self._bot.id)
        except TelegramError as exc:
            LOGGER.error("Could not check bot access to destination %s: %s", chat_id, exc)
            return False

        LOGGER.info("Bot has access to destination %s (status: %s)", chat.title or chat_id, member.status)
        if member.status not in (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER):
            LOGGER.warning("Bot is not an administrator of destination %s, posting may fail", chat_id)
            return False
        return True

    async def _call(self, send: Callable[[], Awaitable[T]]) -> T:
        try:
            return await send()
        except TelegramError as exc:
            raise translate_bot_error(exc) from exc

    def _send_media_call(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        caption: Optional[str],
        file_name: Optional[str],
        reply_to_message_id: Optional[int] = None,
    ):
        reply_parameters = (
            ReplyParameters(message_id=reply_to_message_id) if reply_to_message_id is not None else None
        )
        common = {
            "chat_id": destination.chat_id,
            "caption": caption,
            "message_thread_id": destination.topic_id,
            "reply_parameters": reply_parameters,
        }
        if kind is MediaKind.PHOTO:
            return lambda: self._bot.send_photo(photo=data, filename=file_name, **common)
        if kind is MediaKind.VIDEO:
            return lambda: self._bot.send_video(video=data, filename=file_name, **common)
        return lambda: self._bot.send_document(document=data, filename=file_name, **common)

    async def send_text(self, destination: Destination, caption: str) -> int:
        message = await self._call(
            lambda: self._bot.send_message(
                chat_id=destination.chat_id,
                text=caption,
                message_thread_id=destination.topic_id,
            )
        )
        return message.message_id

    async def send_media(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        caption: Optional[str],
        file_name: Optional[str] = None,
    ) -> int:
        message = await self._call(self._send_media_call(destination, data, kind, caption, file_name))
        return message.message_id

    async def send_media_batch(self, destination: Destination, items: Sequence[MediaPayload]) -> List[int]:
        media = [
            _INPUT_MEDIA[item.kind](media=item.data, caption=item.caption, filename=item.file_name)
            for item in items
        ]
        messages = await self._call(
            lambda: self._bot.send_media_group(
                chat_id=destination.chat_id,
                media=media,
                message_thread_id=destination.topic_id,
            )
        )
        return [message.message_id for message in messages]

    async def send_media_as_reply(
        self,
        destination: Destination,
        data: bytes,
        kind: MediaKind,
        reply_to_message_id: int,
        file_name: Optional[str] = None,
    ) -> int:
        message = await self._call(
            self._send_media_call(destination, data, kind, None, file_name, reply_to_message_id)
        )
        return message.message_id
