"""Helpers for working with Telegram channel identifiers.

Telegram exposes the same channel under several numeric forms: the bare
channel id (``1234``), the Bot API / marked peer id (``-1001234``) and, for
legacy groups, the negated chat id (``-1234``). Config files and events do
not agree on which one they use, so lookups go through these helpers.
"""

from __future__ import annotations

from typing import Union

CHANNEL_PREFIX = "-100"


def normalize_channel_id(raw_id: Union[int, str]) -> str:
    """Return the canonical string form of a channel id.

    Usernames are lower-cased and prefixed with ``@``; numeric ids are kept
    as given, stripped of whitespace.
    """

    text = str(raw_id).strip()
    if text.startswith("@"):
        return text.lower()
    if text.lstrip("-").isdigit():
        return str(int(text))
    return text


def marked_channel_id(channel_id: int) -> str:
    """Return the marked (``-100``-prefixed) id for a bare channel id."""

    return str(-1000000000000 - abs(channel_id))


def _expand_numeric_variants(raw_chat_id: int) -> set[int]:
    """Return equivalent chat id variants (peer id, chat id, channel id)."""

    variants: set[int] = {raw_chat_id}
    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith(CHANNEL_PREFIX):
            channel_part = raw_text[len(CHANNEL_PREFIX):]
            if channel_part.isdigit():
                variants.add(int(channel_part))
        else:
            variants.add(abs(raw_chat_id))
        return variants

    variants.add(-raw_chat_id)
    # Positive ids can be a PeerChat or a PeerChannel.
    variants.add(int(marked_channel_id(raw_chat_id)))
    return variants


def expand_channel_id_variants(raw_id: Union[int, str]) -> set[str]:
    """Expand a channel id to every equivalent numeric form."""

    channel_id = normalize_channel_id(raw_id)
    if channel_id.startswith("@"):
        return {channel_id}
    try:
        numeric = int(channel_id)
    except ValueError:
        return {channel_id}
    return {str(variant) for variant in _expand_numeric_variants(numeric)}
