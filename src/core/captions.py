"""Caption construction for republished posts.

Captions are deterministic: item name, optional price line, optional source
line, always in that order and separated by blank lines. The price line can
carry a second line noting the applied markup.
"""

from __future__ import annotations

from typing import Optional

from core.config import ChannelConfig
from core.models import Price

DEFAULT_ITEM_NAME = "New product available"


def format_price_line(price: Price, show_markup: bool = False) -> str:
    line = f"💰 Price: {price.final:.2f} {price.currency}"
    if show_markup and price.markup_percent:
        line += f"\n📈 (+{price.markup_percent:g}% markup)"
    return line


def format_source_line(channel: Optional[ChannelConfig]) -> Optional[str]:
    """Return the attribution line when the channel asks for one."""

    if channel is None or not channel.show_source:
        return None
    label = channel.name or channel.channel_id
    return f"📢 Source: {label}"


def build_caption(
    item_name: Optional[str],
    price: Optional[Price],
    channel: Optional[ChannelConfig] = None,
    default_name: str = DEFAULT_ITEM_NAME,
    show_markup: bool = False,
) -> str:
    name = (item_name or "").strip() or default_name
    parts = [name]
    if price is not None:
        parts.append(format_price_line(price, show_markup))
    source_line = format_source_line(channel)
    if source_line:
        parts.append(source_line)
    return "\n\n".join(parts)
