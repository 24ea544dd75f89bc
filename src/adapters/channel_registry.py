"""Config-backed channel registry adapter.

Indexes every configured channel under all equivalent id forms so events
using bare, negated or -100 marked ids resolve to the same entry.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from core.channel_ids import expand_channel_id_variants, normalize_channel_id
from core.config import ChannelConfig

LOGGER = logging.getLogger(__name__)


class ConfigChannelRegistry:
    """In-memory ChannelRegistryPort built from config.json entries."""

    def __init__(self, channels: Iterable[ChannelConfig]) -> None:
        self._channels: List[ChannelConfig] = list(channels)
        self._index: Dict[str, ChannelConfig] = {}
        for channel in self._channels:
            for variant in expand_channel_id_variants(channel.channel_id):
                existing = self._index.get(variant)
                if existing is not None and existing.channel_id != channel.channel_id:
                    LOGGER.warning(
                        "Channel id %s is configured twice (%s, %s)",
                        variant,
                        existing.channel_id,
                        channel.channel_id,
                    )
                    continue
                self._index.setdefault(variant, channel)

    def lookup(self, source_channel_id: str) -> Optional[ChannelConfig]:
        return self._index.get(normalize_channel_id(source_channel_id))

    @property
    def active_channels(self) -> List[ChannelConfig]:
        return [channel for channel in self._channels if channel.active]
