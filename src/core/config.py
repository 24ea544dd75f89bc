"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from core.channel_ids import normalize_channel_id
from core.models import MediaKind

DEFAULT_MEDIA_TYPES = {"photo": True, "video": False, "document": False}


@dataclass(frozen=True)
class ChannelConfig:
    """Monitoring settings for one source channel."""

    channel_id: str
    name: str = ""
    active: bool = True
    include_text: bool = True
    include_price: bool = True
    media_kinds: FrozenSet[MediaKind] = frozenset({MediaKind.PHOTO})
    price_pattern: Optional[str] = None
    destination_topic: Optional[int] = None
    markup_percent: Optional[float] = None
    show_source: bool = False


@dataclass(frozen=True)
class AggregationConfig:
    """Album collection timings, in seconds."""

    flush_window: float = 2.0
    stale_after: float = 300.0
    sweep_interval: float = 60.0


@dataclass(frozen=True)
class RetryConfig:
    """Delivery retry budget with linear backoff."""

    attempts: int = 3
    delay: float = 1.0


@dataclass(frozen=True)
class DedupConfig:
    """Ledger retention settings."""

    ttl_days: int


def _media_kinds(raw: Optional[dict]) -> FrozenSet[MediaKind]:
    flags = dict(DEFAULT_MEDIA_TYPES)
    flags.update(raw or {})
    # Accept both singular and plural keys ("photo" / "photos").
    kinds = set()
    for kind in MediaKind:
        if flags.get(kind.value, flags.get(f"{kind.value}s", False)):
            kinds.add(kind)
    return frozenset(kinds)


def build_channel_configs(channels_config: Iterable[dict]) -> List[ChannelConfig]:
    """Normalize channel entries from config.json.

    Entries without a ``channel_id`` are skipped. Inactive entries are kept
    so the registry can tell "inactive" from "unknown" at debug level.
    """

    configs: List[ChannelConfig] = []
    for entry in channels_config:
        raw_id = entry.get("channel_id")
        if raw_id in (None, ""):
            continue
        topic = entry.get("destination_topic")
        markup = entry.get("markup_percent")
        media_types = entry.get("media_types")
        configs.append(
            ChannelConfig(
                channel_id=normalize_channel_id(raw_id),
                name=entry.get("name", ""),
                active=bool(entry.get("active", True)),
                include_text=bool(entry.get("include_text", True)),
                include_price=bool(entry.get("include_price", True)),
                media_kinds=_media_kinds(media_types if isinstance(media_types, dict) else None),
                price_pattern=entry.get("price_regex") or None,
                destination_topic=int(topic) if topic is not None else None,
                markup_percent=float(markup) if markup is not None else None,
                show_source=bool(entry.get("show_source", False)),
            )
        )
    return configs
