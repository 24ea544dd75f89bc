from __future__ import annotations

import asyncio
from typing import Optional

from adapters.channel_registry import ConfigChannelRegistry
from core.config import ChannelConfig
from core.dedup import DedupLedger
from core.errors import DuplicateRecordError, LedgerUnavailableError
from core.models import Destination, MediaKind, MediaRef, SourceMessage
from core.processor import MessageProcessor


class MemoryStorage:
    def __init__(self) -> None:
        self.records: list[tuple[int, str]] = []
        self.insert_down = False

    def exists_processed(self, message_id: int, source_channel_id: str) -> bool:
        return (message_id, source_channel_id) in self.records

    def insert_processed(self, message_id: int, source_channel_id: str) -> None:
        if self.insert_down:
            raise LedgerUnavailableError("read-only database")
        key = (message_id, source_channel_id)
        if key in self.records:
            raise DuplicateRecordError(str(key))
        self.records.append(key)


class FakePublisher:
    def __init__(self, result: bool = True, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    async def publish_single(self, content, destination, channel=None, ref="message") -> bool:
        self.calls.append((content, destination, channel, ref))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


class FakeAggregator:
    def __init__(self, ledger: DedupLedger) -> None:
        self.ledger = ledger
        self.added: list[tuple] = []

    def add(self, message, content, channel, destination) -> None:
        self.ledger.mark_processed(message.message_id, message.source_channel_id)
        self.added.append((message, content, channel, destination))


CHANNELS = [
    ChannelConfig(channel_id="-1001234", name="Finds", destination_topic=7),
    ChannelConfig(channel_id="-1005678", name="Paused", active=False),
]


def _build(publisher: Optional[FakePublisher] = None):
    storage = MemoryStorage()
    ledger = DedupLedger(storage)
    aggregator = FakeAggregator(ledger)
    publisher = publisher or FakePublisher()
    processor = MessageProcessor(
        registry=ConfigChannelRegistry(CHANNELS),
        ledger=ledger,
        aggregator=aggregator,
        publisher=publisher,
        destination_chat_id=-1009999,
        default_markup=17,
    )
    return processor, storage, aggregator, publisher


def _message(
    message_id: int = 1,
    channel_id: str = "-1001234",
    text: Optional[str] = "Article: Belt\nPrice: $ 20",
    group_id: Optional[str] = None,
) -> SourceMessage:
    return SourceMessage(
        message_id=message_id,
        source_channel_id=channel_id,
        text=text,
        media=(MediaRef(MediaKind.PHOTO, f"photo-{message_id}"),),
        group_id=group_id,
    )


def test_single_message_is_published_and_ledgered() -> None:
    processor, storage, _, publisher = _build()

    asyncio.run(processor.handle(_message()))

    assert len(publisher.calls) == 1
    content, destination, channel, ref = publisher.calls[0]
    assert content.item_name == "Belt"
    assert content.price.final == 23.4
    assert destination == Destination(chat_id=-1009999, topic_id=7)
    assert channel.name == "Finds"
    assert ref == "message -1001234/1"
    assert storage.records == [(1, "-1001234")]


def test_repeated_delivery_publishes_once() -> None:
    processor, storage, _, publisher = _build()

    async def scenario() -> None:
        await processor.handle(_message())
        await processor.handle(_message())

    asyncio.run(scenario())

    assert len(publisher.calls) == 1
    assert storage.records == [(1, "-1001234")]


def test_concurrent_delivery_publishes_once() -> None:
    processor, storage, _, publisher = _build()

    async def scenario() -> None:
        await asyncio.gather(processor.handle(_message()), processor.handle(_message()))

    asyncio.run(scenario())

    assert len(publisher.calls) == 1
    assert storage.records == [(1, "-1001234")]


def test_same_id_from_other_channel_is_distinct() -> None:
    processor, storage, _, publisher = _build()
    registry_channels = CHANNELS + [ChannelConfig(channel_id="-1004321", name="Other")]
    processor._registry = ConfigChannelRegistry(registry_channels)

    async def scenario() -> None:
        await processor.handle(_message(channel_id="-1001234"))
        await processor.handle(_message(channel_id="-1004321"))

    asyncio.run(scenario())

    assert len(publisher.calls) == 2
    assert storage.records == [(1, "-1001234"), (1, "-1004321")]


def test_unmonitored_and_inactive_channels_are_ignored() -> None:
    processor, storage, aggregator, publisher = _build()

    async def scenario() -> None:
        await processor.handle(_message(channel_id="-1000000000042"))
        await processor.handle(_message(channel_id="-1005678"))

    asyncio.run(scenario())

    assert publisher.calls == []
    assert aggregator.added == []
    assert storage.records == []


def test_grouped_message_goes_to_aggregator() -> None:
    processor, storage, aggregator, publisher = _build()

    asyncio.run(processor.handle(_message(group_id="777")))

    assert publisher.calls == []
    assert len(aggregator.added) == 1
    message, content, channel, destination = aggregator.added[0]
    assert content.group_id == "777"
    assert destination.topic_id == 7
    assert storage.records == [(1, "-1001234")]


def test_failed_publish_is_still_ledgered() -> None:
    processor, storage, _, publisher = _build(FakePublisher(result=False))

    asyncio.run(processor.handle(_message()))
    asyncio.run(processor.handle(_message()))

    assert len(publisher.calls) == 1
    assert storage.records == [(1, "-1001234")]


def test_publisher_crash_does_not_escape_handle() -> None:
    processor, storage, _, _ = _build(FakePublisher(error=RuntimeError("boom")))

    asyncio.run(processor.handle(_message()))

    assert storage.records == [(1, "-1001234")]


def test_ledger_write_failure_is_logged_not_raised(caplog) -> None:
    processor, storage, _, publisher = _build()
    storage.insert_down = True

    asyncio.run(processor.handle(_message()))

    assert len(publisher.calls) == 1
    assert storage.records == []
    assert "Could not ledger message -1001234/1" in caplog.text


def test_message_without_media_or_name_is_skipped() -> None:
    processor, storage, _, publisher = _build()
    empty = SourceMessage(message_id=3, source_channel_id="-1001234", text=None)

    asyncio.run(processor.handle(empty))

    assert publisher.calls == []
    assert storage.records == []


def test_priced_message_without_name_is_published() -> None:
    processor, storage, _, publisher = _build()
    priced = SourceMessage(message_id=9, source_channel_id="-1001234", text="💰 Price: $ 27")

    asyncio.run(processor.handle(priced))

    assert len(publisher.calls) == 1
    content = publisher.calls[0][0]
    assert content.item_name == ""
    assert content.price.final == 31.59
    assert storage.records == [(9, "-1001234")]


def test_text_without_extractable_fields_is_still_published() -> None:
    processor, storage, _, publisher = _build()
    plain = SourceMessage(message_id=4, source_channel_id="-1001234", text="Join our Telegram")

    asyncio.run(processor.handle(plain))

    assert len(publisher.calls) == 1
    assert publisher.calls[0][0].item_name == ""
    assert storage.records == [(4, "-1001234")]
