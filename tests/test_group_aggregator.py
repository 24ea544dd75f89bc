from __future__ import annotations

import asyncio
from typing import Optional

from core.aggregator import GroupAggregator
from core.config import AggregationConfig, ChannelConfig
from core.models import (
    Destination,
    MediaGroupAccumulator,
    MediaKind,
    MediaRef,
    Price,
    ProcessedContent,
    SourceMessage,
)

CHANNEL = ChannelConfig(channel_id="-1001", name="Finds")
DESTINATION = Destination(chat_id=-1009, topic_id=5)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeTimer:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.clock.now + delay, callback)
        self.timers.append(timer)
        return timer

    async def advance_to(self, moment: float) -> None:
        while True:
            due = [
                timer
                for timer in self.timers
                if not timer.cancelled and not timer.fired and timer.due <= moment
            ]
            if not due:
                break
            timer = min(due, key=lambda item: item.due)
            self.clock.now = timer.due
            timer.fired = True
            await timer.callback()
        self.clock.now = moment


class FakeLedger:
    def __init__(self) -> None:
        self.marked: list[tuple[int, str]] = []

    def mark_processed(self, message_id: int, source_channel_id: str) -> None:
        self.marked.append((message_id, source_channel_id))


class FakePublisher:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[dict] = []

    async def publish_group(self, accumulator: MediaGroupAccumulator, destination: Destination) -> bool:
        self.calls.append(
            {
                "group_id": accumulator.group_id,
                "media": [ref.handle for ref in accumulator.media],
                "text": accumulator.text,
                "price": accumulator.price,
                "messages": [m.message_id for m in accumulator.messages],
                "destination": destination,
            }
        )
        await asyncio.sleep(0)
        return self.result


def _build(
    flush_window: float = 15.0,
    stale_after: float = 300.0,
    sweep_interval: float = 60.0,
    publisher: Optional[FakePublisher] = None,
):
    clock = FakeClock()
    scheduler = FakeScheduler(clock)
    ledger = FakeLedger()
    publisher = publisher or FakePublisher()
    aggregator = GroupAggregator(
        publisher=publisher,
        ledger=ledger,
        scheduler=scheduler,
        config=AggregationConfig(
            flush_window=flush_window,
            stale_after=stale_after,
            sweep_interval=sweep_interval,
        ),
        clock=clock,
    )
    return aggregator, scheduler, ledger, publisher


def _fragment(
    message_id: int,
    group_id: str = "g1",
    text: str = "",
    media: tuple = (),
    price: Optional[Price] = None,
) -> tuple[SourceMessage, ProcessedContent]:
    refs = tuple(MediaRef(MediaKind.PHOTO, handle) for handle in media)
    message = SourceMessage(
        message_id=message_id,
        source_channel_id="-1001",
        text=text or None,
        media=refs,
        group_id=group_id,
    )
    content = ProcessedContent(item_name=text, price=price, media=refs, group_id=group_id)
    return message, content


def _add(aggregator: GroupAggregator, *args, **kwargs) -> None:
    message, content = _fragment(*args, **kwargs)
    aggregator.add(message, content, CHANNEL, DESTINATION)


def test_fragments_within_window_publish_once() -> None:
    async def scenario() -> None:
        aggregator, scheduler, ledger, publisher = _build(flush_window=15.0)

        _add(aggregator, 1, text="Bag", media=("a",))
        await scheduler.advance_to(1)
        _add(aggregator, 2, text="NIKE Couple bag", media=("b",))
        await scheduler.advance_to(2)
        _add(aggregator, 3, text="Nike", media=("c",))

        # Every fragment is ledgered before the flush.
        assert ledger.marked == [(1, "-1001"), (2, "-1001"), (3, "-1001")]

        await scheduler.advance_to(14.9)
        assert publisher.calls == []

        await scheduler.advance_to(15)
        assert len(publisher.calls) == 1
        call = publisher.calls[0]
        assert call["media"] == ["a", "b", "c"]
        assert call["text"] == "NIKE Couple bag"
        assert call["messages"] == [1, 2, 3]
        assert call["destination"] == DESTINATION
        assert aggregator.pending_groups == []

        await scheduler.advance_to(100)
        assert len(publisher.calls) == 1

    asyncio.run(scenario())


def test_window_is_not_sliding() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=15.0)

        _add(aggregator, 1, media=("a",))
        await scheduler.advance_to(10)
        _add(aggregator, 2, media=("b",))

        await scheduler.advance_to(15)
        assert len(publisher.calls) == 1
        assert publisher.calls[0]["media"] == ["a", "b"]

    asyncio.run(scenario())


def test_first_price_is_kept() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=2.0)
        first = Price(original=10.0, currency="$")
        second = Price(original=99.0, currency="€")

        _add(aggregator, 1, media=("a",))
        _add(aggregator, 2, media=("b",), price=first)
        _add(aggregator, 3, media=("c",), price=second)

        await scheduler.advance_to(2)
        assert publisher.calls[0]["price"] == first

    asyncio.run(scenario())


def test_groups_are_independent() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=5.0)

        _add(aggregator, 1, group_id="g1", media=("a",))
        await scheduler.advance_to(3)
        _add(aggregator, 2, group_id="g2", media=("b",))

        await scheduler.advance_to(5)
        assert [call["group_id"] for call in publisher.calls] == ["g1"]
        await scheduler.advance_to(8)
        assert [call["group_id"] for call in publisher.calls] == ["g1", "g2"]

    asyncio.run(scenario())


def test_stale_sweep_flushes_once_and_cancels_timer() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(
            flush_window=600.0,
            stale_after=300.0,
            sweep_interval=60.0,
        )
        aggregator.start()

        _add(aggregator, 1, text="Jacket", media=("a",))
        window_timer = aggregator.get("g1").timer

        await scheduler.advance_to(240)
        assert publisher.calls == []

        await scheduler.advance_to(300)
        assert len(publisher.calls) == 1
        assert window_timer.cancelled
        assert aggregator.pending_groups == []

        # Even if the cancelled timer fires anyway, nothing is published again.
        await window_timer.callback()
        await scheduler.advance_to(1000)
        assert len(publisher.calls) == 1

        await aggregator.stop()

    asyncio.run(scenario())


def test_concurrent_timer_and_sweep_publish_once() -> None:
    async def scenario() -> None:
        aggregator, _, _, publisher = _build()
        _add(aggregator, 1, media=("a",))

        results = await asyncio.gather(
            aggregator.flush("g1", reason="window"),
            aggregator.flush("g1", reason="stale"),
        )

        assert sorted(results) == [False, True]
        assert len(publisher.calls) == 1

    asyncio.run(scenario())


def test_late_fragment_does_not_start_second_post() -> None:
    async def scenario() -> None:
        aggregator, scheduler, ledger, publisher = _build(flush_window=2.0)

        _add(aggregator, 1, media=("a",))
        await scheduler.advance_to(2)
        _add(aggregator, 2, media=("b",))
        await scheduler.advance_to(10)

        assert len(publisher.calls) == 1
        assert aggregator.pending_groups == []
        assert (2, "-1001") in ledger.marked

    asyncio.run(scenario())


def test_empty_group_is_dropped() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=2.0)

        _add(aggregator, 1)
        await scheduler.advance_to(2)

        assert publisher.calls == []
        assert aggregator.pending_groups == []

    asyncio.run(scenario())


def test_failed_publish_still_removes_group() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=2.0, publisher=FakePublisher(result=False))

        _add(aggregator, 1, text="Cap", media=("a",))
        await scheduler.advance_to(2)

        assert len(publisher.calls) == 1
        assert aggregator.pending_groups == []

    asyncio.run(scenario())


def test_stop_flushes_pending_groups() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=15.0)
        aggregator.start()

        _add(aggregator, 1, media=("a",))
        _add(aggregator, 2, group_id="g2", media=("b",))
        await aggregator.stop()

        assert sorted(call["group_id"] for call in publisher.calls) == ["g1", "g2"]
        await scheduler.advance_to(100)
        assert len(publisher.calls) == 2

    asyncio.run(scenario())


def test_group_with_only_a_price_is_published() -> None:
    async def scenario() -> None:
        aggregator, scheduler, _, publisher = _build(flush_window=2.0)

        _add(aggregator, 1, price=Price(original=27.0, currency="$"))
        await scheduler.advance_to(2)

        assert len(publisher.calls) == 1
        assert publisher.calls[0]["price"].original == 27.0

    asyncio.run(scenario())
