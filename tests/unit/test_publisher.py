import asyncio
from datetime import datetime, timezone

import pytest

from candlestream.aggregator import SeriesSnapshot
from candlestream.models import Candle
from candlestream.publisher import ALL_SYMBOLS, SeriesPublisher

T0 = datetime(2024, 12, 26, 10, 0, tzinfo=timezone.utc)


def create_snapshot(symbol: str, generation: int = 1) -> SeriesSnapshot:
    """Helper to create a one-candle snapshot."""
    candle = Candle(time=T0, open="1", high="2", low="1", close="2")
    return SeriesSnapshot(
        symbol=symbol,
        timeframe="1h",
        ready=True,
        generation=generation,
        candles=(candle,),
    )


@pytest.fixture()
def publisher() -> SeriesPublisher:
    return SeriesPublisher()


def test_subscriber_receives_matching_symbol_only(publisher: SeriesPublisher) -> None:
    btc_q: asyncio.Queue[SeriesSnapshot] = asyncio.Queue()
    eth_q: asyncio.Queue[SeriesSnapshot] = asyncio.Queue()
    publisher.subscribe("BTCUSDT", btc_q)
    publisher.subscribe("ETHUSDT", eth_q)

    snapshot = create_snapshot("BTCUSDT")
    publisher.publish(snapshot)

    assert btc_q.get_nowait() is snapshot
    assert eth_q.empty()


def test_wildcard_subscriber_receives_everything(publisher: SeriesPublisher) -> None:
    all_q: asyncio.Queue[SeriesSnapshot] = asyncio.Queue()
    publisher.subscribe(ALL_SYMBOLS, all_q)

    publisher.publish(create_snapshot("BTCUSDT"))
    publisher.publish(create_snapshot("ETHUSDT"))

    assert all_q.qsize() == 2
    assert all_q.get_nowait().symbol == "BTCUSDT"
    assert all_q.get_nowait().symbol == "ETHUSDT"


def test_unsubscribe_stops_delivery(publisher: SeriesPublisher) -> None:
    queue: asyncio.Queue[SeriesSnapshot] = asyncio.Queue()
    sub_id = publisher.subscribe("BTCUSDT", queue)
    assert publisher.subscriber_count == 1

    publisher.unsubscribe(sub_id)
    publisher.publish(create_snapshot("BTCUSDT"))

    assert queue.empty()
    assert publisher.subscriber_count == 0


def test_unsubscribe_unknown_id_is_ignored(publisher: SeriesPublisher) -> None:
    publisher.unsubscribe(999)
    assert publisher.subscriber_count == 0


def test_subscription_ids_are_unique(publisher: SeriesPublisher) -> None:
    ids = {publisher.subscribe("BTCUSDT", asyncio.Queue()) for _ in range(5)}
    assert len(ids) == 5


def test_full_queue_keeps_the_newest_snapshot(publisher: SeriesPublisher) -> None:
    """A slow consumer sees the latest state, not a backlog."""
    queue: asyncio.Queue[SeriesSnapshot] = asyncio.Queue(maxsize=1)
    publisher.subscribe("BTCUSDT", queue)

    publisher.publish(create_snapshot("BTCUSDT", generation=1))
    publisher.publish(create_snapshot("BTCUSDT", generation=2))
    publisher.publish(create_snapshot("BTCUSDT", generation=3))

    assert queue.qsize() == 1
    assert queue.get_nowait().generation == 3
