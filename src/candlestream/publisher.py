import asyncio
import itertools
from collections import defaultdict

from loguru import logger

from candlestream.aggregator import SeriesSnapshot

# Subscribing to this key delivers snapshots for every symbol.
ALL_SYMBOLS = "*"


class SeriesPublisher:
    """Distributes series snapshots to subscribers.

    Renderers, recorders and tests subscribe a queue per symbol and receive
    immutable `SeriesSnapshot` values whenever a series changes. Snapshots
    conflate: if a subscriber's queue is full, its oldest pending snapshot is
    dropped to make room for the newest one.
    """

    def __init__(self) -> None:
        # A mapping from symbol to a dict of {subscription_id: queue}
        self._subscriptions: defaultdict[
            str, dict[int, asyncio.Queue[SeriesSnapshot]]
        ] = defaultdict(dict)
        # A reverse mapping from subscription_id to its symbol key
        self._id_to_key: dict[int, str] = {}
        self._id_generator = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._id_to_key)

    def subscribe(self, symbol: str, queue: asyncio.Queue[SeriesSnapshot]) -> int:
        """Subscribes a queue to snapshots for `symbol` (or `ALL_SYMBOLS`).

        Returns:
            A unique subscription ID that can be used to unsubscribe.
        """
        sub_id = next(self._id_generator)
        self._subscriptions[symbol][sub_id] = queue
        self._id_to_key[sub_id] = symbol
        logger.info(f"New subscription (ID: {sub_id}) for {symbol}.")
        return sub_id

    def unsubscribe(self, sub_id: int) -> None:
        """Removes a subscription. Unknown IDs are logged and ignored."""
        if sub_id not in self._id_to_key:
            logger.warning(f"Attempted to unsubscribe with invalid ID: {sub_id}")
            return

        key = self._id_to_key.pop(sub_id)
        self._subscriptions[key].pop(sub_id, None)
        logger.info(f"Unsubscribed ID {sub_id} from {key}.")
        if not self._subscriptions[key]:
            del self._subscriptions[key]

    def publish(self, snapshot: SeriesSnapshot) -> None:
        """Delivers a snapshot to every matching subscriber without blocking."""
        queues = [
            *self._subscriptions.get(snapshot.symbol, {}).values(),
            *self._subscriptions.get(ALL_SYMBOLS, {}).values(),
        ]
        for queue in queues:
            try:
                queue.put_nowait(snapshot)
            except asyncio.QueueFull:  # noqa: PERF203
                # Only the latest snapshot matters; drop the oldest pending one.
                queue.get_nowait()
                queue.put_nowait(snapshot)
                logger.warning(
                    f"Subscriber queue for {snapshot.symbol} is full. "
                    "Dropped an older snapshot. This may indicate a slow consumer."
                )
