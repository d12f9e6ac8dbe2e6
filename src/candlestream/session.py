import asyncio
import contextlib
from collections.abc import Callable, Coroutine
from typing import Any

from loguru import logger

from candlestream.adapters.base import HistoricalDataSource, LiveFeedSource
from candlestream.aggregator import (
    CandleStreamAggregator,
    SeriesSnapshot,
    UpdateOutcome,
)
from candlestream.errors import (
    CandleStreamError,
    SnapshotFetchError,
    SubscriptionError,
)
from candlestream.models import DEFAULT_TIMEFRAME, TimeframeConfig, get_timeframe
from candlestream.publisher import SeriesPublisher
from candlestream.utils.time import utc_now

ErrorCallback = Callable[[CandleStreamError], None]


class ChartSession:
    """Keeps one symbol's candle series current.

    The session owns a `CandleStreamAggregator` and drives it from two
    collaborators: a historical source for the snapshot and a live feed for
    incremental updates. Both run as background tasks bound to the
    aggregator's current generation. Switching timeframe cancels the previous
    generation's tasks right after the series is cleared and starts fresh
    ones, and the generation token turns any result that still slips through
    into a no-op.

    All aggregator calls happen on the event loop thread and none of them
    await, so they never interleave.

    Snapshot and subscription failures are logged, kept in `last_error` and
    passed to `on_error`. They never stop the session.
    """

    def __init__(
        self,
        symbol: str,
        history: HistoricalDataSource,
        feed: LiveFeedSource,
        timeframe: TimeframeConfig | None = None,
        publisher: SeriesPublisher | None = None,
        snapshot_refresh_seconds: float = 0.0,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Initializes the session.

        Args:
            symbol: The trading pair symbol (e.g., "BTCUSDT").
            history: Source of historical snapshots.
            feed: Source of live candles.
            timeframe: The initial timeframe. Defaults to the "7d" preset.
            publisher: Receives a snapshot after every change to the series.
            snapshot_refresh_seconds: If positive, the snapshot is re-fetched
                on this period. A failed initial load is retried the same way.
            on_error: Called with snapshot and subscription errors.
        """
        self.symbol = symbol
        self.aggregator = CandleStreamAggregator(
            symbol, timeframe or get_timeframe(DEFAULT_TIMEFRAME)
        )
        self.aggregator.add_switch_listener(self._on_timeframe_switched)
        self.snapshot_refresh_seconds = snapshot_refresh_seconds
        self.on_error = on_error
        self.last_error: CandleStreamError | None = None
        self._history = history
        self._feed = feed
        self._publisher = publisher
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = asyncio.Event()
        self._ready = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        """Starts loading the snapshot and consuming the live feed."""
        if self._running.is_set():
            logger.warning(f"[{self.symbol}] Chart session is already running.")
            return
        self._running.set()
        self._activate(self.aggregator.active_config)
        logger.info(f"[{self.symbol}] Chart session started.")

    async def stop(self) -> None:
        """Cancels the live subscription and background loads, then clears state."""
        if not self._running.is_set():
            logger.warning(f"[{self.symbol}] Chart session is not running.")
            return

        logger.info(f"[{self.symbol}] Stopping chart session...")
        self._running.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.aggregator.reset()
        self._ready.clear()
        logger.info(f"[{self.symbol}] Chart session stopped.")

    def select_timeframe(self, timeframe: str | TimeframeConfig) -> TimeframeConfig:
        """Switches to another timeframe, by preset label or explicit config.

        Raises:
            UnknownTimeframeError: If a label does not match any preset.
        """
        config = get_timeframe(timeframe) if isinstance(timeframe, str) else timeframe
        self.aggregator.switch_timeframe(config)
        return config

    async def reload(self) -> None:
        """Fetches and applies a fresh snapshot for the active timeframe.

        Raises:
            SnapshotFetchError: If the fetch fails. The series is left as is.
        """
        await self._load_snapshot(
            self.aggregator.generation, self.aggregator.active_config
        )

    async def wait_ready(self) -> SeriesSnapshot:
        """Waits until a snapshot has loaded for the active timeframe."""
        await self._ready.wait()
        return self.aggregator.snapshot()

    def _on_timeframe_switched(self, config: TimeframeConfig) -> None:
        self._ready.clear()
        self._publish()
        if not self._running.is_set():
            return
        for task in list(self._tasks):
            task.cancel()
        self._activate(config)

    def _activate(self, config: TimeframeConfig) -> None:
        generation = self.aggregator.generation
        self._spawn(self._initial_load(generation, config))
        self._spawn(self._consume_live(generation, config))
        if self.snapshot_refresh_seconds > 0:
            self._spawn(self._refresh_loop(generation, config))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(
                f"[{self.symbol}] Unexpected error in chart session task."
            )

    async def _load_snapshot(self, generation: int, config: TimeframeConfig) -> None:
        candles = await self._history.fetch_candles(
            self.symbol, config.bucket_interval, config.window_limit, utc_now()
        )
        if self.aggregator.load_snapshot(candles, generation=generation):
            self._ready.set()
            self._publish()

    async def _initial_load(self, generation: int, config: TimeframeConfig) -> None:
        try:
            await self._load_snapshot(generation, config)
        except SnapshotFetchError as e:
            self._report(e)

    async def _refresh_loop(self, generation: int, config: TimeframeConfig) -> None:
        while True:
            await asyncio.sleep(self.snapshot_refresh_seconds)
            try:
                await self._load_snapshot(generation, config)
            except SnapshotFetchError as e:
                self._report(e)

    async def _consume_live(self, generation: int, config: TimeframeConfig) -> None:
        stream = self._feed.subscribe(self.symbol, config.bucket_interval)
        try:
            async with contextlib.aclosing(stream):
                async for candle in stream:
                    outcome = self.aggregator.apply_live_update(
                        candle, generation=generation
                    )
                    if outcome is UpdateOutcome.STALE:
                        break
                    if outcome.changed:
                        self._publish()
        except SubscriptionError as e:
            self._report(e)

    def _publish(self) -> None:
        if self._publisher is not None:
            self._publisher.publish(self.aggregator.snapshot())

    def _report(self, error: CandleStreamError) -> None:
        self.last_error = error
        logger.error(f"[{self.symbol}] {error.message}")
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception(f"[{self.symbol}] Error callback failed.")
