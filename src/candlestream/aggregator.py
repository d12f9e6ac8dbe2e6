import enum
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from candlestream.models import Candle, TimeframeConfig

SwitchListener = Callable[[TimeframeConfig], None]


class UpdateOutcome(enum.Enum):
    """What `apply_live_update` did with a candle."""

    APPENDED = "appended"
    REPLACED = "replaced"
    OUT_OF_ORDER = "out_of_order"
    NOT_READY = "not_ready"
    STALE = "stale"
    REJECTED = "rejected"

    @property
    def changed(self) -> bool:
        """True if the series was modified."""
        return self in (UpdateOutcome.APPENDED, UpdateOutcome.REPLACED)


@dataclass
class AggregatorStats:
    """Running counters for a single aggregator instance."""

    snapshots_loaded: int = 0
    appended: int = 0
    replaced: int = 0
    evicted: int = 0
    out_of_order: int = 0
    dropped_not_ready: int = 0
    stale: int = 0
    rejected: int = 0


@dataclass(frozen=True, slots=True)
class SeriesSnapshot:
    """An immutable view of an aggregator's series at one point in time."""

    symbol: str
    timeframe: str
    ready: bool
    generation: int
    candles: tuple[Candle, ...]

    @property
    def last(self) -> Candle | None:
        return self.candles[-1] if self.candles else None


class CandleStreamAggregator:
    """Owns the candle series for one (symbol, timeframe) pair.

    The series is seeded by `load_snapshot` and then kept current by
    `apply_live_update`. It stays strictly increasing by time and never holds
    more than `active_config.window_limit` candles.

    Every operation takes the instance lock, so callers on different threads
    are serialized. None of the operations block on I/O.

    Each reset (timeframe switch or disposal) bumps `generation`. Callers
    that fetched or subscribed for an older generation pass their token back
    in, and their late results are ignored instead of landing in a series
    that now belongs to another timeframe.

    Live updates that arrive before the first snapshot has loaded are
    dropped (`UpdateOutcome.NOT_READY`), not buffered.
    """

    def __init__(self, symbol: str, config: TimeframeConfig) -> None:
        self.symbol = symbol
        self._config = config
        self._series: deque[Candle] = deque()
        self._ready = False
        self._generation = 0
        self._lock = threading.Lock()
        self._switch_listeners: list[SwitchListener] = []
        self.stats = AggregatorStats()
        logger.info(f"[{symbol}] Candle aggregator initialized for {config.label}.")

    @property
    def active_config(self) -> TimeframeConfig:
        return self._config

    @property
    def ready(self) -> bool:
        """False until the first snapshot for the active timeframe has loaded."""
        return self._ready

    @property
    def generation(self) -> int:
        return self._generation

    def add_switch_listener(self, listener: SwitchListener) -> None:
        """Registers a callback invoked with the new config after each switch."""
        self._switch_listeners.append(listener)

    def remove_switch_listener(self, listener: SwitchListener) -> None:
        if listener in self._switch_listeners:
            self._switch_listeners.remove(listener)

    def load_snapshot(
        self, candles: Iterable[Candle], generation: int | None = None
    ) -> bool:
        """Replaces the whole series with a historical snapshot.

        The input is sorted by time, duplicate times keep their last
        occurrence, and only the `window_limit` most recent candles are kept.
        Loading the same input twice yields the same series.

        Args:
            candles: Historical candles, in any order.
            generation: The generation the snapshot was requested for. If it
                no longer matches, the snapshot is ignored.

        Returns:
            True if the snapshot was applied.
        """
        by_time: dict[datetime, Candle] = {}
        for candle in candles:
            if not isinstance(candle, Candle):
                logger.warning(
                    f"[{self.symbol}] Dropping malformed snapshot entry: {candle!r}"
                )
                continue
            by_time[candle.time] = candle
        ordered = sorted(by_time.values(), key=lambda c: c.time)

        with self._lock:
            if generation is not None and generation != self._generation:
                self.stats.stale += 1
                logger.debug(
                    f"[{self.symbol}] Ignoring snapshot for stale generation "
                    f"{generation} (current {self._generation})."
                )
                return False

            limit = self._config.window_limit
            self._series = deque(ordered[-limit:])
            self._ready = True
            self.stats.snapshots_loaded += 1
            count = len(self._series)

        logger.info(
            f"[{self.symbol}] Loaded snapshot of {count} candles "
            f"for {self._config.label}."
        )
        return True

    def apply_live_update(
        self, candle: Candle, generation: int | None = None
    ) -> UpdateOutcome:
        """Merges one live candle into the series.

        A candle for the last bucket replaces it; a candle for a later bucket
        is appended, evicting the single oldest candle if the window is over
        its limit. Anything older than the last bucket is discarded.

        This never raises; the returned outcome says what happened.
        """
        if not isinstance(candle, Candle):
            self.stats.rejected += 1
            logger.warning(
                f"[{self.symbol}] Rejected malformed live update: {candle!r}"
            )
            return UpdateOutcome.REJECTED

        with self._lock:
            if generation is not None and generation != self._generation:
                self.stats.stale += 1
                return UpdateOutcome.STALE

            if not self._ready:
                self.stats.dropped_not_ready += 1
                return UpdateOutcome.NOT_READY

            if self._series:
                last_time = self._series[-1].time
                if candle.time == last_time:
                    self._series[-1] = candle
                    self.stats.replaced += 1
                    return UpdateOutcome.REPLACED
                if candle.time < last_time:
                    self.stats.out_of_order += 1
                    return UpdateOutcome.OUT_OF_ORDER

            self._series.append(candle)
            self.stats.appended += 1
            if len(self._series) > self._config.window_limit:
                self._series.popleft()
                self.stats.evicted += 1
            return UpdateOutcome.APPENDED

    def switch_timeframe(self, config: TimeframeConfig) -> None:
        """Clears the series and makes `config` the active timeframe.

        Registered switch listeners are then called with `config` so the
        owner can tear down the old subscription, fetch a new snapshot and
        resubscribe. No I/O happens here.
        """
        with self._lock:
            previous = self._config
            self._config = config
            self._clear()
            generation = self._generation

        logger.info(
            f"[{self.symbol}] Switched timeframe {previous.label} -> {config.label} "
            f"(generation {generation})."
        )
        for listener in list(self._switch_listeners):
            listener(config)

    def reset(self) -> None:
        """Clears the series without notifying listeners (used on disposal)."""
        with self._lock:
            self._clear()
        logger.debug(f"[{self.symbol}] Aggregator reset.")

    def current_series(self) -> tuple[Candle, ...]:
        """Returns an immutable copy of the series."""
        with self._lock:
            return tuple(self._series)

    def snapshot(self) -> SeriesSnapshot:
        """Returns the series together with its timeframe and readiness."""
        with self._lock:
            return SeriesSnapshot(
                symbol=self.symbol,
                timeframe=self._config.label,
                ready=self._ready,
                generation=self._generation,
                candles=tuple(self._series),
            )

    def _clear(self) -> None:
        # Caller holds the lock.
        self._series = deque()
        self._ready = False
        self._generation += 1
