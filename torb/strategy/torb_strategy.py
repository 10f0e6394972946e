"""TORB strategy — per-instrument range / signal state for a live caller.

One instance per instrument.  It caches the opening range of each session,
owns the in-flight signal through a ``SignalTracker`` and flattens it when
the trading window closes.  Nothing here is shared between instruments.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

from torb.strategy.breakout import BreakoutDetector
from torb.strategy.indicators import latest_rsi
from torb.strategy.instruments import (
    INSTRUMENTS,
    InstrumentConfig,
    get_instrument,
    settings_for_instrument,
)
from torb.strategy.models import (
    DEFAULT_SESSION_SETTINGS,
    Candle,
    ExitReason,
    SessionSettings,
    Signal,
    SignalStatus,
    TradingRange,
)
from torb.strategy.range_calculator import calculate_range, candles_in_window
from torb.strategy.session_clock import ensure_utc, session_bounds, session_date_of
from torb.strategy.signal_tracker import SignalTracker

logger = logging.getLogger("torb")


@dataclass(frozen=True)
class TickResult:
    """Outcome of feeding one price into the strategy."""

    trading_range: Optional[TradingRange]
    signal: Optional[Signal]
    status: Optional[SignalStatus]
    is_new_signal: bool = False
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None

    def to_dict(self) -> dict:
        return {
            "range": self.trading_range.to_dict() if self.trading_range else None,
            "signal": self.signal.to_dict() if self.signal else None,
            "status": self.status.value if self.status else None,
            "is_new_signal": self.is_new_signal,
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


class TORBStrategy:
    """Tokyo Opening Range Breakout state for a single instrument.

    Args:
        symbol: Instrument symbol (``"USD/JPY"``, ``"USDJPY"`` ...).
        settings: Base settings.  The instrument's own session clock is
            always substituted in.
        use_rsi_filter: When ``True`` and no RSI is passed to
            :meth:`on_price`, a Wilder RSI(14) of the supplied candles is
            used as the filter input.
        instruments: Instrument table (defaults to ``INSTRUMENTS``).

    Raises:
        KeyError: If *symbol* is not in the instrument table.
    """

    def __init__(
        self,
        symbol: str,
        settings: Optional[SessionSettings] = None,
        use_rsi_filter: bool = False,
        instruments: Optional[dict[str, InstrumentConfig]] = None,
    ) -> None:
        table = INSTRUMENTS if instruments is None else instruments
        instrument = get_instrument(symbol, table)
        if instrument is None:
            raise KeyError(
                f"Unknown instrument '{symbol}'. "
                f"Available: {', '.join(table.keys())}"
            )
        self._instruments = table
        self._instrument = instrument
        self._use_rsi_filter = use_rsi_filter
        self._detector = BreakoutDetector(
            symbol=instrument.symbol,
            settings=settings_for_instrument(
                settings or DEFAULT_SESSION_SETTINGS, instrument,
            ),
            pip_size=instrument.pip_size,
            decimal_places=instrument.decimal_places,
        )
        self._ranges: dict[date, Optional[TradingRange]] = {}
        self._current_range: Optional[TradingRange] = None
        self._tracker: Optional[SignalTracker] = None

    # ── Configuration ────────────────────────────────────────────────────

    @property
    def symbol(self) -> str:
        return self._instrument.symbol

    @property
    def settings(self) -> SessionSettings:
        return self._detector.settings

    def with_settings(self, settings: SessionSettings) -> "TORBStrategy":
        """Return a strategy using *settings* for subsequent calls.

        An in-flight signal is carried over unchanged, still bound to the
        range that produced it.  Cached ranges are discarded.
        """
        new = TORBStrategy(
            self.symbol,
            settings,
            use_rsi_filter=self._use_rsi_filter,
            instruments=self._instruments,
        )
        new._tracker = self._tracker
        return new

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def current_range(self) -> Optional[TradingRange]:
        return self._current_range

    @property
    def active_signal(self) -> Optional[Signal]:
        if self._tracker is None:
            return None
        return self._tracker.signal

    def clear_signal(self) -> None:
        """Drop the in-flight signal without recording an exit."""
        self._tracker = None

    # ── Range ────────────────────────────────────────────────────────────

    def range_for(
        self,
        candles: Sequence[Candle],
        session_date: date,
        now: Optional[datetime] = None,
    ) -> Optional[TradingRange]:
        """Opening range of *session_date*, computed once per session.

        Before the observation window has closed the range is incomplete,
        so nothing is computed or cached.  A window with no candles is not
        cached either; a later call may still supply them.
        """
        if session_date in self._ranges:
            return self._ranges[session_date]

        bounds = session_bounds(session_date, self.settings)
        if now is not None and ensure_utc(now) < bounds.range_end:
            return None

        if not candles_in_window(candles, session_date, self.settings):
            logger.debug("%s: no candles yet for %s range", self.symbol, session_date)
            return None

        rng = calculate_range(
            candles, session_date, self.settings, self._instrument.pip_size,
        )
        self._ranges[session_date] = rng
        if rng is None:
            logger.info("%s: no tradable range for %s", self.symbol, session_date)
        else:
            logger.info(
                "%s: range %s high=%s low=%s width=%.1f pips",
                self.symbol, session_date, rng.high, rng.low, rng.width_pips,
            )
        return rng

    # ── Tick ─────────────────────────────────────────────────────────────

    def on_price(
        self,
        price: float,
        now: datetime,
        candles: Sequence[Candle] = (),
        previous_close: Optional[float] = None,
        rsi: Optional[float] = None,
    ) -> TickResult:
        """Feed the current price.

        1. An active signal is checked for target/stop and flattened once
           its session's trading window has closed.
        2. Otherwise the session range is resolved and a new breakout is
           looked for.
        """
        if self._tracker is not None:
            return self._update_active(price, now)

        session_date = session_date_of(now, self.settings)
        rng = self.range_for(candles, session_date, now)
        self._current_range = rng

        if self._use_rsi_filter and rsi is None and candles:
            rsi = latest_rsi(candles)

        signal = self._detector.check(
            price, now, rng, previous_close=previous_close, rsi=rsi,
        )
        if signal is None:
            return TickResult(trading_range=rng, signal=None, status=None)

        self._tracker = SignalTracker(signal)
        return TickResult(
            trading_range=rng,
            signal=signal,
            status=SignalStatus.ACTIVE,
            is_new_signal=True,
        )

    def _update_active(self, price: float, now: datetime) -> TickResult:
        tracker = self._tracker
        signal = tracker.signal
        status = tracker.update(price, now)

        if status == SignalStatus.ACTIVE:
            bounds = session_bounds(signal.trading_range.session_date, self.settings)
            if ensure_utc(now) >= bounds.trading_end:
                status = tracker.force_close(price, now)

        if status == SignalStatus.ACTIVE:
            return TickResult(
                trading_range=signal.trading_range,
                signal=signal,
                status=status,
            )

        logger.info(
            "%s %s signal closed: %s at %s",
            self.symbol, signal.direction.value, status.value, tracker.exit_price,
        )
        self._tracker = None
        return TickResult(
            trading_range=signal.trading_range,
            signal=signal,
            status=status,
            exit_price=tracker.exit_price,
            exit_reason=tracker.exit_reason,
        )
