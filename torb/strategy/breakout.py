"""Breakout detection — pure functions, no I/O.

Given the current price, the session's opening range and the trading
window, decides whether a new BUY or SELL signal fires.

Target and stop scale with how far price has already travelled past the
range edge at detection time::

    breakout_distance = |price - crossed_edge|
    target = price ± breakout_distance × profit_multiplier
    stop   = opposite_edge ∓ stop_loss_buffer_pips × pip_size

Optional filters (RSI, momentum against the previous close) only apply
when their input is supplied; a missing input never blocks a signal.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from torb.strategy.models import Direction, SessionSettings, Signal, TradingRange
from torb.strategy.session_clock import ensure_utc, session_bounds

logger = logging.getLogger("torb")

RSI_BUY_THRESHOLD = 55.0
RSI_SELL_THRESHOLD = 45.0
# Breakout must clear the previous close by 0.1 % in its own direction.
MOMENTUM_TOLERANCE = 0.001


def in_breakout_window(
    now: datetime,
    trading_range: TradingRange,
    settings: SessionSettings,
) -> bool:
    """``True`` if *now* is within ``[range_end, trading_end)`` of the range's session."""
    bounds = session_bounds(trading_range.session_date, settings)
    return bounds.range_end <= ensure_utc(now) < bounds.trading_end


def _passes_buy_filters(
    price: float,
    previous_close: Optional[float],
    rsi: Optional[float],
) -> bool:
    if rsi is not None and rsi <= RSI_BUY_THRESHOLD:
        logger.debug("BUY breakout filtered: RSI %.2f <= %.0f", rsi, RSI_BUY_THRESHOLD)
        return False
    if previous_close is not None and price <= previous_close * (1 - MOMENTUM_TOLERANCE):
        logger.debug(
            "BUY breakout filtered: price %.5f not above previous close %.5f",
            price, previous_close,
        )
        return False
    return True


def _passes_sell_filters(
    price: float,
    previous_close: Optional[float],
    rsi: Optional[float],
) -> bool:
    if rsi is not None and rsi >= RSI_SELL_THRESHOLD:
        logger.debug("SELL breakout filtered: RSI %.2f >= %.0f", rsi, RSI_SELL_THRESHOLD)
        return False
    if previous_close is not None and price >= previous_close * (1 + MOMENTUM_TOLERANCE):
        logger.debug(
            "SELL breakout filtered: price %.5f not below previous close %.5f",
            price, previous_close,
        )
        return False
    return True


def detect_breakout(
    symbol: str,
    price: float,
    now: datetime,
    trading_range: Optional[TradingRange],
    settings: SessionSettings,
    pip_size: float,
    *,
    previous_close: Optional[float] = None,
    rsi: Optional[float] = None,
    active_signal: Optional[Signal] = None,
    decimal_places: int = 3,
) -> Optional[Signal]:
    """Evaluate *price* at *now* against the opening range.

    Args:
        symbol: Instrument the signal is for.
        price: Current price (typically a candle close).
        now: Current instant.
        trading_range: Range of the current session, or ``None``.
        settings: Session window and multipliers.
        pip_size: Price increment of one pip.
        previous_close: Optional reference close for the momentum filter.
        rsi: Optional RSI value for the RSI filter.
        active_signal: The instrument's in-flight signal, if any.  While one
            is active no new signal is produced.
        decimal_places: Price precision used to round target and stop.

    Returns:
        A new ``Signal``, or ``None`` when nothing fires.
    """
    if active_signal is not None:
        return None
    if trading_range is None:
        return None
    if not math.isfinite(price):
        logger.warning("%s: ignoring non-finite price %r", symbol, price)
        return None
    if not in_breakout_window(now, trading_range, settings):
        return None

    buffer = settings.stop_loss_buffer_pips * pip_size

    if price > trading_range.high:
        if not _passes_buy_filters(price, previous_close, rsi):
            return None
        direction = Direction.BUY
        distance = price - trading_range.high
        target = round(price + distance * settings.profit_multiplier, decimal_places)
        stop = round(trading_range.low - buffer, decimal_places)
        if not target > price:
            logger.debug("BUY breakout too small to set a target: %.5f", distance)
            return None
    elif price < trading_range.low:
        if not _passes_sell_filters(price, previous_close, rsi):
            return None
        direction = Direction.SELL
        distance = trading_range.low - price
        target = round(price - distance * settings.profit_multiplier, decimal_places)
        stop = round(trading_range.high + buffer, decimal_places)
        if not target < price:
            logger.debug("SELL breakout too small to set a target: %.5f", distance)
            return None
    else:
        return None

    signal = Signal(
        symbol=symbol,
        direction=direction,
        entry_price=price,
        target_price=target,
        stop_price=stop,
        trading_range=trading_range,
        created_at=ensure_utc(now),
    )
    logger.info(
        "%s %s breakout: entry=%s target=%s stop=%s (range %s-%s)",
        symbol, direction.value, price, target, stop,
        trading_range.low, trading_range.high,
    )
    return signal


@dataclass(frozen=True)
class BreakoutDetector:
    """Breakout detection bound to one instrument's settings.

    Immutable: :meth:`with_settings` returns a new detector.
    """

    symbol: str
    settings: SessionSettings
    pip_size: float
    decimal_places: int = 3

    def check(
        self,
        price: float,
        now: datetime,
        trading_range: Optional[TradingRange],
        *,
        previous_close: Optional[float] = None,
        rsi: Optional[float] = None,
        active_signal: Optional[Signal] = None,
    ) -> Optional[Signal]:
        """See :func:`detect_breakout`."""
        return detect_breakout(
            self.symbol,
            price,
            now,
            trading_range,
            self.settings,
            self.pip_size,
            previous_close=previous_close,
            rsi=rsi,
            active_signal=active_signal,
            decimal_places=self.decimal_places,
        )

    def with_settings(self, settings: SessionSettings) -> "BreakoutDetector":
        return BreakoutDetector(
            symbol=self.symbol,
            settings=settings,
            pip_size=self.pip_size,
            decimal_places=self.decimal_places,
        )
