"""Technical indicators — RSI variants used as optional breakout filters. Pure functions, no I/O."""

import math
from typing import Optional, Sequence

from torb.strategy.models import Candle


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _close_moves(candles: Sequence[Candle]) -> list[tuple[float, float]]:
    """``(gain, loss)`` of each close-to-close change; both are non-negative."""
    closes = [c.close for c in candles]
    return [
        (max(cur - prev, 0.0), max(prev - cur, 0.0))
        for prev, cur in zip(closes, closes[1:])
    ]


def simple_rsi(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Cutler-style RSI over the last *period* close-to-close changes.

    Gains and losses are summed over the window and divided by *period*
    (no smoothing), which keeps the value a function of the trailing window
    only.  Used by the backtest replay.

    Returns ``None`` when fewer than ``period + 1`` candles are supplied.
    The result is rounded to 2 decimals.
    """
    if len(candles) < period + 1:
        return None

    moves = _close_moves(candles[-(period + 1):])
    gains = sum(g for g, _ in moves)
    losses = sum(l for _, l in moves)
    return round(_rsi_from_avgs(gains / period, losses / period), 2)


def calculate_rsi(candles: Sequence[Candle], period: int = 14) -> list[float]:
    """Wilder-smoothed RSI for every candle.

    The first average is the plain mean of the first *period* moves (the
    same seed :func:`simple_rsi` uses); each later move is folded in as
    ``avg = (avg × (period - 1) + move) / period``.

    Returns a list aligned with *candles*; the first *period* entries are
    ``nan``.

    Raises:
        ValueError: With fewer than ``period + 1`` candles.
    """
    if len(candles) < period + 1:
        raise ValueError(
            f"RSI({period}) needs {period + 1} candles, got {len(candles)}"
        )

    moves = _close_moves(candles)
    avg_gain = sum(g for g, _ in moves[:period]) / period
    avg_loss = sum(l for _, l in moves[:period]) / period

    values = [math.nan] * period
    values.append(_rsi_from_avgs(avg_gain, avg_loss))
    for gain, loss in moves[period:]:
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        values.append(_rsi_from_avgs(avg_gain, avg_loss))
    return values


def latest_rsi(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Most recent Wilder RSI value, or ``None`` if there is not enough data."""
    if len(candles) < period + 1:
        return None
    return calculate_rsi(candles, period)[-1]
