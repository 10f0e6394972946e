"""Opening range calculation — pure functions, no I/O.

Scans the observation window of one session and derives the high/low band.
Width outside the configured bounds is a quality filter, not an error:
too-narrow ranges lack profit potential and too-wide ranges carry excess
risk, so both come back as ``None``.
"""

import logging
from datetime import date
from typing import Optional, Sequence

from torb.strategy.models import Candle, SessionSettings, TradingRange
from torb.strategy.session_clock import ensure_utc, session_bounds

logger = logging.getLogger("torb")


def candles_in_window(
    candles: Sequence[Candle],
    session_date: date,
    settings: SessionSettings,
) -> list[Candle]:
    """Return the candles whose time lies in ``[range_start, range_end)``."""
    bounds = session_bounds(session_date, settings)
    return [
        c for c in candles
        if bounds.range_start <= ensure_utc(c.time) < bounds.range_end
    ]


def range_width_pips(high: float, low: float, pip_size: float) -> float:
    """Width of a band in pips, rounded to 0.1 pip."""
    return round((high - low) / pip_size, 1)


def calculate_range(
    candles: Sequence[Candle],
    session_date: date,
    settings: SessionSettings,
    pip_size: float,
) -> Optional[TradingRange]:
    """Compute the opening range of *session_date*.

    Args:
        candles: Time-ordered candles; only those inside the window are used.
        session_date: Local calendar date of the session.
        settings: Session window and width filter.
        pip_size: Price increment of one pip (0.01 for JPY pairs).

    Returns:
        ``TradingRange`` when the window has data and its width lies in
        ``[min_range_width_pips, max_range_width_pips]`` (inclusive),
        else ``None``.
    """
    window = candles_in_window(candles, session_date, settings)
    if not window:
        return None

    high = max(c.high for c in window)
    low = min(c.low for c in window)
    width = range_width_pips(high, low, pip_size)

    if width < settings.min_range_width_pips:
        logger.debug(
            "Range %s rejected: %.1f pips < min %.1f",
            session_date, width, settings.min_range_width_pips,
        )
        return None
    if width > settings.max_range_width_pips:
        logger.debug(
            "Range %s rejected: %.1f pips > max %.1f",
            session_date, width, settings.max_range_width_pips,
        )
        return None

    bounds = session_bounds(session_date, settings)
    return TradingRange(
        high=high,
        low=low,
        width_pips=width,
        start_time=bounds.range_start,
        end_time=bounds.range_end,
        session_date=session_date,
    )
