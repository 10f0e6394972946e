"""Instrument metadata — trading conditions and opening sessions per pair.

Spread, pip value and lot limits follow a retail JPY-denominated account:
one lot is 10,000 units of the base currency, and ``pip_value`` is the
account-currency value of one pip on one lot.
"""

from dataclasses import dataclass, replace
from datetime import time
from typing import Optional

from torb.strategy.models import DEFAULT_SESSION_SETTINGS, SessionSettings


UNITS_PER_LOT = 10_000


@dataclass(frozen=True)
class InstrumentConfig:
    """Static trading conditions for one symbol."""

    symbol: str
    spread_pips: float
    commission: float
    pip_value: float
    min_lot_size: float
    max_lot_size: float
    margin_rate_pct: float
    pip_size: float
    decimal_places: int
    session_timezone: str
    range_start: time
    range_end: time
    trading_end: time

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "spread_pips": self.spread_pips,
            "commission": self.commission,
            "pip_value": self.pip_value,
            "min_lot_size": self.min_lot_size,
            "max_lot_size": self.max_lot_size,
            "margin_rate_pct": self.margin_rate_pct,
            "pip_size": self.pip_size,
            "decimal_places": self.decimal_places,
            "session": {
                "timezone": self.session_timezone,
                "range_start": self.range_start.strftime("%H:%M"),
                "range_end": self.range_end.strftime("%H:%M"),
                "trading_end": self.trading_end.strftime("%H:%M"),
            },
        }


INSTRUMENTS: dict[str, InstrumentConfig] = {
    "USD/JPY": InstrumentConfig(
        symbol="USD/JPY",
        spread_pips=0.2,
        commission=0.0,
        pip_value=100.0,
        min_lot_size=0.1,
        max_lot_size=100.0,
        margin_rate_pct=4.0,
        pip_size=0.01,
        decimal_places=3,
        session_timezone="Asia/Tokyo",
        range_start=time(9, 0),
        range_end=time(9, 45),
        trading_end=time(11, 0),
    ),
    "EUR/USD": InstrumentConfig(
        symbol="EUR/USD",
        spread_pips=0.3,
        commission=0.0,
        pip_value=150.0,  # approximate, converted at the USD/JPY rate
        min_lot_size=0.1,
        max_lot_size=100.0,
        margin_rate_pct=4.0,
        pip_size=0.0001,
        decimal_places=5,
        session_timezone="Europe/London",
        range_start=time(8, 0),
        range_end=time(8, 45),
        trading_end=time(10, 0),
    ),
    "GBP/JPY": InstrumentConfig(
        symbol="GBP/JPY",
        spread_pips=0.7,
        commission=0.0,
        pip_value=100.0,
        min_lot_size=0.1,
        max_lot_size=100.0,
        margin_rate_pct=4.0,
        pip_size=0.01,
        decimal_places=3,
        session_timezone="Asia/Tokyo",
        range_start=time(9, 0),
        range_end=time(9, 45),
        trading_end=time(11, 0),
    ),
    "AUD/JPY": InstrumentConfig(
        symbol="AUD/JPY",
        spread_pips=0.6,
        commission=0.0,
        pip_value=100.0,
        min_lot_size=0.1,
        max_lot_size=100.0,
        margin_rate_pct=4.0,
        pip_size=0.01,
        decimal_places=3,
        session_timezone="Australia/Sydney",
        range_start=time(7, 0),
        range_end=time(7, 45),
        trading_end=time(9, 0),
    ),
}


def normalize_symbol(symbol: str) -> str:
    """Map ``USDJPY`` / ``USD_JPY`` / ``usd/jpy`` to the ``USD/JPY`` key."""
    compact = symbol.strip().upper().replace("_", "").replace("/", "")
    if len(compact) != 6:
        return symbol.strip().upper()
    return f"{compact[:3]}/{compact[3:]}"


def get_instrument(
    symbol: str,
    instruments: Optional[dict[str, InstrumentConfig]] = None,
) -> Optional[InstrumentConfig]:
    """Look up *symbol* in the instrument table.  ``None`` if unsupported."""
    table = INSTRUMENTS if instruments is None else instruments
    return table.get(normalize_symbol(symbol))


def settings_for_instrument(
    base: SessionSettings,
    instrument: InstrumentConfig,
) -> SessionSettings:
    """Substitute the instrument's own session clock into *base*.

    Width filters and multipliers come from *base*; session times and
    timezone always come from the instrument.
    """
    return replace(
        base,
        range_start=instrument.range_start,
        range_end=instrument.range_end,
        trading_end=instrument.trading_end,
        timezone=instrument.session_timezone,
    )


def default_settings_for(symbol: str) -> SessionSettings:
    """Default TORB settings with *symbol*'s session clock applied.

    Raises ``KeyError`` if the symbol is not in the instrument table.
    """
    instrument = get_instrument(symbol)
    if instrument is None:
        raise KeyError(
            f"Unknown instrument '{symbol}'. "
            f"Available: {', '.join(INSTRUMENTS.keys())}"
        )
    return settings_for_instrument(DEFAULT_SESSION_SETTINGS, instrument)
