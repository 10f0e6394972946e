"""Strategy data models — typed representations for TORB inputs and outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, time
from enum import Enum


@dataclass(frozen=True)
class Candle:
    """A single OHLC bar.  ``time`` is a timezone-aware UTC instant."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


class Direction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class SignalStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PROFIT = "PROFIT"
    LOSS = "LOSS"
    TIME_EXIT = "TIME_EXIT"


class ExitReason(str, Enum):
    TARGET = "TARGET"
    STOP_LOSS = "STOP_LOSS"
    TIME_EXIT = "TIME_EXIT"


@dataclass(frozen=True)
class SessionSettings:
    """Opening-range session configuration for one instrument.

    Times are wall-clock times in *timezone* (an IANA name such as
    ``"Asia/Tokyo"``).  The range is observed during
    ``[range_start, range_end)`` and breakouts are traded during
    ``[range_end, trading_end)``.

    Instances are immutable.  Use :meth:`with_updates` to derive a new
    configuration instead of mutating a shared one.
    """

    range_start: time = time(9, 0)
    range_end: time = time(9, 45)
    trading_end: time = time(11, 0)
    timezone: str = "Asia/Tokyo"
    min_range_width_pips: float = 15.0
    max_range_width_pips: float = 50.0
    profit_multiplier: float = 1.5
    stop_loss_buffer_pips: float = 5.0

    def __post_init__(self) -> None:
        if not self.range_start < self.range_end <= self.trading_end:
            raise ValueError(
                "session times must satisfy range_start < range_end <= trading_end, "
                f"got {self.range_start}, {self.range_end}, {self.trading_end}"
            )
        if self.min_range_width_pips < 0:
            raise ValueError(
                f"min_range_width_pips must be non-negative, got {self.min_range_width_pips}"
            )
        if self.max_range_width_pips < self.min_range_width_pips:
            raise ValueError(
                "max_range_width_pips must be >= min_range_width_pips, "
                f"got {self.max_range_width_pips} < {self.min_range_width_pips}"
            )
        if self.profit_multiplier <= 0:
            raise ValueError(
                f"profit_multiplier must be positive, got {self.profit_multiplier}"
            )

    def with_updates(self, **changes) -> "SessionSettings":
        """Return a copy with *changes* applied (validated again)."""
        return replace(self, **changes)


DEFAULT_SESSION_SETTINGS = SessionSettings()


@dataclass(frozen=True)
class TradingRange:
    """High/low band established during the observation window."""

    high: float
    low: float
    width_pips: float
    start_time: datetime
    end_time: datetime
    session_date: date

    def to_dict(self) -> dict:
        return {
            "high": self.high,
            "low": self.low,
            "width_pips": self.width_pips,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "session_date": self.session_date.isoformat(),
        }


@dataclass(frozen=True)
class Signal:
    """A breakout signal.

    Keeps a reference to the :class:`TradingRange` that produced it, so a
    later range recomputation never moves its target or stop.
    """

    symbol: str
    direction: Direction
    entry_price: float
    target_price: float
    stop_price: float
    trading_range: TradingRange
    created_at: datetime

    @property
    def range_high(self) -> float:
        return self.trading_range.high

    @property
    def range_low(self) -> float:
        return self.trading_range.low

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "target_price": self.target_price,
            "stop_price": self.stop_price,
            "range_high": self.range_high,
            "range_low": self.range_low,
            "range": self.trading_range.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TradeRecord:
    """A closed signal, as written to the backtest trade log."""

    symbol: str
    direction: Direction
    entry_time: datetime
    exit_time: datetime
    session_date: date
    entry_price: float
    exit_price: float
    target_price: float
    stop_price: float
    exit_reason: ExitReason
    pips: float
    duration_minutes: float
    is_win: bool
    position_size: float = 0.0
    pnl: float = 0.0
    balance_after: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["exit_reason"] = self.exit_reason.value
        data["entry_time"] = self.entry_time.isoformat()
        data["exit_time"] = self.exit_time.isoformat()
        data["session_date"] = self.session_date.isoformat()
        return data
