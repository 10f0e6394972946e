"""Signal lifecycle — ACTIVE → PROFIT | LOSS | TIME_EXIT.

PROFIT and LOSS are driven by price; TIME_EXIT is forced by the caller
when the trading window closes (or, in the replay loop, when the maximum
holding time has elapsed).  All terminal states are sticky.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from torb.strategy.models import Direction, ExitReason, Signal, SignalStatus
from torb.strategy.session_clock import ensure_utc

DEFAULT_MAX_HOLD_MINUTES = 240


def evaluate_signal_status(signal: Signal, price: float) -> SignalStatus:
    """Classify *price* against the signal's target and stop.

    The target is checked before the stop, so a price sitting on both
    resolves to PROFIT.
    """
    if signal.direction == Direction.BUY:
        if price >= signal.target_price:
            return SignalStatus.PROFIT
        if price <= signal.stop_price:
            return SignalStatus.LOSS
    else:
        if price <= signal.target_price:
            return SignalStatus.PROFIT
        if price >= signal.stop_price:
            return SignalStatus.LOSS
    return SignalStatus.ACTIVE


def price_diff(direction: Direction, entry_price: float, exit_price: float) -> float:
    """Direction-aware price move in the trade's favour."""
    if direction == Direction.BUY:
        return exit_price - entry_price
    return entry_price - exit_price


def elapsed_minutes(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60.0


@dataclass(frozen=True)
class ExitDecision:
    """How and where an active signal is closed."""

    price: float
    reason: ExitReason
    is_win: bool


def check_exit(
    signal: Signal,
    price: float,
    now: datetime,
    max_hold_minutes: float = DEFAULT_MAX_HOLD_MINUTES,
) -> Optional[ExitDecision]:
    """Exit decision for the replay loop, or ``None`` to keep holding.

    Target and stop fills are taken at their levels; a time exit fills at
    *price* and counts as a win only if it is in profit.
    """
    status = evaluate_signal_status(signal, price)
    if status == SignalStatus.PROFIT:
        return ExitDecision(signal.target_price, ExitReason.TARGET, True)
    if status == SignalStatus.LOSS:
        return ExitDecision(signal.stop_price, ExitReason.STOP_LOSS, False)
    if elapsed_minutes(signal.created_at, now) >= max_hold_minutes:
        won = price_diff(signal.direction, signal.entry_price, price) > 0
        return ExitDecision(price, ExitReason.TIME_EXIT, won)
    return None


class SignalTracker:
    """Owns one signal until it resolves.

    Args:
        signal: The signal to monitor.
    """

    def __init__(self, signal: Signal) -> None:
        self._signal = signal
        self._status = SignalStatus.ACTIVE
        self._exit_price: Optional[float] = None
        self._exit_time: Optional[datetime] = None

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, price: float, now: Optional[datetime] = None) -> SignalStatus:
        """Feed a new price tick.  Returns the (possibly unchanged) status."""
        if self.is_terminal:
            return self._status

        status = evaluate_signal_status(self._signal, price)
        if status == SignalStatus.PROFIT:
            self._close(status, self._signal.target_price, now)
        elif status == SignalStatus.LOSS:
            self._close(status, self._signal.stop_price, now)
        return self._status

    def force_close(self, price: float, now: Optional[datetime] = None) -> SignalStatus:
        """Flatten at *price* because the trading window closed."""
        if not self.is_terminal:
            self._close(SignalStatus.TIME_EXIT, price, now)
        return self._status

    def _close(self, status: SignalStatus, price: float, now: Optional[datetime]) -> None:
        self._status = status
        self._exit_price = price
        self._exit_time = ensure_utc(now) if now is not None else None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def signal(self) -> Signal:
        return self._signal

    @property
    def status(self) -> SignalStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status != SignalStatus.ACTIVE

    @property
    def exit_price(self) -> Optional[float]:
        return self._exit_price

    @property
    def exit_time(self) -> Optional[datetime]:
        return self._exit_time

    @property
    def exit_reason(self) -> Optional[ExitReason]:
        """Exit reason matching the terminal status, ``None`` while active."""
        return {
            SignalStatus.PROFIT: ExitReason.TARGET,
            SignalStatus.LOSS: ExitReason.STOP_LOSS,
            SignalStatus.TIME_EXIT: ExitReason.TIME_EXIT,
        }.get(self._status)
