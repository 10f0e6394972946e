"""Trade simulation — position sizing, margin, spread and PnL. Pure math, no I/O.

Turns an entry/exit pair into an account-currency result under retail
trading conditions::

    risk_amount     = balance × risk_pct / 100
    stop_pips       = |entry − stop| × 10 000
    position_size   = risk_amount / (stop_pips × pip_value)      (lots)
                      clamped to [min_lot, max_lot], floored to 0.1 lot
    required_margin = size × 10 000 × entry × margin_rate / (100 × leverage)
    spread_cost     = size × spread_pips × pip_value
    pnl_pips        = direction-aware (exit − entry) × 10 000
    pnl             = pnl_pips × pip_value × size − spread_cost

Configuration and margin problems never raise: they come back as a
``TradeResult`` with ``is_valid_trade=False`` and a ``RejectionReason`` so a
replay loop can skip the trade and carry on.
"""

import math
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Optional

from torb.strategy.instruments import (
    INSTRUMENTS,
    UNITS_PER_LOT,
    InstrumentConfig,
    get_instrument,
)
from torb.strategy.models import Direction

PRICE_TO_PIPS = 10_000
LOT_STEP = 0.1
MAX_MARGIN_USAGE_PCT = 95.0
ALLOWED_LEVERAGE = (1, 10, 25)


class RejectionReason(str, Enum):
    UNSUPPORTED_SYMBOL = "UNSUPPORTED_SYMBOL"
    INVALID_STOP = "INVALID_STOP"
    INVALID_PRICE = "INVALID_PRICE"
    INSUFFICIENT_MARGIN = "INSUFFICIENT_MARGIN"


@dataclass(frozen=True)
class AccountConfig:
    """Trading account used for one simulation run."""

    balance: float
    leverage: int = 25
    margin_requirement_pct: float = 4.0
    risk_per_trade_pct: float = 2.0
    currency: str = "JPY"

    def __post_init__(self) -> None:
        if self.leverage not in ALLOWED_LEVERAGE:
            raise ValueError(
                f"leverage must be one of {ALLOWED_LEVERAGE}, got {self.leverage}"
            )
        if self.balance <= 0:
            raise ValueError(f"balance must be positive, got {self.balance}")
        if self.risk_per_trade_pct <= 0:
            raise ValueError(
                f"risk_per_trade_pct must be positive, got {self.risk_per_trade_pct}"
            )


def create_default_account(balance: float = 100_000.0) -> AccountConfig:
    """Default retail account: 25× leverage, 4 % margin, 2 % risk per trade."""
    return AccountConfig(
        balance=balance,
        leverage=25,
        margin_requirement_pct=4.0,
        risk_per_trade_pct=2.0,
        currency="JPY",
    )


@dataclass(frozen=True)
class TradeParameters:
    """The trade to simulate."""

    symbol: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    range_width_pips: float = 0.0


@dataclass(frozen=True)
class TradeResult:
    """Simulation outcome.  Monetary fields are in the account currency."""

    position_size: float
    required_margin: float
    max_risk: float
    spread_cost: float
    pnl: float
    pnl_pips: float
    margin_usage_rate: float
    risk_reward_ratio: float
    is_valid_trade: bool
    rejection: Optional[RejectionReason] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["rejection"] = self.rejection.value if self.rejection else None
        return data


def _invalid(reason: RejectionReason, message: str) -> TradeResult:
    return TradeResult(
        position_size=0.0,
        required_margin=0.0,
        max_risk=0.0,
        spread_cost=0.0,
        pnl=0.0,
        pnl_pips=0.0,
        margin_usage_rate=0.0,
        risk_reward_ratio=0.0,
        is_valid_trade=False,
        rejection=reason,
        error_message=message,
    )


# ── Pure steps ───────────────────────────────────────────────────────────


def calculate_position_size(
    balance: float,
    risk_pct: float,
    entry_price: float,
    stop_loss: float,
    instrument: InstrumentConfig,
) -> float:
    """Fixed-fractional position size in lots.

    Raises:
        ValueError: If the stop distance is not positive.
    """
    risk_amount = balance * (risk_pct / 100.0)
    stop_pips = abs(entry_price - stop_loss) * PRICE_TO_PIPS
    if stop_pips <= 0:
        raise ValueError(
            f"stop distance must be positive, got entry={entry_price} stop={stop_loss}"
        )

    raw_size = risk_amount / (stop_pips * instrument.pip_value)
    clamped = max(instrument.min_lot_size, min(instrument.max_lot_size, raw_size))
    # Round down to the lot step; the epsilon absorbs binary float noise.
    steps = math.floor(clamped / LOT_STEP + 1e-6)
    return round(steps * LOT_STEP, 1)


def calculate_required_margin(
    position_size: float,
    entry_price: float,
    margin_rate_pct: float,
    leverage: int,
) -> float:
    """Margin needed to open *position_size* lots at *entry_price*."""
    notional = position_size * UNITS_PER_LOT * entry_price
    return (notional * margin_rate_pct) / (100.0 * leverage)


def calculate_spread_cost(position_size: float, instrument: InstrumentConfig) -> float:
    """Spread paid on open, in account currency."""
    return position_size * instrument.spread_pips * instrument.pip_value


def calculate_pnl(
    direction: Direction,
    entry_price: float,
    exit_price: float,
    position_size: float,
    pip_value: float,
) -> tuple[float, float]:
    """Gross PnL before spread.  Returns ``(pnl, pnl_pips)``."""
    if direction == Direction.BUY:
        diff = exit_price - entry_price
    else:
        diff = entry_price - exit_price
    pnl_pips = diff * PRICE_TO_PIPS
    return pnl_pips * pip_value * position_size, pnl_pips


def calculate_risk_reward(entry_price: float, stop_loss: float, take_profit: float) -> float:
    """``|target − entry| / |entry − stop|``; 0 when the stop distance is 0."""
    risk = abs(entry_price - stop_loss)
    reward = abs(take_profit - entry_price)
    return reward / risk if risk > 0 else 0.0


# ── Simulator ────────────────────────────────────────────────────────────


class TradeSimulator:
    """Simulates trades against one account and an instrument table.

    The simulator holds no mutable state; :meth:`with_account` returns a
    new simulator for a different balance.

    Args:
        account: Account configuration.
        instruments: Instrument table (defaults to ``INSTRUMENTS``).
    """

    def __init__(
        self,
        account: AccountConfig,
        instruments: Optional[dict[str, InstrumentConfig]] = None,
    ) -> None:
        self._account = account
        self._instruments = INSTRUMENTS if instruments is None else instruments

    @property
    def account(self) -> AccountConfig:
        return self._account

    def with_account(
        self, account: Optional[AccountConfig] = None, **changes,
    ) -> "TradeSimulator":
        """Return a simulator for *account* (default: the current one) with *changes* applied."""
        base = self._account if account is None else account
        return TradeSimulator(replace(base, **changes), self._instruments)

    def instrument(self, symbol: str) -> Optional[InstrumentConfig]:
        return get_instrument(symbol, self._instruments)

    def simulate_trade(self, params: TradeParameters, exit_price: float) -> TradeResult:
        """Simulate *params* closed at *exit_price*."""
        config = self.instrument(params.symbol)
        if config is None:
            return _invalid(
                RejectionReason.UNSUPPORTED_SYMBOL,
                f"Unsupported symbol: {params.symbol}",
            )

        prices = (params.entry_price, params.stop_loss, params.take_profit, exit_price)
        if not all(math.isfinite(p) for p in prices):
            return _invalid(RejectionReason.INVALID_PRICE, f"Non-finite price in {prices}")

        account = self._account

        # 1 — Position size
        try:
            size = calculate_position_size(
                account.balance,
                account.risk_per_trade_pct,
                params.entry_price,
                params.stop_loss,
                config,
            )
        except ValueError as exc:
            return _invalid(RejectionReason.INVALID_STOP, str(exc))

        # 2 — Margin check
        required_margin = calculate_required_margin(
            size, params.entry_price, config.margin_rate_pct, account.leverage,
        )
        margin_usage = (required_margin / account.balance) * 100.0
        if margin_usage > MAX_MARGIN_USAGE_PCT:
            return _invalid(
                RejectionReason.INSUFFICIENT_MARGIN,
                f"Insufficient margin: {margin_usage:.1f}% of balance required "
                f"(limit {MAX_MARGIN_USAGE_PCT:.0f}%)",
            )

        # 3 — Spread
        spread_cost = calculate_spread_cost(size, config)

        # 4 — PnL
        pnl, pnl_pips = calculate_pnl(
            params.direction, params.entry_price, exit_price, size, config.pip_value,
        )
        max_loss, _ = calculate_pnl(
            params.direction, params.entry_price, params.stop_loss, size, config.pip_value,
        )

        # 5 — Diagnostics
        rr = calculate_risk_reward(params.entry_price, params.stop_loss, params.take_profit)

        return TradeResult(
            position_size=size,
            required_margin=required_margin,
            max_risk=abs(max_loss),
            spread_cost=spread_cost,
            pnl=pnl - spread_cost,
            pnl_pips=pnl_pips,
            margin_usage_rate=margin_usage,
            risk_reward_ratio=rr,
            is_valid_trade=True,
        )

    def recommended_position_size(
        self, symbol: str, entry_price: float, stop_loss: float,
    ) -> float:
        """Position size in lots for a trade, 0 if it cannot be sized."""
        config = self.instrument(symbol)
        if config is None:
            return 0.0
        try:
            return calculate_position_size(
                self._account.balance,
                self._account.risk_per_trade_pct,
                entry_price,
                stop_loss,
                config,
            )
        except ValueError:
            return 0.0
