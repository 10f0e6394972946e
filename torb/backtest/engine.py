"""Backtest engine — replays historical candles through the TORB pipeline.

For each instrument the candles are walked chronologically:
range → breakout → exit tracking → trade simulation.  No real orders are
placed.  Instruments are replayed independently and their trade logs are
concatenated and sorted by entry time before statistics are computed.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional, Sequence

from torb.backtest.stats import BacktestSummary, calculate_statistics
from torb.risk.drawdown import DrawdownTracker
from torb.risk.trade_simulator import AccountConfig, TradeParameters, TradeSimulator
from torb.strategy.breakout import detect_breakout
from torb.strategy.indicators import simple_rsi
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
    TradeRecord,
)
from torb.strategy.range_calculator import calculate_range
from torb.strategy.session_clock import (
    ensure_utc,
    is_weekend,
    session_bounds,
    session_date_of,
)
from torb.strategy.signal_tracker import (
    ExitDecision,
    check_exit,
    elapsed_minutes,
    price_diff,
)

logger = logging.getLogger("torb.backtest")


@dataclass(frozen=True)
class BacktestParameters:
    """Inputs of one backtest run."""

    pairs: list[str]
    settings: SessionSettings = DEFAULT_SESSION_SETTINGS
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    initial_balance: float = 100_000.0
    risk_per_trade_pct: float = 2.0
    leverage: int = 25
    warmup_candles: int = 20
    lookback_candles: int = 50
    max_hold_minutes: float = 240.0
    flatten_at_trading_end: bool = False


@dataclass(frozen=True)
class BacktestResult:
    """Trade log plus derived statistics."""

    summary: BacktestSummary
    trades: list[TradeRecord]
    initial_balance: float
    final_balance: float
    max_drawdown_pct: float
    equity_curve: list[float] = field(default_factory=list)
    rejected_signals: int = 0

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
            "max_drawdown_pct": self.max_drawdown_pct,
            "equity_curve": self.equity_curve,
            "rejected_signals": self.rejected_signals,
        }


@dataclass
class _PairRun:
    trades: list[TradeRecord] = field(default_factory=list)
    rejected: int = 0


def _is_well_formed(candle: Candle) -> bool:
    prices = (candle.open, candle.high, candle.low, candle.close)
    if not all(isinstance(p, (int, float)) and math.isfinite(p) for p in prices):
        return False
    return candle.high >= candle.low and min(prices) > 0


def prepare_candles(
    candles: Sequence[Candle],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Candle]:
    """Filter to ``[start, end]`` and drop malformed or out-of-order candles.

    Candles with non-finite or non-positive prices, ``high < low``, or a
    timestamp not strictly after the previous kept candle are skipped.
    """
    start_utc = ensure_utc(start) if start is not None else None
    end_utc = ensure_utc(end) if end is not None else None

    kept: list[Candle] = []
    skipped = 0
    last_time: Optional[datetime] = None
    for c in candles:
        ts = ensure_utc(c.time)
        if start_utc is not None and ts < start_utc:
            continue
        if end_utc is not None and ts > end_utc:
            continue
        if not _is_well_formed(c) or (last_time is not None and ts <= last_time):
            skipped += 1
            continue
        kept.append(c)
        last_time = ts

    if skipped:
        logger.warning("Skipped %d malformed or out-of-order candle(s)", skipped)
    return kept


class BacktestEngine:
    """Simulates the TORB strategy on historical candle data.

    Args:
        instruments: Instrument table (defaults to ``INSTRUMENTS``).
        simulator_factory: Builds the trade simulator from an account and
            the instrument table.
    """

    def __init__(
        self,
        instruments: Optional[dict[str, InstrumentConfig]] = None,
        simulator_factory: Callable[..., TradeSimulator] = TradeSimulator,
    ) -> None:
        self._instruments = INSTRUMENTS if instruments is None else instruments
        self._simulator_factory = simulator_factory

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        historical: dict[str, Sequence[Candle]],
        params: BacktestParameters,
    ) -> BacktestResult:
        """Execute a full backtest.

        Args:
            historical: Candles keyed by symbol.
            params: Pairs, base settings, account and replay parameters.

        Returns:
            ``BacktestResult`` with the chronological trade log, summary
            statistics and the combined equity curve.
        """
        logger.info(
            "Backtest started: pairs=%s start=%s end=%s balance=%.2f",
            ", ".join(params.pairs), params.start, params.end, params.initial_balance,
        )

        trades: list[TradeRecord] = []
        rejected = 0
        candles_by_symbol: dict[str, Sequence[Candle]] = {}
        for key, series in historical.items():
            known = get_instrument(key, self._instruments)
            candles_by_symbol[known.symbol if known else key] = series

        for pair in params.pairs:
            instrument = get_instrument(pair, self._instruments)
            if instrument is None:
                logger.warning("Skipping unsupported pair %s", pair)
                continue
            data = candles_by_symbol.get(instrument.symbol)
            if not data:
                logger.info("No candles for %s", instrument.symbol)
                continue
            run = self.backtest_pair(instrument, data, params)
            trades.extend(run.trades)
            rejected += run.rejected

        trades.sort(key=lambda t: t.entry_time)
        trades, tracker = self._apply_equity(trades, params.initial_balance)
        summary = calculate_statistics(trades)

        logger.info(
            "Backtest complete: %d trades, win rate %.1f%%, %.1f pips, PnL %.2f",
            summary.total_trades,
            summary.win_rate * 100,
            summary.total_pips,
            summary.net_pnl,
        )

        return BacktestResult(
            summary=summary,
            trades=trades,
            initial_balance=params.initial_balance,
            final_balance=tracker.current_equity,
            max_drawdown_pct=tracker.max_drawdown_pct,
            equity_curve=tracker.equity_curve,
            rejected_signals=rejected,
        )

    def backtest_pair(
        self,
        instrument: InstrumentConfig,
        candles: Sequence[Candle],
        params: BacktestParameters,
    ) -> _PairRun:
        """Replay one instrument's candles and return its closed trades."""
        settings = settings_for_instrument(params.settings, instrument)
        data = prepare_candles(candles, params.start, params.end)
        simulator = self._simulator_factory(
            AccountConfig(
                balance=params.initial_balance,
                leverage=params.leverage,
                margin_requirement_pct=instrument.margin_rate_pct,
                risk_per_trade_pct=params.risk_per_trade_pct,
            ),
            self._instruments,
        )

        run = _PairRun()
        balance = params.initial_balance
        active: Optional[Signal] = None

        for i in range(params.warmup_candles, len(data)):
            candle = data[i]
            now = ensure_utc(candle.time)

            if is_weekend(now, settings):
                continue

            # 1 — Manage the open signal
            if active is not None:
                decision = self._exit_decision(active, candle, settings, params)
                if decision is not None:
                    record = self._close_trade(
                        active, decision, now, instrument, simulator.with_account(balance=balance),
                    )
                    balance += record.pnl
                    run.trades.append(record)
                    active = None

            if active is not None:
                continue
            if balance <= 0:
                logger.warning("%s: account depleted, replay stopped", instrument.symbol)
                break

            # 2 — Look for a new breakout
            recent = data[max(0, i - params.lookback_candles): i + 1]
            rng = calculate_range(
                recent, session_date_of(now, settings), settings, instrument.pip_size,
            )
            if rng is None:
                continue

            signal = detect_breakout(
                instrument.symbol,
                candle.close,
                now,
                rng,
                settings,
                instrument.pip_size,
                previous_close=data[i - 1].close if i > 0 else None,
                rsi=simple_rsi(recent),
                decimal_places=instrument.decimal_places,
            )
            if signal is None:
                continue

            # 3 — Reject trades the account cannot take
            check = simulator.with_account(balance=balance).simulate_trade(
                _trade_parameters(signal), signal.entry_price,
            )
            if not check.is_valid_trade:
                logger.warning(
                    "%s signal at %s skipped: %s",
                    instrument.symbol, now.isoformat(), check.error_message,
                )
                run.rejected += 1
                continue

            active = signal

        if active is not None:
            logger.info(
                "%s: signal from %s still open at end of data; not recorded",
                instrument.symbol, active.created_at.isoformat(),
            )
        return run

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _exit_decision(
        signal: Signal,
        candle: Candle,
        settings: SessionSettings,
        params: BacktestParameters,
    ) -> Optional[ExitDecision]:
        now = ensure_utc(candle.time)
        decision = check_exit(signal, candle.close, now, params.max_hold_minutes)
        if decision is None and params.flatten_at_trading_end:
            bounds = session_bounds(signal.trading_range.session_date, settings)
            if now >= bounds.trading_end:
                won = price_diff(signal.direction, signal.entry_price, candle.close) > 0
                decision = ExitDecision(candle.close, ExitReason.TIME_EXIT, won)
        return decision

    @staticmethod
    def _close_trade(
        signal: Signal,
        decision: ExitDecision,
        now: datetime,
        instrument: InstrumentConfig,
        simulator: TradeSimulator,
    ) -> TradeRecord:
        pips = round(
            price_diff(signal.direction, signal.entry_price, decision.price)
            / instrument.pip_size,
            1,
        )
        # A time exit wins only on a move that survives rounding to 0.1 pip
        is_win = pips > 0 if decision.reason == ExitReason.TIME_EXIT else decision.is_win
        result = simulator.simulate_trade(_trade_parameters(signal), decision.price)
        record = TradeRecord(
            symbol=instrument.symbol,
            direction=signal.direction,
            entry_time=signal.created_at,
            exit_time=now,
            session_date=signal.trading_range.session_date,
            entry_price=signal.entry_price,
            exit_price=decision.price,
            target_price=signal.target_price,
            stop_price=signal.stop_price,
            exit_reason=decision.reason,
            pips=pips,
            duration_minutes=elapsed_minutes(signal.created_at, now),
            is_win=is_win,
            position_size=result.position_size,
            pnl=result.pnl if result.is_valid_trade else 0.0,
        )
        logger.info(
            "%s %s closed (%s): %.1f pips, pnl %.2f",
            record.symbol, record.direction.value, record.exit_reason.value,
            record.pips, record.pnl,
        )
        return record

    @staticmethod
    def _apply_equity(
        trades: list[TradeRecord],
        initial_balance: float,
    ) -> tuple[list[TradeRecord], DrawdownTracker]:
        """Walk the combined log, stamping each trade's running balance."""
        tracker = DrawdownTracker(initial_balance)
        balance = initial_balance
        stamped: list[TradeRecord] = []
        for t in trades:
            balance += t.pnl
            tracker.update(balance)
            stamped.append(replace(t, balance_after=balance))
        return stamped, tracker


def _trade_parameters(signal: Signal) -> TradeParameters:
    return TradeParameters(
        symbol=signal.symbol,
        direction=signal.direction,
        entry_price=signal.entry_price,
        stop_loss=signal.stop_price,
        take_profit=signal.target_price,
        range_width_pips=signal.trading_range.width_pips,
    )
