"""Backtest statistics — pure functions for trade-series analysis.

Everything is computed once over the full, chronologically ordered trade
list.  Pip-based figures come from ``TradeRecord.pips``; currency figures
come from ``TradeRecord.pnl`` / ``TradeResult.pnl``.
"""

import math
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from torb.risk.trade_simulator import TradeResult
from torb.strategy.models import TradeRecord

# Reported when there are winning pips and no losing pips.
PROFIT_FACTOR_CAP = 10.0
PERFORMANCE_PROFIT_FACTOR_CAP = 999.0


@dataclass(frozen=True)
class DailyPnL:
    date: date
    trades: int
    wins: int
    total_pips: float
    win_rate: float
    cumulative_pips: float

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class MonthlyStats:
    month: str  # "YYYY-MM"
    trades: int
    win_rate: float
    total_pips: float
    best_day: float
    worst_day: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BacktestSummary:
    """Aggregate statistics of a trade log."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pips: float = 0.0
    avg_win_pips: float = 0.0
    avg_loss_pips: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0
    net_pnl: float = 0.0
    daily: list[DailyPnL] = field(default_factory=list)
    monthly: list[MonthlyStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            k: v for k, v in asdict(self).items() if k not in ("daily", "monthly")
        }
        data["daily"] = [d.to_dict() for d in self.daily]
        data["monthly"] = [m.to_dict() for m in self.monthly]
        return data


@dataclass(frozen=True)
class PerformanceStats:
    """Currency statistics over simulated trade results."""

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # percent
    gross_profit: float
    gross_loss: float
    net_profit: float
    profit_factor: float
    avg_win: float
    avg_loss: float
    largest_win: float
    largest_loss: float
    max_consecutive_wins: int
    max_consecutive_losses: int
    max_drawdown: float
    max_drawdown_percent: float
    sharpe_ratio: float

    def to_dict(self) -> dict:
        return asdict(self)


# ── Pip statistics ───────────────────────────────────────────────────────


def calculate_statistics(trades: Sequence[TradeRecord]) -> BacktestSummary:
    """Compute summary statistics from closed backtest trades.

    *trades* must be in chronological order.
    """
    if not trades:
        return BacktestSummary()

    winners = [t for t in trades if t.is_win]
    losers = [t for t in trades if not t.is_win]

    total_pips = sum(t.pips for t in trades)
    win_pips = sum(t.pips for t in winners)
    loss_pips = abs(sum(t.pips for t in losers))

    max_wins, max_losses = max_consecutive(t.is_win for t in trades)
    daily = daily_rollup(trades)

    return BacktestSummary(
        total_trades=len(trades),
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=len(winners) / len(trades),
        total_pips=round(total_pips, 1),
        avg_win_pips=round(win_pips / len(winners), 2) if winners else 0.0,
        avg_loss_pips=round(loss_pips / len(losers), 2) if losers else 0.0,
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        max_drawdown=round(max_drawdown([t.pips for t in trades]), 1),
        profit_factor=profit_factor(win_pips, loss_pips),
        net_pnl=round(sum(t.pnl for t in trades), 2),
        daily=daily,
        monthly=monthly_rollup(daily),
    )


def profit_factor(
    gross_win: float,
    gross_loss: float,
    cap: float = PROFIT_FACTOR_CAP,
) -> float:
    """``gross_win / gross_loss``; *cap* with wins but no losses, 0 with neither."""
    if gross_loss > 0:
        return gross_win / gross_loss
    if gross_win > 0:
        return cap
    return 0.0


def max_consecutive(outcomes: Iterable[bool]) -> tuple[int, int]:
    """Longest run of wins and of losses.  Returns ``(wins, losses)``."""
    max_wins = max_losses = 0
    wins = losses = 0
    for is_win in outcomes:
        if is_win:
            wins += 1
            losses = 0
            max_wins = max(max_wins, wins)
        else:
            losses += 1
            wins = 0
            max_losses = max(max_losses, losses)
    return max_wins, max_losses


def max_drawdown(values: Iterable[float]) -> float:
    """Maximum drawdown of the cumulative curve of *values*.

    The peak starts at 0.  Returns the largest peak-to-trough decline as a
    positive number.
    """
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for v in values:
        cumulative += v
        if cumulative > peak:
            peak = cumulative
        dd = peak - cumulative
        if dd > max_dd:
            max_dd = dd
    return max_dd


def daily_rollup(trades: Sequence[TradeRecord]) -> list[DailyPnL]:
    """Group trades by session date, with a running cumulative pip total."""
    by_day: dict[date, list[TradeRecord]] = {}
    for t in trades:
        by_day.setdefault(t.session_date, []).append(t)

    rows: list[DailyPnL] = []
    cumulative = 0.0
    for day in sorted(by_day):
        day_trades = by_day[day]
        day_pips = sum(t.pips for t in day_trades)
        wins = sum(1 for t in day_trades if t.is_win)
        cumulative += day_pips
        rows.append(DailyPnL(
            date=day,
            trades=len(day_trades),
            wins=wins,
            total_pips=round(day_pips, 1),
            win_rate=wins / len(day_trades),
            cumulative_pips=round(cumulative, 1),
        ))
    return rows


def monthly_rollup(daily: Sequence[DailyPnL]) -> list[MonthlyStats]:
    """Group a daily rollup by calendar month, with best and worst day."""
    by_month: "OrderedDict[str, list[DailyPnL]]" = OrderedDict()
    for row in sorted(daily, key=lambda d: d.date):
        by_month.setdefault(row.date.strftime("%Y-%m"), []).append(row)

    stats: list[MonthlyStats] = []
    for month, days in by_month.items():
        trades = sum(d.trades for d in days)
        wins = sum(d.wins for d in days)
        day_pips = [d.total_pips for d in days]
        stats.append(MonthlyStats(
            month=month,
            trades=trades,
            win_rate=wins / trades if trades else 0.0,
            total_pips=round(sum(day_pips), 1),
            best_day=max(day_pips),
            worst_day=min(day_pips),
        ))
    return stats


# ── Currency statistics ──────────────────────────────────────────────────


def calculate_performance_stats(
    results: Sequence[TradeResult],
    initial_balance: Optional[float] = None,
) -> PerformanceStats:
    """Currency statistics over simulated results.

    Invalid (rejected) results are ignored.  A trade is a win when its
    net PnL is positive and a loss when negative.  Streaks split on
    ``pnl > 0``, so a break-even trade extends a losing streak.
    ``max_drawdown_percent`` needs
    *initial_balance*; without it it is 0.
    """
    completed = [r for r in results if r.is_valid_trade]
    pnls = [r.pnl for r in completed]
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p < 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    max_wins, max_losses = max_consecutive(p > 0 for p in pnls)

    dd = max_drawdown(pnls)
    dd_pct = 0.0
    if initial_balance:
        dd_pct = _max_drawdown_pct(pnls, initial_balance)

    return PerformanceStats(
        total_trades=len(completed),
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=(len(winners) / len(completed)) * 100.0 if completed else 0.0,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        net_profit=gross_profit - gross_loss,
        profit_factor=profit_factor(
            gross_profit, gross_loss, cap=PERFORMANCE_PROFIT_FACTOR_CAP,
        ),
        avg_win=gross_profit / len(winners) if winners else 0.0,
        avg_loss=gross_loss / len(losers) if losers else 0.0,
        largest_win=max(winners) if winners else 0.0,
        largest_loss=min(losers) if losers else 0.0,
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        max_drawdown=dd,
        max_drawdown_percent=dd_pct,
        sharpe_ratio=_sharpe(pnls),
    )


def _max_drawdown_pct(pnls: Sequence[float], initial_balance: float) -> float:
    """Largest decline of the balance curve as a percentage of its peak."""
    balance = initial_balance
    peak = initial_balance
    worst = 0.0
    for p in pnls:
        balance += p
        if balance > peak:
            peak = balance
        elif peak > 0:
            worst = max(worst, (peak - balance) / peak * 100.0)
    return worst


def _sharpe(pnls: Sequence[float]) -> float:
    """Annualised Sharpe ratio from a P&L series.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(pnls)
    if n < 2:
        return 0.0
    mean = sum(pnls) / n
    variance = sum((p - mean) ** 2 for p in pnls) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)
