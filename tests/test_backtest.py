"""Tests for the backtest engine and statistics.

Covers the candle replay loop, trade-log statistics, daily/monthly
rollups and currency performance statistics.
"""

import json
from datetime import date, datetime, timedelta, timezone

import pytest

from torb.backtest.engine import BacktestEngine, BacktestParameters, prepare_candles
from torb.backtest.stats import (
    BacktestSummary,
    calculate_performance_stats,
    calculate_statistics,
    daily_rollup,
    max_consecutive,
    max_drawdown,
    monthly_rollup,
    profit_factor,
)
from torb.risk.trade_simulator import TradeResult, TradeSimulator
from torb.strategy.models import Candle, Direction, ExitReason, TradeRecord


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(ts, o, h, l, c):
    return Candle(time=ts, open=o, high=h, low=l, close=c)


def _session_candles(after_breakout, day=15):
    """15-minute USD/JPY candles around one Tokyo session.

    20 flat warm-up candles (19:00–23:45 UTC the previous day), a
    150.00–150.30 opening range (00:00–00:30 UTC), one quiet candle at
    00:45, a breakout close of 150.40 at 01:00, then one candle per close
    in *after_breakout*.
    """
    start = datetime(2024, 1, day, 0, 0, tzinfo=timezone.utc) - timedelta(hours=5)
    step = timedelta(minutes=15)
    candles = [
        _make_candle(start + i * step, 150.15, 150.16, 150.14, 150.15)
        for i in range(20)
    ]
    t0 = start + 20 * step
    candles += [
        _make_candle(t0, 150.15, 150.30, 150.10, 150.20),
        _make_candle(t0 + step, 150.20, 150.25, 150.00, 150.10),
        _make_candle(t0 + 2 * step, 150.10, 150.20, 150.05, 150.15),
        _make_candle(t0 + 3 * step, 150.15, 150.25, 150.10, 150.20),
        _make_candle(t0 + 4 * step, 150.20, 150.42, 150.18, 150.40),
    ]
    for n, close in enumerate(after_breakout):
        candles.append(
            _make_candle(t0 + (5 + n) * step, close, close + 0.01, close - 0.01, close)
        )
    return candles


def _london_candles(after_breakout, day=15):
    """15-minute EUR/USD candles around one London session.

    In January London time is UTC: 20 flat warm-up candles (03:00–07:45),
    a 1.0900–1.0930 opening range (08:00–08:30), one quiet candle at
    08:45, a breakout close of 1.0940 at 09:00, then one candle per close
    in *after_breakout*.
    """
    start = datetime(2024, 1, day, 3, 0, tzinfo=timezone.utc)
    step = timedelta(minutes=15)
    candles = [
        _make_candle(start + i * step, 1.0915, 1.0916, 1.0914, 1.0915)
        for i in range(20)
    ]
    t0 = start + 20 * step
    candles += [
        _make_candle(t0, 1.0915, 1.0930, 1.0910, 1.0920),
        _make_candle(t0 + step, 1.0920, 1.0925, 1.0900, 1.0910),
        _make_candle(t0 + 2 * step, 1.0910, 1.0920, 1.0905, 1.0915),
        _make_candle(t0 + 3 * step, 1.0915, 1.0925, 1.0910, 1.0920),
        _make_candle(t0 + 4 * step, 1.0920, 1.0942, 1.0918, 1.0940),
    ]
    for n, close in enumerate(after_breakout):
        candles.append(
            _make_candle(t0 + (5 + n) * step, close, close + 0.0001, close - 0.0001, close)
        )
    return candles


def _params(**overrides):
    defaults = dict(pairs=["USD/JPY"], initial_balance=100_000.0)
    defaults.update(overrides)
    return BacktestParameters(**defaults)


def _make_trade(pips, day=date(2024, 1, 15), pnl=0.0, is_win=None):
    entry = datetime.combine(day, datetime.min.time(), tzinfo=timezone.utc)
    return TradeRecord(
        symbol="USD/JPY",
        direction=Direction.BUY,
        entry_time=entry,
        exit_time=entry + timedelta(minutes=15),
        session_date=day,
        entry_price=150.0,
        exit_price=150.0 + pips / 100,
        target_price=150.5,
        stop_price=149.5,
        exit_reason=ExitReason.TARGET if pips > 0 else ExitReason.STOP_LOSS,
        pips=pips,
        duration_minutes=15.0,
        is_win=pips > 0 if is_win is None else is_win,
        pnl=pnl,
    )


def _make_result(pnl):
    return TradeResult(
        position_size=0.1,
        required_margin=600.0,
        max_risk=500.0,
        spread_cost=2.0,
        pnl=pnl,
        pnl_pips=0.0,
        margin_usage_rate=0.6,
        risk_reward_ratio=1.5,
        is_valid_trade=True,
    )


# ── Statistics ───────────────────────────────────────────────────────────


class TestStatistics:
    def test_aggregate(self):
        summary = calculate_statistics(
            [_make_trade(20.0), _make_trade(-10.0), _make_trade(15.0)]
        )
        assert summary.total_trades == 3
        assert summary.winning_trades == 2
        assert summary.losing_trades == 1
        assert summary.win_rate == pytest.approx(0.667, abs=1e-3)
        assert summary.total_pips == 25.0
        assert summary.avg_win_pips == 17.5
        assert summary.avg_loss_pips == 10.0
        assert summary.max_consecutive_wins == 1
        assert summary.max_consecutive_losses == 1
        assert summary.profit_factor == pytest.approx(3.5)

    def test_drawdown(self):
        summary = calculate_statistics([
            _make_trade(20.0), _make_trade(-10.0), _make_trade(20.0), _make_trade(-25.0),
        ])
        assert summary.max_drawdown == 25.0

    def test_empty(self):
        summary = calculate_statistics([])
        assert summary == BacktestSummary()
        assert summary.total_trades == 0
        assert summary.profit_factor == 0.0

    def test_profit_factor_cap(self):
        summary = calculate_statistics([_make_trade(20.0), _make_trade(5.0)])
        assert summary.profit_factor == 10.0
        assert profit_factor(0.0, 0.0) == 0.0
        assert profit_factor(10.0, 0.0, cap=999.0) == 999.0

    def test_break_even_time_exit_counts_as_loss(self):
        summary = calculate_statistics([_make_trade(0.0, is_win=False)])
        assert summary.losing_trades == 1
        assert summary.profit_factor == 0.0

    def test_net_pnl(self):
        summary = calculate_statistics([
            _make_trade(20.0, pnl=1500.0), _make_trade(-10.0, pnl=-600.0),
        ])
        assert summary.net_pnl == pytest.approx(900.0)

    def test_max_consecutive(self):
        assert max_consecutive([True, True, False, False, False, True]) == (2, 3)
        assert max_consecutive([]) == (0, 0)

    def test_max_drawdown_peak_starts_at_zero(self):
        assert max_drawdown([-10.0, -5.0, 30.0]) == 15.0


class TestRollups:
    def _trades(self):
        return [
            _make_trade(20.0, day=date(2024, 1, 15)),
            _make_trade(-10.0, day=date(2024, 1, 15)),
            _make_trade(15.0, day=date(2024, 1, 16)),
            _make_trade(-5.0, day=date(2024, 2, 1)),
        ]

    def test_daily(self):
        daily = daily_rollup(self._trades())
        assert [d.date for d in daily] == [
            date(2024, 1, 15), date(2024, 1, 16), date(2024, 2, 1),
        ]
        assert daily[0].trades == 2
        assert daily[0].wins == 1
        assert daily[0].win_rate == 0.5
        assert daily[0].total_pips == 10.0
        assert [d.cumulative_pips for d in daily] == [10.0, 25.0, 20.0]

    def test_monthly(self):
        monthly = monthly_rollup(daily_rollup(self._trades()))
        assert [m.month for m in monthly] == ["2024-01", "2024-02"]
        january = monthly[0]
        assert january.trades == 3
        assert january.win_rate == pytest.approx(2 / 3)
        assert january.total_pips == 25.0
        assert january.best_day == 15.0
        assert january.worst_day == 10.0
        assert monthly[1].total_pips == -5.0

    def test_summary_includes_rollups(self):
        summary = calculate_statistics(self._trades())
        assert len(summary.daily) == 3
        assert len(summary.monthly) == 2
        data = summary.to_dict()
        assert data["daily"][0]["date"] == "2024-01-15"
        assert data["monthly"][0]["month"] == "2024-01"


class TestPerformanceStats:
    def test_currency_statistics(self):
        stats = calculate_performance_stats(
            [_make_result(100.0), _make_result(-50.0), _make_result(200.0)],
            initial_balance=1000.0,
        )
        assert stats.total_trades == 3
        assert stats.winning_trades == 2
        assert stats.win_rate == pytest.approx(66.667, abs=1e-3)
        assert stats.gross_profit == 300.0
        assert stats.gross_loss == 50.0
        assert stats.net_profit == 250.0
        assert stats.profit_factor == pytest.approx(6.0)
        assert stats.largest_win == 200.0
        assert stats.largest_loss == -50.0
        assert stats.max_drawdown == 50.0
        # Peak 1100 → 1050
        assert stats.max_drawdown_percent == pytest.approx(50 / 1100 * 100)
        assert stats.sharpe_ratio > 0

    def test_ignores_rejected_results(self):
        rejected = TradeResult(
            position_size=0.0, required_margin=0.0, max_risk=0.0, spread_cost=0.0,
            pnl=0.0, pnl_pips=0.0, margin_usage_rate=0.0, risk_reward_ratio=0.0,
            is_valid_trade=False,
        )
        stats = calculate_performance_stats([rejected, _make_result(10.0)])
        assert stats.total_trades == 1
        assert stats.profit_factor == 999.0
        assert stats.sharpe_ratio == 0.0
        assert stats.max_drawdown_percent == 0.0


# ── Engine ───────────────────────────────────────────────────────────────


class TestPrepareCandles:
    def test_drops_malformed_and_out_of_order(self):
        base = datetime(2024, 1, 15, tzinfo=timezone.utc)
        candles = [
            _make_candle(base, 150.0, 150.1, 149.9, 150.0),
            _make_candle(base + timedelta(minutes=15), 150.0, 149.8, 150.1, 150.0),
            _make_candle(base + timedelta(minutes=30), 150.0, float("nan"), 149.9, 150.0),
            _make_candle(base, 150.0, 150.1, 149.9, 150.0),
            _make_candle(base + timedelta(minutes=45), 150.0, 150.1, 149.9, 150.0),
        ]
        kept = prepare_candles(candles)
        assert [c.time for c in kept] == [base, base + timedelta(minutes=45)]

    def test_date_filter(self):
        candles = _session_candles([])
        start = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)
        kept = prepare_candles(candles, start=start)
        assert kept[0].time == start
        assert len(kept) == 5


class TestBacktestEngine:
    def test_winning_trade(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.60])}, _params(),
        )
        # The 150.60 close hits the target and re-breaks the range; the
        # second signal is still open at the end of data and not recorded.
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.direction == Direction.BUY
        assert trade.exit_reason == ExitReason.TARGET
        assert trade.entry_price == 150.40
        assert trade.exit_price == pytest.approx(150.55)
        assert trade.pips == 15.0
        assert trade.is_win
        assert trade.duration_minutes == 15.0
        assert trade.session_date == date(2024, 1, 15)
        assert trade.position_size == 0.1
        assert trade.pnl > 0
        assert trade.balance_after == pytest.approx(100_000.0 + trade.pnl)
        assert result.final_balance == pytest.approx(trade.balance_after)
        assert result.summary.total_trades == 1
        assert result.summary.win_rate == 1.0

    def test_losing_trade(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([149.90])}, _params(),
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_price == pytest.approx(149.95)
        assert trade.pips == -45.0
        assert not trade.is_win
        assert result.final_balance < 100_000.0
        assert result.max_drawdown_pct > 0

    def test_time_exit_after_max_hold(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.45] * 6)},
            _params(max_hold_minutes=60.0),
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TIME_EXIT
        assert trade.exit_price == 150.45
        assert trade.pips == 5.0
        assert trade.is_win
        assert trade.duration_minutes == 60.0

    def test_time_exit_below_a_tenth_of_a_pip_is_a_loss(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.4004] * 6)},
            _params(max_hold_minutes=60.0),
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TIME_EXIT
        assert trade.pips == 0.0
        assert not trade.is_win

    def test_flatten_at_trading_end(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.45] * 6)},
            _params(flatten_at_trading_end=True),
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TIME_EXIT
        assert trade.exit_time == datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc)

    def test_open_signal_at_end_not_recorded(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.45])}, _params(),
        )
        assert result.trades == []
        assert result.final_balance == 100_000.0

    def test_narrow_range_no_trades(self):
        narrow = _session_candles([150.60], day=15)
        settings = BacktestParameters(pairs=["USD/JPY"]).settings.with_updates(
            min_range_width_pips=40.0,
        )
        result = BacktestEngine().run({"USD/JPY": narrow}, _params(settings=settings))
        assert result.trades == []
        assert result.summary.total_trades == 0

    def test_weekend_session_skipped(self):
        # 2024-01-13 is a Saturday in Tokyo
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.60], day=13)}, _params(),
        )
        assert result.trades == []

    def test_unsupported_pair_skipped(self):
        result = BacktestEngine().run(
            {"XAU/USD": _session_candles([150.60])}, _params(pairs=["XAU/USD"]),
        )
        assert result.trades == []

    def test_symbol_keys_normalised(self):
        result = BacktestEngine().run(
            {"USDJPY": _session_candles([150.60])}, _params(pairs=["USD_JPY"]),
        )
        assert len(result.trades) == 1
        assert result.trades[0].symbol == "USD/JPY"

    def test_margin_rejection_skips_signal(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.60])},
            _params(initial_balance=1_000.0, leverage=1),
        )
        assert result.trades == []
        assert result.rejected_signals >= 1

    def test_simulator_factory(self):
        accounts = []

        def factory(account, instruments):
            accounts.append(account)
            return TradeSimulator(account, instruments)

        BacktestEngine(simulator_factory=factory).run(
            {"USD/JPY": _session_candles([150.60])},
            _params(initial_balance=50_000.0, leverage=10),
        )
        assert len(accounts) == 1
        assert accounts[0].balance == 50_000.0
        assert accounts[0].leverage == 10

    def test_instrument_session_replaces_tokyo_window(self):
        result = BacktestEngine().run(
            {"EUR/USD": _london_candles([1.0960])}, _params(pairs=["EUR/USD"]),
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.symbol == "EUR/USD"
        assert trade.entry_time == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert trade.exit_reason == ExitReason.TARGET
        assert trade.exit_price == pytest.approx(1.0955)
        assert trade.pips == 15.0
        assert trade.session_date == date(2024, 1, 15)
        assert trade.pnl > 0

    def test_multiple_pairs_sorted_and_stamped(self):
        result = BacktestEngine().run(
            {
                "EUR/USD": _london_candles([1.0960]),
                "USD/JPY": _session_candles([150.60]),
            },
            _params(pairs=["EUR/USD", "USD/JPY"]),
        )
        assert [t.symbol for t in result.trades] == ["USD/JPY", "EUR/USD"]
        entry_times = [t.entry_time for t in result.trades]
        assert entry_times == sorted(entry_times)

        first, second = result.trades
        assert first.balance_after == pytest.approx(100_000.0 + first.pnl)
        assert second.balance_after == pytest.approx(first.balance_after + second.pnl)
        assert result.final_balance == pytest.approx(second.balance_after)
        assert result.equity_curve == pytest.approx(
            [100_000.0, first.balance_after, second.balance_after]
        )
        assert result.summary.total_trades == 2

    def test_no_data(self):
        result = BacktestEngine().run({}, _params())
        assert result.trades == []
        assert result.summary.total_trades == 0
        assert result.equity_curve == [100_000.0]

    def test_result_is_json_serialisable(self):
        result = BacktestEngine().run(
            {"USD/JPY": _session_candles([150.60])}, _params(),
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["trades"][0]["exit_reason"] == "TARGET"
        assert data["summary"]["total_trades"] == 1
