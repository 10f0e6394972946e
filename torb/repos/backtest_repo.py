"""Backtest run repository — persists run summaries and trade logs to SQLite."""

from typing import Sequence

from torb.backtest.stats import BacktestSummary
from torb.repos.db import get_connection
from torb.strategy.models import TradeRecord


class BacktestRepo:
    """Data access layer for ``backtest_runs`` and ``backtest_trades``.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_run(
        self,
        pairs: Sequence[str],
        start_date: str,
        end_date: str,
        summary: BacktestSummary,
    ) -> int:
        """Persist a backtest run summary.  Returns the row id."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (pairs, start_date, end_date, total_trades,
                     winning_trades, losing_trades, win_rate, total_pips,
                     profit_factor, max_drawdown, max_consecutive_wins,
                     max_consecutive_losses, net_pnl)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ",".join(pairs),
                    start_date,
                    end_date,
                    summary.total_trades,
                    summary.winning_trades,
                    summary.losing_trades,
                    summary.win_rate,
                    summary.total_pips,
                    summary.profit_factor,
                    summary.max_drawdown,
                    summary.max_consecutive_wins,
                    summary.max_consecutive_losses,
                    summary.net_pnl,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def insert_trades(self, run_id: int, trades: Sequence[TradeRecord]) -> int:
        """Append the trade log of *run_id*.  Returns the number of rows written."""
        rows = [
            (
                run_id,
                t.symbol,
                t.direction.value,
                t.entry_time.isoformat(),
                t.exit_time.isoformat(),
                t.session_date.isoformat(),
                t.entry_price,
                t.exit_price,
                t.target_price,
                t.stop_price,
                t.exit_reason.value,
                t.pips,
                t.duration_minutes,
                int(t.is_win),
                t.position_size,
                t.pnl,
                t.balance_after,
            )
            for t in trades
        ]
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT INTO backtest_trades
                    (run_id, symbol, direction, entry_time, exit_time,
                     session_date, entry_price, exit_price, target_price,
                     stop_price, exit_reason, pips, duration_minutes, is_win,
                     position_size, pnl, balance_after)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
            return len(rows)
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent backtest run summaries, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def get_trades(self, run_id: int) -> list[dict]:
        """Return the trade log of *run_id* in entry order."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_trades WHERE run_id = ? ORDER BY entry_time, id",
                (run_id,),
            ).fetchall()
            result = []
            for r in rows:
                d = dict(r)
                d["is_win"] = bool(d["is_win"])
                result.append(d)
            return result
        finally:
            conn.close()
