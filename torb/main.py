"""TORB — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serve and backtest modes.
"""

import logging
from datetime import date, datetime, time, timezone

from fastapi import FastAPI

from torb.api.routers import router

app = FastAPI(title="TORB Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("torb")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def parse_data_args(values: list[str]) -> dict[str, str]:
    """Turn ``["USDJPY=data/usdjpy.csv", ...]`` into ``{symbol: path}``.

    Raises ``ValueError`` for an entry without ``=``.
    """
    sources: dict[str, str] = {}
    for item in values:
        symbol, sep, path = item.partition("=")
        if not sep or not symbol.strip() or not path.strip():
            raise ValueError(f"--data expects SYMBOL=path, got '{item}'")
        sources[symbol.strip()] = path.strip()
    return sources


def _day_bound(raw: str | None, end: bool) -> datetime | None:
    if raw is None:
        return None
    day = date.fromisoformat(raw)
    return datetime.combine(day, time.max if end else time.min, tzinfo=timezone.utc)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from torb.config import load_config
    from torb.repos.backtest_repo import BacktestRepo
    from torb.repos.db import init_db

    parser = argparse.ArgumentParser(description="TORB opening-range breakout engine")
    parser.add_argument(
        "--mode",
        choices=["serve", "backtest"],
        default="serve",
        help="Run mode (default: serve)",
    )
    parser.add_argument(
        "--data",
        action="append",
        default=[],
        metavar="SYMBOL=PATH",
        help="Candle file for a pair (CSV or Parquet); repeatable",
    )
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    repo = BacktestRepo(config.db_path)

    if args.mode == "backtest":
        try:
            sources = parse_data_args(args.data)
        except ValueError as exc:
            parser.error(str(exc))
        if not sources:
            parser.error("backtest mode needs at least one --data SYMBOL=path")
        _run_backtest(config, repo, sources, args.start, args.end)
    else:
        _serve(config, repo)


def _serve(config, repo) -> None:
    """Start the API server."""
    import uvicorn

    from torb.api.routers import configure_routers

    configure_routers(backtest_repo=repo, config=config)
    logger.info("Starting TORB API on port %d", config.api_port)
    uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")


def _run_backtest(config, repo, sources: dict[str, str], start_date, end_date) -> None:
    """Load candle files, run a backtest and store the result."""
    from torb.backtest.engine import BacktestEngine, BacktestParameters
    from torb.data.candle_loader import load_candles

    historical = {symbol: load_candles(path) for symbol, path in sources.items()}
    params = BacktestParameters(
        pairs=list(historical.keys()),
        settings=config.session_settings(),
        start=_day_bound(start_date, end=False),
        end=_day_bound(end_date, end=True),
        initial_balance=config.account_balance,
        risk_per_trade_pct=config.risk_per_trade_pct,
        leverage=config.account_leverage,
    )
    result = BacktestEngine().run(historical, params)

    run_id = repo.insert_run(
        pairs=params.pairs,
        start_date=start_date or "unknown",
        end_date=end_date or "unknown",
        summary=result.summary,
    )
    repo.insert_trades(run_id, result.trades)

    summary = result.summary
    logger.info(
        "Backtest run %d: %d trades, win rate %.1f%%, %.1f pips, "
        "profit factor %.2f, max drawdown %.1f pips, balance %.2f -> %.2f",
        run_id,
        summary.total_trades,
        summary.win_rate * 100,
        summary.total_pips,
        summary.profit_factor,
        summary.max_drawdown,
        result.initial_balance,
        result.final_balance,
    )


if __name__ == "__main__":
    _run_cli()
