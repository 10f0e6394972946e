"""Internal API routers — /instruments, /session, /torb, /simulate, /backtest endpoints.

No business logic.  Parses request bodies, delegates to the strategy,
simulator and backtest engine, and serialises their results.
"""

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from torb.backtest.engine import BacktestEngine, BacktestParameters
from torb.data.candle_loader import candles_from_records
from torb.risk.trade_simulator import AccountConfig, TradeParameters, TradeSimulator
from torb.strategy.breakout import detect_breakout
from torb.strategy.indicators import simple_rsi
from torb.strategy.instruments import INSTRUMENTS, get_instrument, settings_for_instrument
from torb.strategy.models import DEFAULT_SESSION_SETTINGS, Direction, SessionSettings
from torb.strategy.range_calculator import calculate_range
from torb.strategy.session_clock import ensure_utc, session_date_of, session_status

logger = logging.getLogger("torb")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_backtest_repo = None  # Set via configure_routers()
_config = None         # Set via configure_routers()

_SETTING_FIELDS = (
    "min_range_width_pips",
    "max_range_width_pips",
    "profit_multiplier",
    "stop_loss_buffer_pips",
)


def configure_routers(backtest_repo=None, config=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        backtest_repo: A ``BacktestRepo`` instance (or duck-type for tests).
        config: The loaded ``Config``; supplies account and range defaults.
    """
    global _backtest_repo, _config  # noqa: PLW0603
    _backtest_repo = backtest_repo
    _config = config


# ── Request parsing ──────────────────────────────────────────────────────


def _base_settings() -> SessionSettings:
    if _config is None:
        return DEFAULT_SESSION_SETTINGS
    return _config.session_settings()


def _settings_from(body: dict) -> SessionSettings:
    """Base settings with any overrides from ``body["settings"]`` applied."""
    overrides = body.get("settings") or {}
    changes = {k: float(overrides[k]) for k in _SETTING_FIELDS if k in overrides}
    return _base_settings().with_updates(**changes)


def _account_from(body: dict) -> AccountConfig:
    if _config is not None:
        account = _config.account()
    else:
        account = AccountConfig(balance=100_000.0)
    return AccountConfig(
        balance=float(body.get("balance", account.balance)),
        leverage=int(body.get("leverage", account.leverage)),
        margin_requirement_pct=account.margin_requirement_pct,
        risk_per_trade_pct=float(body.get("risk_per_trade_pct", account.risk_per_trade_pct)),
        currency=account.currency,
    )


def _parse_time(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    return ensure_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))


def _error(message: str) -> dict:
    return {"status": "error", "errors": [message]}


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/instruments")
async def get_instruments():
    """Return the supported instruments and their trading conditions."""
    return {"instruments": [i.to_dict() for i in INSTRUMENTS.values()]}


@router.get("/session/{symbol}")
async def get_session(symbol: str, now: Optional[str] = Query(default=None)):
    """Return the session state of *symbol* at *now* (default: current time)."""
    instrument = get_instrument(symbol)
    if instrument is None:
        return _error(f"Unknown instrument: {symbol}")
    try:
        at = _parse_time(now) or datetime.now(timezone.utc)
    except ValueError as exc:
        return _error(str(exc))

    settings = settings_for_instrument(_base_settings(), instrument)
    return {
        "symbol": instrument.symbol,
        "now": at.isoformat(),
        "session_date": session_date_of(at, settings).isoformat(),
        **session_status(at, settings).to_dict(),
    }


@router.post("/torb/range")
async def post_range(body: dict):
    """Compute an opening range.

    Expects ``{"symbol": "USD/JPY", "session_date": "YYYY-MM-DD",
    "candles": [{"time": ..., "open": ..., ...}], "settings": {...}}``.
    """
    instrument = get_instrument(str(body.get("symbol", "")))
    if instrument is None:
        return _error(f"Unknown instrument: {body.get('symbol')}")
    try:
        settings = settings_for_instrument(_settings_from(body), instrument)
        session_date = date.fromisoformat(str(body["session_date"]))
        candles = candles_from_records(body.get("candles", []))
    except (KeyError, TypeError, ValueError) as exc:
        return _error(f"Invalid request: {exc}")

    rng = calculate_range(candles, session_date, settings, instrument.pip_size)
    return {
        "symbol": instrument.symbol,
        "range": rng.to_dict() if rng else None,
    }


@router.post("/torb/signal")
async def post_signal(body: dict):
    """Evaluate a price against the opening range of its session.

    Expects ``{"symbol", "price", "now", "candles", "previous_close"?,
    "use_rsi"?, "settings"?}``.  The range is computed from *candles* for
    the session *now* belongs to.
    """
    instrument = get_instrument(str(body.get("symbol", "")))
    if instrument is None:
        return _error(f"Unknown instrument: {body.get('symbol')}")
    try:
        settings = settings_for_instrument(_settings_from(body), instrument)
        price = float(body["price"])
        now = _parse_time(str(body["now"]))
        candles = candles_from_records(body.get("candles", []))
        previous_close = body.get("previous_close")
        if previous_close is not None:
            previous_close = float(previous_close)
    except (KeyError, TypeError, ValueError) as exc:
        return _error(f"Invalid request: {exc}")

    rng = calculate_range(
        candles, session_date_of(now, settings), settings, instrument.pip_size,
    )
    signal = detect_breakout(
        instrument.symbol,
        price,
        now,
        rng,
        settings,
        instrument.pip_size,
        previous_close=previous_close,
        rsi=simple_rsi(candles) if body.get("use_rsi") else None,
        decimal_places=instrument.decimal_places,
    )
    return {
        "symbol": instrument.symbol,
        "range": rng.to_dict() if rng else None,
        "signal": signal.to_dict() if signal else None,
    }


@router.post("/simulate")
async def post_simulate(body: dict):
    """Simulate one trade.

    Expects ``{"symbol", "direction", "entry_price", "stop_loss",
    "take_profit", "exit_price", "balance"?, "leverage"?,
    "risk_per_trade_pct"?}``.
    """
    try:
        account = _account_from(body)
        params = TradeParameters(
            symbol=str(body["symbol"]),
            direction=Direction(str(body["direction"]).upper()),
            entry_price=float(body["entry_price"]),
            stop_loss=float(body["stop_loss"]),
            take_profit=float(body["take_profit"]),
            range_width_pips=float(body.get("range_width_pips", 0.0)),
        )
        exit_price = float(body["exit_price"])
    except (KeyError, TypeError, ValueError) as exc:
        return _error(f"Invalid request: {exc}")

    result = TradeSimulator(account).simulate_trade(params, exit_price)
    return result.to_dict()


@router.post("/backtest")
async def post_backtest(body: dict):
    """Run a backtest over candles supplied in the request.

    Expects ``{"pairs": [...], "candles": {"USD/JPY": [...]}, "start"?,
    "end"?, "initial_balance"?, "leverage"?, "risk_per_trade_pct"?,
    "settings"?, "persist"?}``.  With ``persist`` the run is stored and
    its id returned as ``run_id``.
    """
    try:
        account = _account_from(body)
        if "initial_balance" in body:
            account = replace(account, balance=float(body["initial_balance"]))
        historical = {
            symbol: candles_from_records(rows)
            for symbol, rows in (body.get("candles") or {}).items()
        }
        pairs = list(body.get("pairs") or historical.keys())
        params = BacktestParameters(
            pairs=pairs,
            settings=_settings_from(body),
            start=_parse_time(body.get("start")),
            end=_parse_time(body.get("end")),
            initial_balance=account.balance,
            risk_per_trade_pct=account.risk_per_trade_pct,
            leverage=account.leverage,
        )
    except (KeyError, TypeError, ValueError) as exc:
        return _error(f"Invalid request: {exc}")

    if not pairs:
        return _error("No pairs or candles provided")

    result = BacktestEngine().run(historical, params)
    response = result.to_dict()

    if body.get("persist") and _backtest_repo is not None:
        run_id = _backtest_repo.insert_run(
            pairs=pairs,
            start_date=body.get("start") or "unknown",
            end_date=body.get("end") or "unknown",
            summary=result.summary,
        )
        _backtest_repo.insert_trades(run_id, result.trades)
        response["run_id"] = run_id
        logger.info("Backtest run %d stored (%d trades)", run_id, len(result.trades))

    return response


@router.get("/backtest/runs")
async def get_backtest_runs(limit: int = Query(default=10, ge=1, le=100)):
    """Return recent stored backtest runs."""
    if _backtest_repo is None:
        return {"runs": []}
    return {"runs": _backtest_repo.get_runs(limit=limit)}


@router.get("/backtest/runs/{run_id}/trades")
async def get_backtest_trades(run_id: int):
    """Return the trade log of a stored backtest run."""
    if _backtest_repo is None:
        return {"trades": []}
    return {"trades": _backtest_repo.get_trades(run_id)}
