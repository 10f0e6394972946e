"""TORB — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from torb.risk.trade_simulator import ALLOWED_LEVERAGE, AccountConfig
from torb.strategy.models import SessionSettings


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    pairs: tuple[str, ...]
    account_balance: float
    account_leverage: int
    risk_per_trade_pct: float
    min_range_width_pips: float
    max_range_width_pips: float
    profit_multiplier: float
    stop_loss_buffer_pips: float
    db_path: str
    log_level: str
    api_port: int

    def session_settings(self) -> SessionSettings:
        """Base TORB settings.  Session times come from each instrument."""
        return SessionSettings(
            min_range_width_pips=self.min_range_width_pips,
            max_range_width_pips=self.max_range_width_pips,
            profit_multiplier=self.profit_multiplier,
            stop_loss_buffer_pips=self.stop_loss_buffer_pips,
        )

    def account(self) -> AccountConfig:
        return AccountConfig(
            balance=self.account_balance,
            leverage=self.account_leverage,
            risk_per_trade_pct=self.risk_per_trade_pct,
        )


def _float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None


def _int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    pairs = tuple(
        p.strip() for p in os.environ.get("TORB_PAIRS", "USD/JPY").split(",")
        if p.strip()
    )
    if not pairs:
        raise ValueError("TORB_PAIRS must name at least one pair")

    leverage = _int("ACCOUNT_LEVERAGE", "25")
    if leverage not in ALLOWED_LEVERAGE:
        raise ValueError(
            f"ACCOUNT_LEVERAGE must be one of {ALLOWED_LEVERAGE}, got {leverage}"
        )

    balance = _float("ACCOUNT_BALANCE", "100000")
    if balance <= 0:
        raise ValueError(f"ACCOUNT_BALANCE must be positive, got {balance}")

    min_width = _float("MIN_RANGE_WIDTH_PIPS", "15")
    max_width = _float("MAX_RANGE_WIDTH_PIPS", "50")
    if max_width < min_width:
        raise ValueError(
            f"MAX_RANGE_WIDTH_PIPS ({max_width}) must be >= "
            f"MIN_RANGE_WIDTH_PIPS ({min_width})"
        )

    return Config(
        pairs=pairs,
        account_balance=balance,
        account_leverage=leverage,
        risk_per_trade_pct=_float("RISK_PER_TRADE_PCT", "2.0"),
        min_range_width_pips=min_width,
        max_range_width_pips=max_width,
        profit_multiplier=_float("PROFIT_MULTIPLIER", "1.5"),
        stop_loss_buffer_pips=_float("STOP_LOSS_BUFFER_PIPS", "5"),
        db_path=os.environ.get("DB_PATH", "data/torb.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_int("API_PORT", "8080"),
    )
