"""Candle ingestion — load, validate and clean OHLC data.

Accepts CSV or Parquet files and JSON-style records.  Output candles are
UTC-stamped, strictly increasing in time, deduplicated by time, and free of
NaN or non-positive prices, which is what the TORB core assumes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from torb.strategy.models import Candle

logger = logging.getLogger("torb.data")

PRICE_COLUMNS = ["open", "high", "low", "close"]
_TIME_ALIASES = ("time", "timestamp", "datetime", "date")


def _normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.rename(columns={c: str(c).strip().lower() for c in df.columns})
    if "time" not in df.columns:
        for alias in _TIME_ALIASES[1:]:
            if alias in df.columns:
                df = df.rename(columns={alias: "time"})
                break
    missing = [c for c in ["time", *PRICE_COLUMNS] if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data is missing column(s): {', '.join(missing)}")
    if "volume" not in df.columns:
        df["volume"] = 0
    return df


def _to_utc(series: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(series):
        # Epoch seconds, the resolution candles are stamped at.
        return pd.to_datetime(series, unit="s", utc=True)
    return pd.to_datetime(series, utc=True, errors="coerce")


def clean_candles(df: pd.DataFrame, drop_weekends: bool = False) -> pd.DataFrame:
    """Validate raw candle rows.

    1. Parse ``time`` as UTC (epoch seconds or ISO strings).
    2. Drop rows with unparsable times, NaN or non-positive prices, or
       ``high < low``.
    3. Sort by time and keep the last row of each duplicated timestamp.
    4. Optionally remove Saturday/Sunday (UTC) rows.
    """
    if df.empty:
        return df

    df = _normalise_columns(df.copy())
    df["time"] = _to_utc(df["time"])
    for col in PRICE_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["volume"] = pd.to_numeric(df["volume"], errors="coerce").fillna(0).astype(int)

    before = len(df)
    df = df.dropna(subset=["time", *PRICE_COLUMNS])
    df = df[(df[PRICE_COLUMNS] > 0).all(axis=1) & (df["high"] >= df["low"])]

    df = df.sort_values("time", kind="stable")
    df = df.drop_duplicates(subset="time", keep="last")

    dropped = before - len(df)
    if dropped:
        logger.warning("Dropped %d invalid or duplicate candle row(s)", dropped)

    if drop_weekends:
        weekday = ~df["time"].dt.weekday.isin([5, 6])
        weekend = int((~weekday).sum())
        if weekend:
            logger.info("Dropped %d weekend candle row(s)", weekend)
        df = df[weekday]
    return df.reset_index(drop=True)


def dataframe_to_candles(df: pd.DataFrame) -> list[Candle]:
    """Convert a cleaned DataFrame to ``Candle`` values."""
    return [
        Candle(
            time=row.time.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def candles_from_records(records: Iterable[dict], drop_weekends: bool = False) -> list[Candle]:
    """Validate JSON-style rows (``time``, ``open`` ... ``close``) into candles."""
    df = pd.DataFrame(list(records))
    if df.empty:
        return []
    return dataframe_to_candles(clean_candles(df, drop_weekends=drop_weekends))


def load_candles(path: str | Path, drop_weekends: bool = False) -> list[Candle]:
    """Load candles from a ``.csv`` or ``.parquet`` file."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df = pd.read_parquet(path, engine="pyarrow")
    elif suffix in (".csv", ".txt"):
        df = pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported candle file type: {path.name}")

    cleaned = clean_candles(df, drop_weekends=drop_weekends)
    logger.info("Loaded %d candles from %s", len(cleaned), path)
    return dataframe_to_candles(cleaned)
