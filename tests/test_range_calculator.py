"""Tests for torb.strategy.range_calculator — opening range and width filter."""

from datetime import date, datetime, timezone

from torb.strategy.instruments import default_settings_for
from torb.strategy.models import Candle
from torb.strategy.range_calculator import (
    calculate_range,
    candles_in_window,
    range_width_pips,
)

SETTINGS = default_settings_for("USD/JPY")
SESSION = date(2024, 1, 15)
PIP = 0.01


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(h, mi, o, hi, lo, c, day=15):
    return Candle(
        time=datetime(2024, 1, day, h, mi, tzinfo=timezone.utc),
        open=o, high=hi, low=lo, close=c,
    )


def _range_candles(high=150.30, low=150.00):
    """Three candles inside 09:00–09:45 Tokyo (00:00–00:45 UTC)."""
    mid = round((high + low) / 2, 3)
    return [
        _make_candle(0, 0, mid, high, mid, mid),
        _make_candle(0, 15, mid, mid, low, mid),
        _make_candle(0, 30, mid, mid, mid, mid),
    ]


# ── Tests ────────────────────────────────────────────────────────────────


class TestRangeWidth:
    def test_width_in_pips(self):
        assert range_width_pips(150.30, 150.00, PIP) == 30.0

    def test_width_rounded_to_tenth(self):
        assert range_width_pips(1.08523, 1.08350, 0.0001) == 17.3


class TestWindow:
    def test_excludes_range_end_and_earlier_candles(self):
        candles = [
            _make_candle(23, 45, 150.0, 151.0, 149.0, 150.0, day=14),
            *_range_candles(),
            _make_candle(0, 45, 150.0, 151.0, 149.0, 150.0),
        ]
        window = candles_in_window(candles, SESSION, SETTINGS)
        assert len(window) == 3
        assert all(c.time.day == 15 and c.time.minute < 45 for c in window)


class TestCalculateRange:
    def test_valid_range(self):
        rng = calculate_range(_range_candles(), SESSION, SETTINGS, PIP)
        assert rng is not None
        assert rng.high == 150.30
        assert rng.low == 150.00
        assert rng.width_pips == 30.0
        assert rng.session_date == SESSION
        assert rng.start_time == datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)
        assert rng.end_time == datetime(2024, 1, 15, 0, 45, tzinfo=timezone.utc)

    def test_candle_at_range_end_ignored(self):
        candles = _range_candles() + [_make_candle(0, 45, 150.2, 150.45, 150.1, 150.4)]
        rng = calculate_range(candles, SESSION, SETTINGS, PIP)
        assert rng.high == 150.30

    def test_no_candles_in_window(self):
        candles = [_make_candle(3, 0, 150.0, 150.3, 150.0, 150.1)]
        assert calculate_range(candles, SESSION, SETTINGS, PIP) is None
        assert calculate_range([], SESSION, SETTINGS, PIP) is None

    def test_too_narrow(self):
        rng = calculate_range(_range_candles(high=150.10), SESSION, SETTINGS, PIP)
        assert rng is None

    def test_too_wide(self):
        rng = calculate_range(_range_candles(high=150.60), SESSION, SETTINGS, PIP)
        assert rng is None

    def test_bounds_inclusive(self):
        low_edge = calculate_range(_range_candles(high=150.15), SESSION, SETTINGS, PIP)
        high_edge = calculate_range(_range_candles(high=150.50), SESSION, SETTINGS, PIP)
        assert low_edge is not None and low_edge.width_pips == 15.0
        assert high_edge is not None and high_edge.width_pips == 50.0

    def test_custom_width_filter(self):
        loose = SETTINGS.with_updates(min_range_width_pips=5.0)
        rng = calculate_range(_range_candles(high=150.10), SESSION, loose, PIP)
        assert rng is not None
        assert rng.width_pips == 10.0

    def test_to_dict(self):
        data = calculate_range(_range_candles(), SESSION, SETTINGS, PIP).to_dict()
        assert data["session_date"] == "2024-01-15"
        assert data["width_pips"] == 30.0
