"""Tests for torb.risk.drawdown — equity peak and drawdown tracking."""

import pytest

from torb.risk.drawdown import DrawdownTracker


class TestDrawdownTracker:
    def test_initial_state(self):
        dd = DrawdownTracker(10_000.0)
        assert dd.peak_equity == 10_000.0
        assert dd.current_equity == 10_000.0
        assert dd.drawdown_pct == 0.0
        assert dd.max_drawdown == 0.0
        assert dd.equity_curve == [10_000.0]

    def test_rejects_non_positive_equity(self):
        with pytest.raises(ValueError, match="initial_equity"):
            DrawdownTracker(0.0)

    def test_tracks_worst_decline(self):
        dd = DrawdownTracker(10_000.0)
        for equity in (11_000.0, 9_900.0, 12_000.0, 11_400.0):
            dd.update(equity)
        assert dd.peak_equity == 12_000.0
        assert dd.max_drawdown == pytest.approx(1_100.0)
        assert dd.max_drawdown_pct == pytest.approx(10.0)
        assert dd.drawdown_pct == pytest.approx(5.0)
        assert dd.equity_curve == [10_000.0, 11_000.0, 9_900.0, 12_000.0, 11_400.0]

    def test_curve_is_a_copy(self):
        dd = DrawdownTracker(10_000.0)
        dd.equity_curve.append(1.0)
        assert dd.equity_curve == [10_000.0]
