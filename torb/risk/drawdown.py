"""Equity drawdown tracking — pure math, no I/O.

Follows the account balance through a backtest and records the deepest
peak-to-trough decline, in currency and as a percentage of the peak.
"""


class DrawdownTracker:
    """Tracks equity peaks and the worst drawdown seen so far.

    Args:
        initial_equity: Starting account equity.
    """

    def __init__(self, initial_equity: float) -> None:
        if initial_equity <= 0:
            raise ValueError(
                f"initial_equity must be positive, got {initial_equity}"
            )
        self._peak_equity: float = initial_equity
        self._current_equity: float = initial_equity
        self._max_drawdown: float = 0.0
        self._max_drawdown_pct: float = 0.0
        self._curve: list[float] = [initial_equity]

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, equity: float) -> None:
        """Record the latest equity value."""
        self._current_equity = equity
        self._curve.append(equity)
        if equity > self._peak_equity:
            self._peak_equity = equity
            return
        drawdown = self._peak_equity - equity
        if drawdown > self._max_drawdown:
            self._max_drawdown = drawdown
        pct = self.drawdown_pct
        if pct > self._max_drawdown_pct:
            self._max_drawdown_pct = pct

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def peak_equity(self) -> float:
        """Highest equity recorded."""
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        """Most recently recorded equity."""
        return self._current_equity

    @property
    def drawdown_pct(self) -> float:
        """Current drawdown as a percentage of peak equity."""
        if self._peak_equity <= 0:
            return 0.0
        return (
            (self._peak_equity - self._current_equity) / self._peak_equity
        ) * 100.0

    @property
    def max_drawdown(self) -> float:
        """Largest peak-to-trough decline, in currency."""
        return self._max_drawdown

    @property
    def max_drawdown_pct(self) -> float:
        """Largest decline as a percentage of the peak it fell from."""
        return self._max_drawdown_pct

    @property
    def equity_curve(self) -> list[float]:
        return list(self._curve)
