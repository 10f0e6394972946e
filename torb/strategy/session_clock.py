"""Session clock — pure functions, the only place UTC is mapped to session time.

Every other module asks this one "which session does this instant belong
to" and "where are the window bounds", so no offset constant is repeated
anywhere else.  Naive datetimes are interpreted as UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from torb.strategy.models import SessionSettings


@dataclass(frozen=True)
class SessionBounds:
    """Window bounds of one session, as UTC instants."""

    range_start: datetime
    range_end: datetime
    trading_end: datetime


@dataclass(frozen=True)
class SessionStatus:
    """Where *now* sits relative to the session windows."""

    is_range_active: bool
    is_trading_time: bool
    next_session_start: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "is_range_active": self.is_range_active,
            "is_trading_time": self.is_trading_time,
            "next_session_start": (
                self.next_session_start.isoformat()
                if self.next_session_start is not None else None
            ),
        }


@lru_cache(maxsize=32)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def ensure_utc(ts: datetime) -> datetime:
    """Return *ts* as an aware UTC datetime (naive input is taken as UTC)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_session_time(ts: datetime, settings: SessionSettings) -> datetime:
    """Convert *ts* to the session's local wall clock."""
    return ensure_utc(ts).astimezone(_zone(settings.timezone))


def session_date_of(ts: datetime, settings: SessionSettings) -> date:
    """Local calendar date of the session *ts* falls in."""
    return to_session_time(ts, settings).date()


def is_weekend(ts: datetime, settings: SessionSettings) -> bool:
    """``True`` on a local Saturday or Sunday."""
    return to_session_time(ts, settings).weekday() in (5, 6)


def session_bounds(session_date: date, settings: SessionSettings) -> SessionBounds:
    """Range and trading window bounds of *session_date*, in UTC."""
    tz = _zone(settings.timezone)

    def _at(t) -> datetime:
        return datetime.combine(session_date, t, tzinfo=tz).astimezone(timezone.utc)

    return SessionBounds(
        range_start=_at(settings.range_start),
        range_end=_at(settings.range_end),
        trading_end=_at(settings.trading_end),
    )


def is_range_time(ts: datetime, settings: SessionSettings) -> bool:
    """``True`` while the range is being observed: ``[range_start, range_end)``."""
    local = to_session_time(ts, settings).time()
    return settings.range_start <= local < settings.range_end


def is_trading_time(ts: datetime, settings: SessionSettings) -> bool:
    """``True`` inside the breakout window: ``[range_end, trading_end)``."""
    local = to_session_time(ts, settings).time()
    return settings.range_end <= local < settings.trading_end


def session_status(now: datetime, settings: SessionSettings) -> SessionStatus:
    """Summarise the session state at *now*.

    ``next_session_start`` is only set when neither window is open; it is
    the next weekday range start after *now*.
    """
    range_active = is_range_time(now, settings)
    trading = is_trading_time(now, settings)
    next_start: Optional[datetime] = None

    if not range_active and not trading:
        now_utc = ensure_utc(now)
        day = session_date_of(now_utc, settings)
        for _ in range(8):
            candidate = session_bounds(day, settings).range_start
            if candidate > now_utc and day.weekday() < 5:
                next_start = candidate
                break
            day += timedelta(days=1)

    return SessionStatus(
        is_range_active=range_active,
        is_trading_time=trading,
        next_session_start=next_start,
    )
