"""
Sync window calculation

Every run re-fetches a trailing window that ends yesterday: today's totals
are incomplete, and conversions keep being attributed to recent days for a
while after the click.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Union

import pytz

STANDARD_WINDOW = "standard"
LOW_FREQUENCY_WINDOW = "low_frequency"


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive calendar date range [date_from, date_to]"""
    date_from: date
    date_to: date

    def __contains__(self, day: date) -> bool:
        return self.date_from <= day <= self.date_to

    @property
    def days(self) -> int:
        return (self.date_to - self.date_from).days + 1

    def to_dict(self) -> Dict[str, str]:
        return {"date_from": self.date_from.isoformat(), "date_to": self.date_to.isoformat()}


def _local_today(now: datetime, tz: Union[str, pytz.BaseTzInfo]) -> date:
    if isinstance(tz, str):
        tz = pytz.timezone(tz)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()


def calculate_window(now: datetime, lookback_days: int, tz: Union[str, pytz.BaseTzInfo] = "UTC") -> SyncWindow:
    """
    Window ending yesterday (in `tz`) and starting `lookback_days` earlier.

    Naive `now` values are interpreted as UTC.
    """
    if lookback_days < 0:
        raise ValueError(f"lookback_days must be >= 0, got {lookback_days}")
    date_to = _local_today(now, tz) - timedelta(days=1)
    return SyncWindow(date_from=date_to - timedelta(days=lookback_days), date_to=date_to)


def calculate_sync_windows(
    now: datetime,
    refresh_days: int,
    display_refresh_days: int,
    tz: Union[str, pytz.BaseTzInfo] = "UTC",
) -> Dict[str, SyncWindow]:
    """Windows for the high-volume datasets and the low-frequency one"""
    return {
        STANDARD_WINDOW: calculate_window(now, refresh_days, tz),
        LOW_FREQUENCY_WINDOW: calculate_window(now, display_refresh_days, tz),
    }
