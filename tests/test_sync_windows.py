"""
Sync window calculation tests.

Windows always end yesterday in the account timezone; today is never
fetched because its totals are still moving.
"""
from datetime import date, datetime

import pytest
import pytz

from adsync.services.sync_windows import (
    LOW_FREQUENCY_WINDOW,
    STANDARD_WINDOW,
    SyncWindow,
    calculate_sync_windows,
    calculate_window,
)


class TestCalculateWindow:
    def test_window_ends_yesterday(self):
        window = calculate_window(datetime(2026, 10, 18, 12, 0), 7)
        assert window == SyncWindow(date(2026, 10, 10), date(2026, 10, 17))
        assert window.days == 8

    def test_zero_lookback_is_single_day(self):
        window = calculate_window(datetime(2026, 10, 18, 0, 5), 0)
        assert window.date_from == window.date_to == date(2026, 10, 17)

    def test_negative_lookback_rejected(self):
        with pytest.raises(ValueError):
            calculate_window(datetime(2026, 10, 18), -1)

    def test_yesterday_is_local_to_timezone(self):
        """22:30 UTC is already the next day in Moscow (UTC+3)."""
        now = datetime(2026, 10, 17, 22, 30)
        assert calculate_window(now, 0, "UTC").date_to == date(2026, 10, 16)
        assert calculate_window(now, 0, "Europe/Moscow").date_to == date(2026, 10, 17)

    def test_aware_datetime_is_converted(self):
        now = pytz.timezone("Europe/Moscow").localize(datetime(2026, 10, 18, 1, 0))
        assert calculate_window(now, 0, "UTC").date_to == date(2026, 10, 16)

    def test_month_boundary(self):
        window = calculate_window(datetime(2026, 3, 2, 9, 0), 7)
        assert window.date_from == date(2026, 2, 22)
        assert window.date_to == date(2026, 3, 1)


def test_sync_windows_by_class():
    windows = calculate_sync_windows(datetime(2026, 10, 18, 12, 0), 7, 3)
    assert windows[STANDARD_WINDOW].date_from == date(2026, 10, 10)
    assert windows[LOW_FREQUENCY_WINDOW].date_from == date(2026, 10, 14)
    assert windows[STANDARD_WINDOW].date_to == windows[LOW_FREQUENCY_WINDOW].date_to


def test_window_membership_is_inclusive():
    window = SyncWindow(date(2026, 10, 10), date(2026, 10, 17))
    assert date(2026, 10, 10) in window
    assert date(2026, 10, 17) in window
    assert date(2026, 10, 9) not in window
    assert date(2026, 10, 18) not in window
    assert window.to_dict() == {"date_from": "2026-10-10", "date_to": "2026-10-17"}
