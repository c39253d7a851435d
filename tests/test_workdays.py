from datetime import date, datetime, timedelta, timezone

import pytest

from allocation_engine.workdays import (
    CalendarRefresher,
    CalendarSyncError,
    WorkingDayCalendar,
    build_year_days,
    days_in_year,
    is_leap_year,
)


@pytest.mark.parametrize(
    "year, expected",
    [(2023, False), (2024, True), (1900, False), (2000, True)],
)
def test_leap_year_rule(year, expected):
    assert is_leap_year(year) is expected
    assert days_in_year(year) == (366 if expected else 365)


def test_build_year_days_marks_weekends_and_holidays():
    days = build_year_days(2024, [(date(2024, 1, 1), "New Year")])
    assert len(days) == 366
    new_year = days[0]
    assert new_year.is_holiday and new_year.holiday_name == "New Year"
    assert not new_year.is_working_day
    saturday = days[5]
    assert saturday.day == date(2024, 1, 6)
    assert saturday.is_weekend and not saturday.is_working_day
    assert days[1].is_working_day


def test_calendar_falls_back_to_weekday_rule():
    calendar = WorkingDayCalendar()
    assert calendar.is_working_day(date(2024, 1, 5))
    assert not calendar.is_working_day(date(2024, 1, 6))
    assert not calendar(date(2024, 1, 7))


def test_calendar_overrides_weekday_rule():
    calendar = WorkingDayCalendar({date(2024, 1, 6): True, date(2024, 1, 8): False})
    assert calendar.is_working_day(date(2024, 1, 6))
    assert not calendar.is_working_day(date(2024, 1, 8))


def test_calendar_from_days_and_merge():
    calendar = WorkingDayCalendar.from_days(build_year_days(2024))
    assert calendar.covers_year(2024)
    merged = calendar.merged_with(build_year_days(2024, [(date(2024, 7, 4), "Independence Day")]))
    assert calendar.is_working_day(date(2024, 7, 4))
    assert not merged.is_working_day(date(2024, 7, 4))


def test_year_mask_length_follows_leap_rule():
    calendar = WorkingDayCalendar.from_holidays({2024: [(date(2024, 5, 1), "Labour Day")]})
    mask = calendar.year_mask(2024)
    assert len(mask) == 366
    assert mask[date(2024, 5, 1).timetuple().tm_yday - 1] is False
    assert len(calendar.year_mask(2023)) == 365
    assert calendar.covers_year(2024)
    assert not calendar.covers_year(2023)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_refresher_syncs_and_reuses_fresh_snapshot():
    calls = []

    def source(year):
        calls.append(year)
        return [(date(year, 1, 2), "Bank holiday")]

    clock = FakeClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
    refresher = CalendarRefresher(holiday_source=source, clock=clock)
    results = refresher.sync_years()
    assert [item.year for item in results] == [2024, 2025]
    assert all(item.refreshed for item in results)
    assert not refresher.snapshot().is_working_day(date(2024, 1, 2))

    again = refresher.sync_year(2024)
    assert not again.refreshed
    assert calls == [2024, 2025]

    clock.now += timedelta(days=2)
    assert refresher.sync_year(2024).refreshed
    assert calls == [2024, 2025, 2024]


def test_refresher_keeps_previous_snapshot_on_failure():
    state = {"fail": False}

    def source(year):
        if state["fail"]:
            raise OSError("upstream unavailable")
        return []

    refresher = CalendarRefresher(holiday_source=source, clock=FakeClock(datetime(2024, 6, 1, tzinfo=timezone.utc)))
    refresher.sync_year(2024)
    state["fail"] = True
    result = refresher.sync_year(2024, force=True)
    assert result.used_fallback and not result.refreshed
    assert refresher.state(2024).last_status == "error"
    assert refresher.state(2024).last_error == "upstream unavailable"
    assert refresher.snapshot().covers_year(2024)


def test_refresher_raises_without_snapshot():
    def source(year):
        raise OSError("down")

    refresher = CalendarRefresher(holiday_source=source)
    with pytest.raises(CalendarSyncError) as excinfo:
        refresher.sync_year(2030)
    assert excinfo.value.year == 2030


def test_refresher_health_reports_freshness():
    clock = FakeClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
    refresher = CalendarRefresher(holiday_source=lambda year: [], clock=clock, include_next_year=False)
    refresher.sync_years([2024])
    health = refresher.health()
    assert health["current_year"]["freshness"] == "fresh"
    assert health["next_year"]["freshness"] == "missing"
    clock.now += timedelta(days=3)
    assert refresher.health()["current_year"]["freshness"] == "stale"


def test_refresher_background_thread_starts_and_stops():
    synced = []
    refresher = CalendarRefresher(
        holiday_source=lambda year: synced.append(year) or [],
        interval_seconds=60,
        clock=FakeClock(datetime(2024, 6, 1, tzinfo=timezone.utc)),
    )
    refresher.start()
    refresher.stop(timeout=5)
    assert 2024 in synced
