from datetime import date

import pytest

from allocation_engine.models import LoadPoint, LoadProfile
from allocation_engine.profiles import (
    DateRangeInvalidError,
    InvalidLoadProfileError,
    curve_average_percent,
    ensure_date_range,
    normalize_load_profile,
    profile_from_monthly_values,
    read_stored_profile,
    scale_profile_to_range,
)

from conftest import curve

START = date(2024, 1, 1)
END = date(2024, 1, 31)


def test_ensure_date_range_rejects_inverted_range():
    ensure_date_range(START, START)
    with pytest.raises(DateRangeInvalidError) as excinfo:
        ensure_date_range(END, START)
    assert excinfo.value.start == END
    assert excinfo.value.end == START


def test_normalize_returns_none_when_nothing_submitted():
    assert normalize_load_profile(None, START, END) is None


def test_normalize_flat_drops_points():
    profile = normalize_load_profile(
        {"mode": "flat", "points": [{"date": "2024-01-01", "value": 5}]}, START, END
    )
    assert profile == LoadProfile(mode="flat")


def test_normalize_curve_rounds_and_clamps_values():
    profile = normalize_load_profile(
        curve(("2024-01-01", 10.456), ("2024-01-15", 120), ("2024-01-31", 50)), START, END
    )
    assert profile.mode == "curve"
    assert [point.value for point in profile.points] == [10.46, 100.0, 50.0]
    assert profile.points[0].day == START
    assert profile.points[-1].day == END


@pytest.mark.parametrize(
    "submitted",
    [
        {"mode": "weekly"},
        {"mode": "curve", "points": [{"date": "2024-01-01", "value": 10}]},
        curve(("2024-01-01", 10), ("2024-02-15", 20)),
        curve(("2024-01-02", 10), ("2024-01-31", 20)),
        curve(("2024-01-01", 10), ("2024-01-30", 20)),
        curve(("2024-01-01", 10), ("2024-01-20", 20), ("2024-01-10", 30), ("2024-01-31", 5)),
        curve(("2024-01-01", 10), ("2024-01-01", 20), ("2024-01-31", 5)),
        curve(("2024-01-01", 10), ("not a date", 20), ("2024-01-31", 5)),
        curve(("2024-01-01", 10), ("2024-01-31", "lots")),
        "curve",
    ],
)
def test_normalize_rejects_invalid_curves(submitted):
    with pytest.raises(InvalidLoadProfileError):
        normalize_load_profile(submitted, START, END)


def test_stored_profile_serializes_back_to_submitted_shape():
    submitted = curve(("2024-01-01", 10.0), ("2024-01-31", 50.0))
    profile = normalize_load_profile(submitted, START, END)
    assert profile.to_dict() == submitted
    assert normalize_load_profile(profile.to_dict(), START, END) == profile
    assert LoadProfile(mode="flat").to_dict() == {"mode": "flat"}


def test_curve_average_is_time_weighted():
    profile = normalize_load_profile(curve(("2024-01-01", 0), ("2024-01-11", 100), ("2024-01-31", 100)), START, END)
    # 10 days ramping 0->100 (area 500) then 20 days at 100 (area 2000) over 30 days
    assert curve_average_percent(profile, START, END) == pytest.approx(83.33)


def test_curve_average_of_flat_profile_is_full_time():
    assert curve_average_percent(LoadProfile(mode="flat"), START, END) == 100.0


def test_scale_profile_moves_edges_and_keeps_relative_positions():
    profile = normalize_load_profile(
        curve(("2024-01-01", 20), ("2024-01-11", 80), ("2024-01-31", 40)), START, END
    )
    scaled = scale_profile_to_range(profile, START, END, date(2024, 3, 1), date(2024, 4, 30))
    assert [point.day for point in scaled.points] == [date(2024, 3, 1), date(2024, 3, 21), date(2024, 4, 30)]
    assert [point.value for point in scaled.points] == [20.0, 80.0, 40.0]


def test_scale_profile_collapses_colliding_interior_points():
    profile = normalize_load_profile(
        curve(("2024-01-01", 20), ("2024-01-11", 80), ("2024-01-12", 60), ("2024-01-31", 40)), START, END
    )
    scaled = scale_profile_to_range(profile, START, END, date(2024, 5, 1), date(2024, 5, 3))
    assert [point.day for point in scaled.points] == [date(2024, 5, 1), date(2024, 5, 3)]


def test_scale_profile_ignores_flat_profiles():
    assert scale_profile_to_range(LoadProfile(mode="flat"), START, END, START, END) is None


def test_scale_profile_rejects_empty_target_range():
    profile = LoadProfile(mode="curve", points=(LoadPoint(START, 10), LoadPoint(END, 20)))
    with pytest.raises(InvalidLoadProfileError):
        scale_profile_to_range(profile, START, END, date(2024, 2, 1), date(2024, 2, 1))


def test_monthly_values_become_month_long_plateaus():
    imported = profile_from_monthly_values({"2024-02": 50, "2024-01": 100.004, "2024-03": "oops"})
    assert imported.start_date == date(2024, 1, 1)
    assert imported.end_date == date(2024, 2, 29)
    assert [(point.day, point.value) for point in imported.load_profile.points] == [
        (date(2024, 1, 1), 100.0),
        (date(2024, 1, 31), 100.0),
        (date(2024, 2, 1), 50.0),
        (date(2024, 2, 29), 50.0),
    ]
    # 31 days at 100 and 29 days at 50
    assert imported.base_percentage == pytest.approx(round((31 * 100 + 29 * 50) / 60, 2))


def test_monthly_values_require_at_least_one_value():
    with pytest.raises(ValueError):
        profile_from_monthly_values({"2024-01": None})


def test_monthly_values_reject_the_same_month_twice():
    with pytest.raises(ValueError, match="2024-01"):
        profile_from_monthly_values({"2024-01": 10, date(2024, 1, 15): 20})


def test_read_stored_profile_accepts_raw_mappings():
    stored = read_stored_profile(curve(("2024-01-31", 40), ("2024-01-01", 10)))
    assert stored == LoadProfile(
        mode="curve", points=(LoadPoint(START, 10.0), LoadPoint(END, 40.0))
    )
    assert read_stored_profile({"mode": "flat"}) == LoadProfile(mode="flat")
    assert read_stored_profile(stored) is stored


@pytest.mark.parametrize(
    "stored",
    [None, "curve", {"mode": "weekly"}, {"mode": "curve", "points": [{"date": "2024-01-01", "value": 10}]}],
)
def test_read_stored_profile_ignores_unusable_data(stored):
    assert read_stored_profile(stored) is None
