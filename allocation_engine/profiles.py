"""
Write-side rules for assignment load profiles.

The read path (:mod:`allocation_engine.curves`) tolerates anything and falls
back to a flat load. Submissions are held to stricter rules before they are
stored:

- a curve has at least two points, strictly increasing by day,
- the first point sits on the assignment start and the last on its end,
- values are clamped to [0, 100] and kept with two decimals.

Curve assignments store the time-weighted average of the curve as their base
percentage, so flat consumers still see a sensible number.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .curves import clamp_percent, iter_days, resolve_daily_percentage, start_of_day
from .models import LOAD_PROFILE_MODES, LoadPoint, LoadProfile


class DateRangeInvalidError(ValueError):
    def __init__(self, start: date, end: date) -> None:
        super().__init__(f"end date {end.isoformat()} is before start date {start.isoformat()}")
        self.start = start
        self.end = end


class InvalidLoadProfileError(ValueError):
    pass


def ensure_date_range(start: date, end: date) -> None:
    if start_of_day(end) < start_of_day(start):
        raise DateRangeInvalidError(start, end)


def _point_fields(raw: object) -> tuple:
    if isinstance(raw, LoadPoint):
        return raw.day, raw.value
    if isinstance(raw, Mapping):
        return raw.get("date", raw.get("day")), raw.get("value")
    raise InvalidLoadProfileError(f"load profile point must be an object, got {raw!r}")


def _profile_fields(profile: object) -> tuple:
    if isinstance(profile, LoadProfile):
        return profile.mode, list(profile.points)
    if isinstance(profile, Mapping):
        return profile.get("mode"), profile.get("points")
    raise InvalidLoadProfileError("load profile must be an object with 'mode' and 'points'")


def _point_day(value: object) -> date:
    try:
        return start_of_day(value)
    except (ValueError, TypeError, OverflowError) as exc:
        raise InvalidLoadProfileError(f"invalid load profile point date: {value!r}") from exc


def _point_value(value: object) -> float:
    if isinstance(value, bool):
        raise InvalidLoadProfileError(f"invalid load profile point value: {value!r}")
    try:
        number = float(value)
    except (ValueError, TypeError) as exc:
        raise InvalidLoadProfileError(f"invalid load profile point value: {value!r}") from exc
    if not math.isfinite(number):
        raise InvalidLoadProfileError(f"invalid load profile point value: {value!r}")
    return round(clamp_percent(number), 2)


def normalize_load_profile(profile: object, start: date, end: date) -> Optional[LoadProfile]:
    """Validate a submitted profile against the assignment span.

    ``None`` means "nothing submitted"; callers keep whatever is stored.
    """
    if profile is None:
        return None
    mode, raw_points = _profile_fields(profile)
    if mode not in LOAD_PROFILE_MODES:
        raise InvalidLoadProfileError(f"unsupported load profile mode {mode!r}")
    if mode == "flat":
        return LoadProfile(mode="flat")
    if not isinstance(raw_points, (list, tuple)) or len(raw_points) < 2:
        raise InvalidLoadProfileError("curve load profile needs at least two points")
    start_day = start_of_day(start)
    end_day = start_of_day(end)
    points: List[LoadPoint] = []
    previous: Optional[date] = None
    for raw in raw_points:
        raw_day, raw_value = _point_fields(raw)
        day = _point_day(raw_day)
        if day < start_day or day > end_day:
            raise InvalidLoadProfileError(
                f"load profile point {day.isoformat()} outside {start_day.isoformat()}..{end_day.isoformat()}"
            )
        if previous is not None and day <= previous:
            raise InvalidLoadProfileError("load profile points must be strictly increasing by day")
        previous = day
        points.append(LoadPoint(day=day, value=_point_value(raw_value)))
    if points[0].day != start_day:
        raise InvalidLoadProfileError("first load profile point must fall on the assignment start")
    if points[-1].day != end_day:
        raise InvalidLoadProfileError("last load profile point must fall on the assignment end")
    return LoadProfile(mode="curve", points=tuple(points))


def curve_average_percent(profile: LoadProfile, start: date, end: date) -> float:
    """Time-weighted (trapezoid) average of a curve over ``start..end``."""
    if not profile.is_curve:
        return 100.0
    total_days = (start_of_day(end) - start_of_day(start)).days
    if total_days <= 0:
        return profile.points[0].value
    weighted_area = 0.0
    for current, following in zip(profile.points, profile.points[1:]):
        duration = max(0, (following.day - current.day).days)
        if duration == 0:
            continue
        weighted_area += (current.value + following.value) / 2 * duration
    return round(weighted_area / total_days, 2)


def read_stored_profile(stored: object) -> Optional[LoadProfile]:
    """Interpret a persisted profile, which may be a raw JSON mapping.

    Stored data is read leniently, the way the resolver reads it: unusable
    curves come back as ``None`` instead of raising.
    """
    if isinstance(stored, LoadProfile):
        return stored
    if not isinstance(stored, Mapping):
        return None
    mode = stored.get("mode")
    if mode == "flat":
        return LoadProfile(mode="flat")
    if mode != "curve":
        return None
    resolver = resolve_daily_percentage(stored, 0)
    if resolver.is_flat:
        return None
    return LoadProfile(mode="curve", points=resolver.points)


def scale_profile_to_range(
    profile: LoadProfile,
    previous_start: date,
    previous_end: date,
    next_start: date,
    next_end: date,
) -> Optional[LoadProfile]:
    """Stretch a stored curve proportionally onto a new date range.

    Interior points keep their relative position; interior points that land
    on a day already taken by an earlier point (or on the new end) collapse.
    """
    if not profile.is_curve:
        return None
    previous_span = (start_of_day(previous_end) - start_of_day(previous_start)).days
    next_span = (start_of_day(next_end) - start_of_day(next_start)).days
    if previous_span <= 0 or next_span <= 0:
        raise InvalidLoadProfileError("cannot rescale a load curve onto an empty date range")
    next_start_day = start_of_day(next_start)
    next_end_day = start_of_day(next_end)
    scaled: List[Dict[str, object]] = []
    last_index = len(profile.points) - 1
    for index, point in enumerate(profile.points):
        if index == 0:
            day = next_start_day
        elif index == last_index:
            day = next_end_day
        else:
            offset = (point.day - start_of_day(previous_start)).days * next_span // previous_span
            day = next_start_day + relativedelta(days=offset)
            if day <= scaled[-1]["date"] or day >= next_end_day:
                continue
        scaled.append({"date": day, "value": point.value})
    return normalize_load_profile({"mode": "curve", "points": scaled}, next_start, next_end)


@dataclass(frozen=True)
class ImportedAllocation:
    start_date: date
    end_date: date
    load_profile: LoadProfile
    base_percentage: float


MonthKey = Union[str, date]


def _month_start(key: MonthKey) -> date:
    if isinstance(key, date):
        return date(key.year, key.month, 1)
    text = str(key).strip()
    try:
        parsed = dateparser.isoparse(text if len(text) > 7 else f"{text}-01")
    except ValueError as exc:
        raise ValueError(f"invalid month key {key!r}; expected YYYY-MM") from exc
    return date(parsed.year, parsed.month, 1)


def profile_from_monthly_values(monthly: Mapping) -> ImportedAllocation:
    """Turn imported ``{month: percent}`` values into a curve assignment span.

    Each month holds its value from its first to its last day; months missing
    between two imported months are bridged by interpolation.
    """
    month_values: List[tuple] = []
    seen = set()
    for key, raw_value in monthly.items():
        try:
            value = float(raw_value)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(value):
            continue
        month_start = _month_start(key)
        if month_start in seen:
            raise ValueError(f"month {month_start:%Y-%m} is listed more than once")
        seen.add(month_start)
        month_values.append((month_start, round(clamp_percent(value), 2)))
    if not month_values:
        raise ValueError("no monthly values to import")
    month_values.sort(key=lambda item: item[0])

    points: List[LoadPoint] = []
    for month_start, value in month_values:
        month_end = month_start + relativedelta(months=1, days=-1)
        for day in (month_start, month_end):
            if points and points[-1].day == day:
                continue
            points.append(LoadPoint(day=day, value=value))
    start = month_values[0][0]
    end = month_values[-1][0] + relativedelta(months=1, days=-1)
    profile = LoadProfile(mode="curve", points=tuple(points))
    resolver = resolve_daily_percentage(profile, month_values[0][1])
    values: Sequence[float] = [resolver(day) for day in iter_days(start, end)]
    base_percentage = round(sum(values) / len(values), 2)
    return ImportedAllocation(
        start_date=start,
        end_date=end,
        load_profile=profile,
        base_percentage=base_percentage,
    )
