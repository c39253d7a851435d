from __future__ import annotations

import logging
import math
from bisect import bisect_left
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence

from dateutil import parser as dateparser

from .models import Assignment, LoadPoint, LoadProfile

logger = logging.getLogger(__name__)


def clamp_percent(value: float) -> float:
    value = float(value)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


def start_of_day(value: object) -> date:
    """Truncate a date, datetime or ISO string to its UTC calendar day."""
    if isinstance(value, str):
        value = dateparser.isoparse(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"cannot interpret {value!r} as a calendar day")


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    step = timedelta(days=1)
    while current <= end:
        yield current
        current += step


def _parse_point(raw: object) -> Optional[LoadPoint]:
    if isinstance(raw, LoadPoint):
        day, value = raw.day, raw.value
    elif isinstance(raw, Mapping):
        day, value = raw.get("date", raw.get("day")), raw.get("value")
    else:
        return None
    if not isinstance(day, (str, date)) or isinstance(value, bool) or value is None:
        return None
    try:
        parsed_day = start_of_day(day)
        parsed_value = float(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if not math.isfinite(parsed_value):
        return None
    return LoadPoint(day=parsed_day, value=clamp_percent(parsed_value))


def _raw_curve_points(curve: object) -> Optional[Sequence[object]]:
    if isinstance(curve, LoadProfile):
        mode, points = curve.mode, curve.points
    elif isinstance(curve, Mapping):
        mode, points = curve.get("mode"), curve.get("points")
    else:
        return None
    if mode != "curve" or not isinstance(points, (list, tuple)) or len(points) < 2:
        return None
    return points


class LoadCurveResolver:
    """Daily load percentage for one assignment.

    Built once per assignment and reused across a day loop: the points are
    filtered, clamped and sorted by day up front, lookups are a bisect.
    A resolver without points is flat and always returns the fallback.
    """

    __slots__ = ("fallback", "points", "_days", "_values")

    def __init__(self, fallback: float, points: Sequence[LoadPoint] = ()) -> None:
        self.fallback = clamp_percent(fallback)
        ordered = sorted(points, key=lambda point: point.day)
        if len(ordered) < 2:
            ordered = []
        self.points = tuple(ordered)
        self._days = [point.day.toordinal() for point in ordered]
        self._values = [point.value for point in ordered]

    @property
    def is_flat(self) -> bool:
        return not self.points

    def __call__(self, value: object) -> float:
        if not self._days:
            return self.fallback
        day = start_of_day(value).toordinal()
        days = self._days
        values = self._values
        if day <= days[0]:
            return values[0]
        if day >= days[-1]:
            return values[-1]
        idx = bisect_left(days, day)
        if days[idx] == day:
            return values[idx]
        d0, d1 = days[idx - 1], days[idx]
        v0, v1 = values[idx - 1], values[idx]
        if d1 == d0:
            return v0
        return v0 + (v1 - v0) * (day - d0) / (d1 - d0)

    def __repr__(self) -> str:
        if self.is_flat:
            return f"LoadCurveResolver(flat={self.fallback})"
        return f"LoadCurveResolver(points={len(self.points)}, fallback={self.fallback})"


def resolve_daily_percentage(curve: object, fallback: float) -> LoadCurveResolver:
    """Return a pure ``day -> percent`` function for a flat value or curve.

    Anything that is not a usable curve (missing, wrong shape, wrong mode,
    fewer than two valid points) degrades to the clamped fallback.
    """
    raw_points = _raw_curve_points(curve)
    if raw_points is None:
        return LoadCurveResolver(fallback)
    points: List[LoadPoint] = []
    for raw in raw_points:
        point = _parse_point(raw)
        if point is not None:
            points.append(point)
    if len(points) < 2:
        logger.warning(
            "load curve has %d valid points out of %d; using flat %.2f%%",
            len(points),
            len(raw_points),
            clamp_percent(fallback),
        )
        return LoadCurveResolver(fallback)
    return LoadCurveResolver(fallback, points)


def resolver_for(assignment: Assignment) -> LoadCurveResolver:
    return resolve_daily_percentage(assignment.load_profile, assignment.base_percentage)


def average_load_percent(assignment: Assignment, resolver: Optional[LoadCurveResolver] = None) -> float:
    """Average daily load over the assignment's own full span, every day counted."""
    start = start_of_day(assignment.start_date)
    end = start_of_day(assignment.end_date)
    if end < start:
        return 0.0
    resolve = resolver or resolver_for(assignment)
    if resolve.is_flat:
        return resolve.fallback
    total = 0.0
    days = 0
    for day in iter_days(start, end):
        total += resolve(day)
        days += 1
    return total / days if days else 0.0
