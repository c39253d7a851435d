from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .curves import resolver_for, start_of_day
from .models import ScopeInput
from .workdays import WorkingDayCalendar, days_in_year

logger = logging.getLogger(__name__)

WorkingDayLookup = Callable[[date], bool]

STATS_DECIMALS = 1


@dataclass(frozen=True)
class PeriodStats:
    average: float
    peak: float
    working_days: int


@dataclass(frozen=True)
class MonthStats:
    month: int
    average: float
    peak: float
    working_days: int


@dataclass(frozen=True)
class YearlyStats:
    """Utilization of one scope over one calendar year.

    ``daily_load`` holds the unrounded utilization per day of the year
    (non-working days are 0); ``monthly`` and ``yearly`` are rounded.
    """

    scope_id: str
    year: int
    headcount: int
    daily_load: Tuple[float, ...]
    working_days: Tuple[bool, ...]
    monthly: Tuple[MonthStats, ...]
    yearly: PeriodStats

    def daily_frame(self) -> pd.DataFrame:
        first = date(self.year, 1, 1)
        rows = [
            {
                "scope_id": self.scope_id,
                "date": (first + timedelta(days=offset)).isoformat(),
                "is_working_day": working,
                "utilization_pct": round(load, STATS_DECIMALS),
            }
            for offset, (load, working) in enumerate(zip(self.daily_load, self.working_days))
        ]
        return pd.DataFrame(rows, columns=["scope_id", "date", "is_working_day", "utilization_pct"])

    def monthly_frame(self) -> pd.DataFrame:
        rows = [
            {
                "scope_id": self.scope_id,
                "month": f"{self.year}-{item.month:02d}",
                "working_days": item.working_days,
                "average_pct": item.average,
                "peak_pct": item.peak,
            }
            for item in self.monthly
        ]
        rows.append(
            {
                "scope_id": self.scope_id,
                "month": str(self.year),
                "working_days": self.yearly.working_days,
                "average_pct": self.yearly.average,
                "peak_pct": self.yearly.peak,
            }
        )
        return pd.DataFrame(rows, columns=["scope_id", "month", "working_days", "average_pct", "peak_pct"])


def working_day_mask(year: int, calendar: Optional[WorkingDayLookup] = None) -> List[bool]:
    lookup = calendar or WorkingDayCalendar().is_working_day
    first = date(year, 1, 1)
    return [bool(lookup(first + timedelta(days=offset))) for offset in range(days_in_year(year))]


def _period_stats(values: Sequence[float]) -> Tuple[float, float, int]:
    if not values:
        return 0.0, 0.0, 0
    average = round(sum(values) / len(values), STATS_DECIMALS)
    peak = round(max(values), STATS_DECIMALS)
    return average, peak, len(values)


def _assignment_key(assignment):
    return (
        assignment.employee_id,
        assignment.project_id,
        start_of_day(assignment.start_date),
        start_of_day(assignment.end_date),
        assignment.id or "",
    )


def _summed_load(year: int, scope: ScopeInput, mask: Sequence[bool]) -> List[float]:
    first = date(year, 1, 1)
    last = date(year, 12, 31)
    totals = [0.0] * len(mask)
    evaluated = 0
    skipped = 0
    # canonical order keeps float sums independent of input order
    for assignment in sorted(scope.iter_assignments(), key=_assignment_key):
        clip_start = max(first, start_of_day(assignment.start_date))
        clip_end = min(last, start_of_day(assignment.end_date))
        if clip_end < clip_start:
            skipped += 1
            continue
        evaluated += 1
        resolve = resolver_for(assignment)
        for offset in range((clip_start - first).days, (clip_end - first).days + 1):
            if not mask[offset]:
                continue
            totals[offset] += resolve(first + timedelta(days=offset))
    logger.debug(
        "scope %s %s: %d assignments aggregated, %d outside the year",
        scope.scope_id,
        year,
        evaluated,
        skipped,
    )
    return totals


def aggregate_year(
    year: int,
    scope: ScopeInput,
    calendar: Optional[WorkingDayLookup] = None,
    *,
    mask: Optional[Sequence[bool]] = None,
) -> YearlyStats:
    """Daily, monthly and yearly utilization for one scope.

    Only working days count: they are the only days loads are added on and
    the only days averaged or peaked over. Summed load is divided by
    ``max(1, headcount)``.
    """
    working = list(mask) if mask is not None else working_day_mask(year, calendar)
    if len(working) != days_in_year(year):
        raise ValueError(f"working-day mask for {year} must have {days_in_year(year)} entries")
    divisor = max(1, scope.headcount)
    summed = _summed_load(year, scope, working)
    daily = [total / divisor if flag else 0.0 for total, flag in zip(summed, working)]

    first = date(year, 1, 1)
    by_month: Dict[int, List[float]] = {month: [] for month in range(1, 13)}
    all_working: List[float] = []
    for offset, (value, flag) in enumerate(zip(daily, working)):
        if not flag:
            continue
        by_month[(first + timedelta(days=offset)).month].append(value)
        all_working.append(value)

    monthly = []
    for month in range(1, 13):
        average, peak, count = _period_stats(by_month[month])
        monthly.append(MonthStats(month=month, average=average, peak=peak, working_days=count))
    average, peak, count = _period_stats(all_working)
    return YearlyStats(
        scope_id=scope.scope_id,
        year=year,
        headcount=scope.headcount,
        daily_load=tuple(daily),
        working_days=tuple(working),
        monthly=tuple(monthly),
        yearly=PeriodStats(average=average, peak=peak, working_days=count),
    )


def aggregate_scopes(
    year: int,
    scopes: Iterable[ScopeInput],
    calendar: Optional[WorkingDayLookup] = None,
) -> Dict[str, YearlyStats]:
    """Run :func:`aggregate_year` for several independent scopes."""
    mask = working_day_mask(year, calendar)
    return {scope.scope_id: aggregate_year(year, scope, mask=mask) for scope in scopes}


def stats_frames(stats: Iterable[YearlyStats]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    items = list(stats)
    if not items:
        return (
            pd.DataFrame(columns=["scope_id", "date", "is_working_day", "utilization_pct"]),
            pd.DataFrame(columns=["scope_id", "month", "working_days", "average_pct", "peak_pct"]),
        )
    daily = pd.concat([item.daily_frame() for item in items], ignore_index=True)
    monthly = pd.concat([item.monthly_frame() for item in items], ignore_index=True)
    return daily, monthly
