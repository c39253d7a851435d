"""
Capacity conflict detection.

An employee is overloaded on a day when the summed load of all their
assignments on that day strictly exceeds 100%. The guard is run against a
candidate assignment before it is written; the audit scans stored data.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .curves import LoadCurveResolver, iter_days, resolver_for, start_of_day
from .models import MAX_TOTAL_PERCENT, Assignment

logger = logging.getLogger(__name__)

# float sums are compared at this precision; anything above the limit after
# rounding is an overload
TOTAL_DECIMALS = 6


class CapacityConflictError(RuntimeError):
    def __init__(self, employee_id: str, day: date, total_percent: float) -> None:
        super().__init__(
            f"employee {employee_id} would be allocated {total_percent:.2f}% on {day.isoformat()}"
        )
        self.employee_id = employee_id
        self.day = day
        self.total_percent = total_percent


def _exceeds(total: float, limit: float) -> bool:
    return round(total, TOTAL_DECIMALS) > limit


@dataclass(frozen=True)
class OverloadDay:
    employee_id: str
    day: date
    total_percent: float


def overlapping(
    assignments: Iterable[Assignment],
    start: date,
    end: date,
    *,
    employee_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> List[Assignment]:
    selected: List[Assignment] = []
    for assignment in assignments:
        if exclude_id is not None and assignment.id == exclude_id:
            continue
        if employee_id is not None and assignment.employee_id != employee_id:
            continue
        if start_of_day(assignment.start_date) <= end and start_of_day(assignment.end_date) >= start:
            selected.append(assignment)
    return selected


def _scan(
    candidate: Assignment,
    existing: Sequence[Assignment],
    exclude_id: Optional[str],
    limit: float,
) -> Optional[Tuple[date, float]]:
    start = start_of_day(candidate.start_date)
    end = start_of_day(candidate.end_date)
    others = overlapping(
        existing,
        start,
        end,
        employee_id=candidate.employee_id,
        exclude_id=exclude_id,
    )
    resolve_candidate = resolver_for(candidate)
    resolvers: List[Tuple[date, date, LoadCurveResolver]] = [
        (start_of_day(item.start_date), start_of_day(item.end_date), resolver_for(item)) for item in others
    ]
    logger.debug(
        "checking %s..%s for employee %s against %d overlapping assignments",
        start,
        end,
        candidate.employee_id,
        len(resolvers),
    )
    for day in iter_days(start, end):
        total = resolve_candidate(day)
        for item_start, item_end, resolve in resolvers:
            if item_start <= day <= item_end:
                total += resolve(day)
        if _exceeds(total, limit):
            return day, total
    return None


def first_overloaded_day(
    candidate: Assignment,
    existing: Sequence[Assignment],
    exclude_id: Optional[str] = None,
    *,
    limit: float = MAX_TOTAL_PERCENT,
) -> Optional[date]:
    """Earliest day on which ``candidate`` plus ``existing`` exceeds ``limit``.

    ``existing`` may hold any assignments; only the candidate employee's ones
    overlapping the candidate range (minus ``exclude_id``) are evaluated.
    The caller validates the candidate date range beforehand.
    """
    found = _scan(candidate, existing, exclude_id, limit)
    return found[0] if found else None


def check_no_overload(
    candidate: Assignment,
    existing: Sequence[Assignment],
    exclude_id: Optional[str] = None,
    *,
    limit: float = MAX_TOTAL_PERCENT,
) -> None:
    """Raise :class:`CapacityConflictError` on the first overloaded day."""
    found = _scan(candidate, existing, exclude_id, limit)
    if found is None:
        return
    day, total = found
    logger.info("capacity conflict for employee %s on %s (%.2f%%)", candidate.employee_id, day, total)
    raise CapacityConflictError(candidate.employee_id, day, total)


def find_overloads(
    assignments: Iterable[Assignment],
    start: date,
    end: date,
    *,
    limit: float = MAX_TOTAL_PERCENT,
) -> Dict[str, List[OverloadDay]]:
    """Every overloaded day per employee within ``start..end``."""
    window_start = start_of_day(start)
    window_end = start_of_day(end)
    totals: Dict[str, Dict[date, float]] = defaultdict(lambda: defaultdict(float))
    for assignment in assignments:
        clipped = assignment.clipped_to(window_start, window_end)
        if clipped is None:
            continue
        resolve = resolver_for(assignment)
        per_day = totals[assignment.employee_id]
        for day in iter_days(*clipped):
            per_day[day] += resolve(day)
    report: Dict[str, List[OverloadDay]] = {}
    for employee_id in sorted(totals):
        days = [
            OverloadDay(employee_id=employee_id, day=day, total_percent=total)
            for day, total in sorted(totals[employee_id].items())
            if _exceeds(total, limit)
        ]
        if days:
            report[employee_id] = days
    return report
