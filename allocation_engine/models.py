from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Optional, Tuple


STANDARD_DAY_HOURS = 8.0
MAX_TOTAL_PERCENT = 100.0

LOAD_PROFILE_MODES = ("flat", "curve")


@dataclass(frozen=True)
class LoadPoint:
    day: date
    value: float


@dataclass(frozen=True)
class LoadProfile:
    """Stored load profile: flat (no points) or a piecewise-linear curve."""

    mode: str
    points: Tuple[LoadPoint, ...] = ()

    @property
    def is_curve(self) -> bool:
        return self.mode == "curve" and len(self.points) >= 2

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"mode": self.mode}
        if self.mode == "curve":
            payload["points"] = [
                {"date": point.day.isoformat(), "value": point.value} for point in self.points
            ]
        return payload


@dataclass(frozen=True)
class Assignment:
    """Employee commitment to a project over an inclusive day range.

    ``load_profile`` is either a :class:`LoadProfile` or the raw mapping the
    record store persisted; the resolver tolerates both. Candidates that are
    not persisted yet carry ``id=None``.
    """

    id: Optional[str]
    employee_id: str
    project_id: str
    start_date: date
    end_date: date
    base_percentage: float
    load_profile: Optional[object] = None
    planned_hours_per_day: Optional[float] = None
    role_on_project: str = ""

    def clipped_to(self, window_start: date, window_end: date) -> Optional[Tuple[date, date]]:
        start = max(window_start, self.start_date)
        end = min(window_end, self.end_date)
        if start > end:
            return None
        return start, end


@dataclass(frozen=True)
class Employee:
    id: str
    full_name: str
    default_capacity_hours_per_day: Optional[float] = None
    scope_id: str = "default"

    def capacity_hours(self, standard_day_hours: float = STANDARD_DAY_HOURS) -> float:
        value = self.default_capacity_hours_per_day
        if value is None or value <= 0:
            return standard_day_hours
        return float(value)


@dataclass(frozen=True)
class Project:
    """Repository representation of a project row with its assignments."""

    id: str
    name: str
    start_date: date
    end_date: date
    code: str = ""
    status: str = ""
    priority: Optional[str] = None
    created_at: Optional[datetime] = None
    scope_id: str = "default"
    assignments: Tuple[Assignment, ...] = ()

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and self.end_date >= start


@dataclass(frozen=True)
class ScopeInput:
    """Everything the utilization rollup needs for one scope (workspace)."""

    scope_id: str
    headcount: int
    projects: Tuple[Project, ...] = ()

    def iter_assignments(self):
        for project in self.projects:
            yield from project.assignments


@dataclass(frozen=True)
class EngineConfig:
    year: Optional[int] = None
    standard_day_hours: float = STANDARD_DAY_HOURS
    max_total_percent: float = MAX_TOTAL_PERCENT
    logging_level: str = "INFO"
    calendar_refresh_interval_seconds: float = 24 * 60 * 60
    include_next_year: bool = True

    def resolve_year(self, today: Optional[date] = None) -> int:
        if self.year is not None:
            return self.year
        return (today or datetime.now(timezone.utc).date()).year
