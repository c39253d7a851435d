from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .curves import average_load_percent
from .models import STANDARD_DAY_HOURS, Employee, Project

TIMELINE_COLUMNS = [
    "id",
    "code",
    "name",
    "status",
    "priority",
    "start_date",
    "end_date",
    "assignments_count",
    "total_allocation_percent",
    "total_planned_hours_per_day",
]


@dataclass(frozen=True)
class ProjectTimelineRow:
    id: str
    code: str
    name: str
    status: str
    priority: Optional[str]
    start_date: date
    end_date: date
    assignments_count: int
    total_allocation_percent: float
    total_planned_hours_per_day: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "status": self.status,
            "priority": self.priority,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "assignments_count": self.assignments_count,
            "total_allocation_percent": self.total_allocation_percent,
            "total_planned_hours_per_day": self.total_planned_hours_per_day,
        }


def _created_sort_value(project: Project) -> float:
    if project.created_at is None:
        return float("-inf")
    created: datetime = project.created_at
    return created.timestamp()


def _ordered(projects: Sequence[Project]) -> List[Project]:
    # most recently created first among equal start dates
    newest_first = sorted(projects, key=_created_sort_value, reverse=True)
    return sorted(newest_first, key=lambda project: project.start_date)


def project_year(
    year: int,
    projects: Sequence[Project],
    employees: Mapping[str, Employee],
    *,
    standard_day_hours: float = STANDARD_DAY_HOURS,
) -> List[ProjectTimelineRow]:
    """Per-project allocation and planned hours for projects touching ``year``.

    Each assignment contributes its average load over its own full span,
    weekends included. Planned hours use the explicit override when present,
    otherwise the employee's daily capacity scaled by that average.
    """
    year_start = date(year, 1, 1)
    year_end = date(year, 12, 31)
    rows: List[ProjectTimelineRow] = []
    for project in _ordered([item for item in projects if item.overlaps(year_start, year_end)]):
        total_allocation = 0.0
        total_hours = 0.0
        for assignment in project.assignments:
            average = average_load_percent(assignment)
            total_allocation += average
            if assignment.planned_hours_per_day is not None:
                total_hours += float(assignment.planned_hours_per_day)
                continue
            employee = employees.get(assignment.employee_id)
            capacity = employee.capacity_hours(standard_day_hours) if employee else standard_day_hours
            total_hours += capacity * average / 100
        rows.append(
            ProjectTimelineRow(
                id=project.id,
                code=project.code,
                name=project.name,
                status=project.status,
                priority=project.priority,
                start_date=project.start_date,
                end_date=project.end_date,
                assignments_count=len(project.assignments),
                total_allocation_percent=round(total_allocation, 2),
                total_planned_hours_per_day=round(total_hours, 2),
            )
        )
    return rows


def timeline_frame(rows: Sequence[ProjectTimelineRow]) -> pd.DataFrame:
    return pd.DataFrame([row.to_dict() for row in rows], columns=TIMELINE_COLUMNS)
