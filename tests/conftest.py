from __future__ import annotations

from datetime import date
from typing import Optional

import pytest

from allocation_engine.models import Assignment, Employee, Project


def make_assignment(
    assignment_id: Optional[str],
    start: date,
    end: date,
    percent: float,
    *,
    employee_id: str = "emp-1",
    project_id: str = "proj-1",
    load_profile: object = None,
    planned_hours_per_day: Optional[float] = None,
) -> Assignment:
    return Assignment(
        id=assignment_id,
        employee_id=employee_id,
        project_id=project_id,
        start_date=start,
        end_date=end,
        base_percentage=percent,
        load_profile=load_profile,
        planned_hours_per_day=planned_hours_per_day,
    )


def curve(*points):
    return {"mode": "curve", "points": [{"date": day, "value": value} for day, value in points]}


@pytest.fixture
def employee():
    return Employee(id="emp-1", full_name="Dana Example", default_capacity_hours_per_day=8)


@pytest.fixture
def project():
    return Project(id="proj-1", name="Apollo", start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))
