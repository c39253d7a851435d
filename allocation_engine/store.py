from __future__ import annotations

import logging
import math
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional

from .curves import clamp_percent, start_of_day
from .guard import check_no_overload, overlapping
from .models import MAX_TOTAL_PERCENT, Assignment, Employee, LoadProfile, Project, ScopeInput
from .profiles import (
    curve_average_percent,
    ensure_date_range,
    normalize_load_profile,
    read_stored_profile,
    scale_profile_to_range,
)

logger = logging.getLogger(__name__)

_UNSET = object()


class RecordNotFoundError(KeyError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id

    def __str__(self) -> str:
        return str(self.args[0])


class DuplicateAssignmentError(RuntimeError):
    def __init__(self, employee_id: str, project_id: str) -> None:
        super().__init__(f"employee {employee_id} is already assigned to project {project_id}")
        self.employee_id = employee_id
        self.project_id = project_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stored_percent(value: float) -> float:
    return round(clamp_percent(value), 2)


def _planned_hours(value: object) -> Optional[float]:
    if value is None:
        return None
    hours = float(value)
    if not math.isfinite(hours) or hours < 0:
        raise ValueError(f"planned_hours_per_day must be a non-negative number, got {value!r}")
    return hours


class InMemoryRecordStore:
    """Employees, projects and assignments held in memory.

    Readers get snapshots (lists/tuples of frozen records). Writers that must
    check-then-write use :meth:`transaction` to hold the per-employee locks.
    """

    def __init__(self) -> None:
        self._employees: Dict[str, Employee] = {}
        self._projects: Dict[str, Project] = {}
        self._assignments: Dict[str, Assignment] = {}
        self._lock = threading.RLock()
        self._employee_locks: Dict[str, threading.Lock] = {}

    # -- writes -----------------------------------------------------------

    def add_employee(self, employee: Employee) -> Employee:
        with self._lock:
            self._employees[employee.id] = employee
        return employee

    def add_project(self, project: Project) -> Project:
        if project.created_at is None:
            project = replace(project, created_at=_now())
        with self._lock:
            self._projects[project.id] = replace(project, assignments=())
        for assignment in project.assignments:
            self.put_assignment(assignment)
        return self.get_project(project.id)

    def put_assignment(self, assignment: Assignment) -> Assignment:
        if assignment.id is None:
            assignment = replace(assignment, id=str(uuid.uuid4()))
        with self._lock:
            self._assignments[assignment.id] = assignment
        return assignment

    def delete_assignment(self, assignment_id: str) -> Assignment:
        with self._lock:
            removed = self._assignments.pop(assignment_id, None)
        if removed is None:
            raise RecordNotFoundError("assignment", assignment_id)
        return removed

    # -- reads ------------------------------------------------------------

    def get_employee(self, employee_id: str) -> Employee:
        with self._lock:
            employee = self._employees.get(employee_id)
        if employee is None:
            raise RecordNotFoundError("employee", employee_id)
        return employee

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise RecordNotFoundError("project", project_id)
            assignments = tuple(
                sorted(
                    (item for item in self._assignments.values() if item.project_id == project_id),
                    key=lambda item: (item.start_date, item.id or ""),
                )
            )
        return replace(project, assignments=assignments)

    def get_assignment(self, assignment_id: str) -> Assignment:
        with self._lock:
            assignment = self._assignments.get(assignment_id)
        if assignment is None:
            raise RecordNotFoundError("assignment", assignment_id)
        return assignment

    def employees(self) -> List[Employee]:
        with self._lock:
            return sorted(self._employees.values(), key=lambda item: item.id)

    def employees_by_id(self) -> Dict[str, Employee]:
        with self._lock:
            return dict(self._employees)

    def assignments(self) -> List[Assignment]:
        with self._lock:
            return sorted(self._assignments.values(), key=lambda item: (item.start_date, item.id or ""))

    def assignments_for_employee(
        self,
        employee_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Assignment]:
        candidates = [item for item in self.assignments() if item.employee_id == employee_id]
        if start is None or end is None:
            return candidates
        return overlapping(candidates, start_of_day(start), start_of_day(end))

    def assignments_for_project(self, project_id: str) -> List[Assignment]:
        return list(self.get_project(project_id).assignments)

    def projects_overlapping(self, start: date, end: date, scope_id: Optional[str] = None) -> List[Project]:
        with self._lock:
            ids = [
                project.id
                for project in self._projects.values()
                if project.overlaps(start, end) and (scope_id is None or project.scope_id == scope_id)
            ]
        return [self.get_project(project_id) for project_id in ids]

    def scope_ids(self) -> List[str]:
        with self._lock:
            scopes = {project.scope_id for project in self._projects.values()}
            scopes.update(employee.scope_id for employee in self._employees.values())
        return sorted(scopes)

    def scope_input(self, scope_id: str, year: int) -> ScopeInput:
        projects = self.projects_overlapping(date(year, 1, 1), date(year, 12, 31), scope_id)
        with self._lock:
            headcount = sum(1 for employee in self._employees.values() if employee.scope_id == scope_id)
        return ScopeInput(scope_id=scope_id, headcount=headcount, projects=tuple(projects))

    # -- locking ----------------------------------------------------------

    def _employee_lock(self, employee_id: str) -> threading.Lock:
        with self._lock:
            return self._employee_locks.setdefault(employee_id, threading.Lock())

    @contextmanager
    def transaction(self, employee_ids: Iterable[str]) -> Iterator[None]:
        """Hold the locks of every listed employee, acquired in sorted order."""
        locks = [self._employee_lock(employee_id) for employee_id in sorted(set(employee_ids))]
        acquired: List[threading.Lock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class AssignmentService:
    """Create/update/delete assignments with the capacity guard in the write path."""

    def __init__(self, store: InMemoryRecordStore, *, max_total_percent: float = MAX_TOTAL_PERCENT) -> None:
        self.store = store
        self.max_total_percent = max_total_percent

    def _ensure_unique(self, project_id: str, employee_id: str, exclude_id: Optional[str] = None) -> None:
        for item in self.store.assignments_for_project(project_id):
            if item.employee_id == employee_id and item.id != exclude_id:
                raise DuplicateAssignmentError(employee_id, project_id)

    def _check_and_put(self, assignment: Assignment) -> Assignment:
        # caller holds the employee locks
        self._ensure_unique(assignment.project_id, assignment.employee_id, assignment.id)
        existing = self.store.assignments_for_employee(
            assignment.employee_id, assignment.start_date, assignment.end_date
        )
        check_no_overload(assignment, existing, assignment.id, limit=self.max_total_percent)
        return self.store.put_assignment(assignment)

    def create(
        self,
        *,
        employee_id: str,
        project_id: str,
        start_date: date,
        end_date: date,
        percentage: Optional[float] = None,
        load_profile: object = None,
        planned_hours_per_day: Optional[float] = None,
        role_on_project: str = "",
    ) -> Assignment:
        start = start_of_day(start_date)
        end = start_of_day(end_date)
        ensure_date_range(start, end)
        profile = normalize_load_profile(load_profile, start, end)
        if profile is not None and profile.is_curve:
            base = curve_average_percent(profile, start, end)
        else:
            base = 100.0 if percentage is None else _stored_percent(percentage)
        hours = _planned_hours(planned_hours_per_day)
        self.store.get_project(project_id)
        self.store.get_employee(employee_id)
        candidate = Assignment(
            id=str(uuid.uuid4()),
            employee_id=employee_id,
            project_id=project_id,
            start_date=start,
            end_date=end,
            base_percentage=base,
            load_profile=profile,
            planned_hours_per_day=hours,
            role_on_project=role_on_project,
        )
        with self.store.transaction((employee_id,)):
            created = self._check_and_put(candidate)
        logger.info("assignment %s created for employee %s on project %s", created.id, employee_id, project_id)
        return created

    def _apply_changes(
        self,
        existing: Assignment,
        *,
        employee_id: Optional[str],
        project_id: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
        percentage: Optional[float],
        load_profile: object,
        planned_hours_per_day: object,
        role_on_project: Optional[str],
    ) -> Assignment:
        next_start = start_of_day(start_date) if start_date is not None else existing.start_date
        next_end = start_of_day(end_date) if end_date is not None else existing.end_date
        ensure_date_range(next_start, next_end)
        dates_changed = next_start != existing.start_date or next_end != existing.end_date

        next_project = project_id or existing.project_id
        next_employee = employee_id or existing.employee_id
        self.store.get_project(next_project)
        self.store.get_employee(next_employee)

        stored_profile = read_stored_profile(existing.load_profile)
        if load_profile is not _UNSET:
            next_profile = normalize_load_profile(load_profile, next_start, next_end)
        elif dates_changed and stored_profile is not None and stored_profile.is_curve:
            next_profile = scale_profile_to_range(
                stored_profile, existing.start_date, existing.end_date, next_start, next_end
            )
        else:
            next_profile = stored_profile if stored_profile is not None else existing.load_profile

        if isinstance(next_profile, LoadProfile) and next_profile.is_curve:
            base = curve_average_percent(next_profile, next_start, next_end)
        elif percentage is not None:
            base = _stored_percent(percentage)
        else:
            base = existing.base_percentage

        return replace(
            existing,
            employee_id=next_employee,
            project_id=next_project,
            start_date=next_start,
            end_date=next_end,
            base_percentage=base,
            load_profile=next_profile,
            planned_hours_per_day=(
                existing.planned_hours_per_day
                if planned_hours_per_day is _UNSET
                else _planned_hours(planned_hours_per_day)
            ),
            role_on_project=existing.role_on_project if role_on_project is None else role_on_project,
        )

    def update(
        self,
        assignment_id: str,
        *,
        employee_id: Optional[str] = None,
        project_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        percentage: Optional[float] = None,
        load_profile: object = _UNSET,
        planned_hours_per_day: object = _UNSET,
        role_on_project: Optional[str] = None,
    ) -> Assignment:
        while True:
            seen = self.store.get_assignment(assignment_id)
            with self.store.transaction((seen.employee_id, employee_id or seen.employee_id)):
                current = self.store.get_assignment(assignment_id)
                if current.employee_id != seen.employee_id:
                    # reassigned since the first read; its employee is not locked
                    logger.debug("assignment %s moved to employee %s, retrying", assignment_id, current.employee_id)
                    continue
                updated = self._apply_changes(
                    current,
                    employee_id=employee_id,
                    project_id=project_id,
                    start_date=start_date,
                    end_date=end_date,
                    percentage=percentage,
                    load_profile=load_profile,
                    planned_hours_per_day=planned_hours_per_day,
                    role_on_project=role_on_project,
                )
                saved = self._check_and_put(updated)
            logger.info("assignment %s updated", assignment_id)
            return saved

    def remove(self, assignment_id: str) -> Assignment:
        existing = self.store.get_assignment(assignment_id)
        with self.store.transaction((existing.employee_id,)):
            removed = self.store.delete_assignment(assignment_id)
        logger.info("assignment %s removed", assignment_id)
        return removed
