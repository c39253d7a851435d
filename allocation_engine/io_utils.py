from __future__ import annotations

import json
import math
import os
from collections import defaultdict
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import STANDARD_DAY_HOURS, Assignment, EngineConfig, Employee, Project

_PROJECT_REQUIRED_COLUMNS = {"id", "name", "start_date", "end_date"}

_ASSIGNMENT_REQUIRED_COLUMNS = {
    "id",
    "employee_id",
    "project_id",
    "start_date",
    "end_date",
    "base_percentage",
}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_date(value: object, field_name: str) -> date:
    if _is_missing(value):
        raise ValueError(f"missing date in '{field_name}'")
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_optional_datetime(value: object, field_name: str) -> Optional[datetime]:
    if _is_missing(value):
        return None
    try:
        return dateparser.isoparse(str(value).strip())
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid timestamp in '{field_name}': {value}") from exc


def _parse_optional_float(value: object, field_name: str) -> Optional[float]:
    if _is_missing(value):
        return None
    try:
        return float(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid number in '{field_name}': {value}") from exc


def _parse_optional_str(value: object) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value).strip()


def _parse_load_profile(value: object, field_name: str) -> Optional[object]:
    if _is_missing(value):
        return None
    try:
        return json.loads(str(value))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON in '{field_name}'") from exc


def load_projects(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    _require_columns(df, _PROJECT_REQUIRED_COLUMNS, "projects.csv")
    for col in ("code", "status", "priority", "created_at", "scope_id"):
        if col not in df.columns:
            df[col] = ""
    return df


def load_assignments(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    _require_columns(df, _ASSIGNMENT_REQUIRED_COLUMNS, "assignments.csv")
    try:
        df["base_percentage"] = pd.to_numeric(df["base_percentage"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'base_percentage'") from exc
    if ((df["base_percentage"] < 0) | (df["base_percentage"] > 100)).any():
        raise ValueError("column 'base_percentage' must be within [0, 100]")
    for col in ("planned_hours_per_day", "load_profile", "role_on_project"):
        if col not in df.columns:
            df[col] = ""
    return df


def load_employees(path: str | Path) -> List[Employee]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("employees file must be a JSON array")
    employees: List[Employee] = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("employee entries must be objects")
        employee_id = entry.get("id")
        if not employee_id or not isinstance(employee_id, str):
            raise ValueError("employee id is required")
        if employee_id in seen:
            raise ValueError(f"duplicate employee id '{employee_id}'")
        seen.add(employee_id)
        capacity = _parse_optional_float(
            entry.get("default_capacity_hours_per_day"), "default_capacity_hours_per_day"
        )
        if capacity is not None and capacity <= 0:
            raise ValueError(f"default_capacity_hours_per_day must be positive for {employee_id}")
        employees.append(
            Employee(
                id=employee_id,
                full_name=str(entry.get("full_name", "") or employee_id),
                default_capacity_hours_per_day=capacity,
                scope_id=str(entry.get("scope_id", "") or "default"),
            )
        )
    return employees


def load_holidays(path: str | Path) -> Dict[int, List[Tuple[date, str]]]:
    """Holidays keyed by year: ``{"2024": [{"date": "2024-01-01", "name": "..."}]}``."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("holidays file must be a JSON object keyed by year")
    result: Dict[int, List[Tuple[date, str]]] = {}
    for year_key, items in data.items():
        try:
            year = int(year_key)
        except ValueError as exc:
            raise ValueError(f"invalid year key in holidays file: {year_key}") from exc
        if not isinstance(items, list):
            raise ValueError(f"holidays for {year} must be an array")
        holidays: List[Tuple[date, str]] = []
        for item in items:
            if not isinstance(item, dict):
                raise ValueError(f"holiday entries for {year} must be objects")
            day = _parse_date(item.get("date"), "date")
            if day.year != year:
                raise ValueError(f"holiday {day.isoformat()} listed under {year}")
            holidays.append((day, str(item.get("name", "") or "")))
        result[year] = holidays
    return result


def _assignments_from_df(df: pd.DataFrame) -> List[Assignment]:
    assignments: List[Assignment] = []
    for row in df.itertuples(index=False):
        start = _parse_date(row.start_date, "start_date")
        end = _parse_date(row.end_date, "end_date")
        if end < start:
            raise ValueError(f"assignment {row.id} ends before it starts")
        assignments.append(
            Assignment(
                id=str(row.id),
                employee_id=str(row.employee_id),
                project_id=str(row.project_id),
                start_date=start,
                end_date=end,
                base_percentage=float(row.base_percentage),
                load_profile=_parse_load_profile(row.load_profile, "load_profile"),
                planned_hours_per_day=_parse_optional_float(row.planned_hours_per_day, "planned_hours_per_day"),
                role_on_project=_parse_optional_str(row.role_on_project) or "",
            )
        )
    return assignments


def projects_from_frames(projects_df: pd.DataFrame, assignments_df: pd.DataFrame) -> List[Project]:
    by_project: Dict[str, List[Assignment]] = defaultdict(list)
    for assignment in _assignments_from_df(assignments_df):
        by_project[assignment.project_id].append(assignment)
    projects: List[Project] = []
    known = set()
    for row in projects_df.itertuples(index=False):
        project_id = str(row.id)
        known.add(project_id)
        projects.append(
            Project(
                id=project_id,
                name=str(row.name),
                start_date=_parse_date(row.start_date, "start_date"),
                end_date=_parse_date(row.end_date, "end_date"),
                code=_parse_optional_str(row.code) or "",
                status=_parse_optional_str(row.status) or "",
                priority=_parse_optional_str(row.priority),
                created_at=_parse_optional_datetime(row.created_at, "created_at"),
                scope_id=_parse_optional_str(row.scope_id) or "default",
                assignments=tuple(by_project.get(project_id, ())),
            )
        )
    orphans = sorted(set(by_project) - known)
    if orphans:
        raise ValueError(f"assignments reference unknown projects: {', '.join(orphans)}")
    return projects


def _standard_day_hours(data: dict) -> float:
    env_value = os.getenv("STANDARD_DAY_HOURS")
    if env_value:
        try:
            parsed = float(env_value)
        except ValueError:
            parsed = 0.0
        if math.isfinite(parsed) and parsed > 0:
            return parsed
    value = data.get("standard_day_hours", STANDARD_DAY_HOURS)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError("standard_day_hours must be a positive number")
    return float(value)


def load_config(path: str | Path) -> EngineConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    year = data.get("year")
    if year is not None and (isinstance(year, bool) or not isinstance(year, int) or year < 1):
        raise ValueError("year must be a positive integer if provided")
    max_total_percent = data.get("max_total_percent", 100)
    if isinstance(max_total_percent, bool) or not isinstance(max_total_percent, (int, float)):
        raise ValueError("max_total_percent must be a number")
    if max_total_percent <= 0:
        raise ValueError("max_total_percent must be positive")
    interval = data.get("calendar_refresh_interval_seconds", 24 * 60 * 60)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ValueError("calendar_refresh_interval_seconds must be a positive number")
    include_next_year = data.get("include_next_year", True)
    if not isinstance(include_next_year, bool):
        raise ValueError("include_next_year must be a boolean")
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    return EngineConfig(
        year=year,
        standard_day_hours=_standard_day_hours(data),
        max_total_percent=float(max_total_percent),
        logging_level=logging_level,
        calendar_refresh_interval_seconds=float(interval),
        include_next_year=include_next_year,
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
