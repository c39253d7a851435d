from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .guard import OverloadDay, find_overloads
from .io_utils import (
    ensure_directory,
    load_assignments,
    load_config,
    load_employees,
    load_holidays,
    load_projects,
    projects_from_frames,
    write_csv,
)
from .store import InMemoryRecordStore
from .timeline import ProjectTimelineRow, project_year, timeline_frame
from .utilization import YearlyStats, aggregate_scopes, stats_frames
from .workdays import CalendarRefresher

logger = logging.getLogger(__name__)

OVERLOAD_COLUMNS = ["employee_id", "date", "total_percent"]


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Allocation planning batch tool: utilization, project timeline and overload report."
    )
    parser.add_argument(
        "--project-dir",
        help="Directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--projects", help="Path to projects CSV (overrides project-dir default)")
    parser.add_argument("--assignments", help="Path to assignments CSV (overrides project-dir default)")
    parser.add_argument("--employees", help="Path to employees JSON (overrides project-dir default)")
    parser.add_argument("--config", help="Path to configuration JSON (overrides project-dir default)")
    parser.add_argument("--holidays", help="Path to holidays JSON (optional)")
    parser.add_argument("--year", type=int, help="Override config.year")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated CSV files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 if any employee is allocated over capacity",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print a summary without writing output CSV files",
    )
    return parser.parse_args(argv)


def _resolve_io_paths(args: argparse.Namespace) -> Tuple[Dict[str, Path], Optional[Path], Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    def _pick(path_value: Optional[str], default_name: str) -> Optional[Path]:
        if path_value:
            return Path(path_value)
        if input_dir:
            return input_dir / default_name
        return None

    paths = {
        "projects": _pick(args.projects, "projects.csv"),
        "assignments": _pick(args.assignments, "assignments.csv"),
        "employees": _pick(args.employees, "employees.json"),
        "config": _pick(args.config, "config.json"),
    }
    missing = [name for name, value in paths.items() if value is None]
    if missing:
        joined = ", ".join(f"--{name}" for name in missing)
        raise ValueError(f"missing required input paths: {joined} (or provide --project-dir)")
    for label, path in paths.items():
        if not path.exists():
            raise ValueError(f"{label} file not found at {path}")

    holidays_path = _pick(args.holidays, "holidays.json")
    if holidays_path is not None and not holidays_path.exists():
        if args.holidays:
            raise ValueError(f"holidays file not found at {holidays_path}")
        holidays_path = None

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")
    return paths, holidays_path, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _overloads_frame(overloads: Dict[str, List[OverloadDay]]) -> pd.DataFrame:
    rows = [
        {
            "employee_id": item.employee_id,
            "date": item.day.isoformat(),
            "total_percent": round(item.total_percent, 2),
        }
        for days in overloads.values()
        for item in days
    ]
    return pd.DataFrame(rows, columns=OVERLOAD_COLUMNS)


def _print_dry_run_summary(
    year: int,
    stats: Dict[str, YearlyStats],
    timeline: List[ProjectTimelineRow],
    overloads: Dict[str, List[OverloadDay]],
) -> None:
    print(f"Utilization {year}:")
    for scope_id, item in sorted(stats.items()):
        print(
            f"- {scope_id} (headcount {item.headcount}): average {item.yearly.average:.1f}%, "
            f"peak {item.yearly.peak:.1f}% over {item.yearly.working_days} working days"
        )
    if timeline:
        print("\nProjects:")
        for row in timeline:
            print(
                f"- {row.id} {row.name}: {row.start_date} → {row.end_date}, "
                f"{row.total_allocation_percent:.2f}% / {row.total_planned_hours_per_day:.2f} h/day"
            )
    else:
        print("\nProjects: none")
    if overloads:
        print("\nOverloaded employees:")
        for employee_id, days in overloads.items():
            worst = max(days, key=lambda item: item.total_percent)
            print(
                f"- {employee_id}: {len(days)} days, first {days[0].day}, "
                f"peak {worst.total_percent:.2f}% on {worst.day}"
            )
    else:
        print("\nOverloaded employees: none")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        paths, holidays_path, outdir = _resolve_io_paths(args)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    cfg = load_config(paths["config"])
    if args.year is not None:
        cfg = replace(cfg, year=args.year)
    _configure_logging(cfg.logging_level)
    year = cfg.resolve_year()

    projects = projects_from_frames(load_projects(paths["projects"]), load_assignments(paths["assignments"]))
    store = InMemoryRecordStore()
    for employee in load_employees(paths["employees"]):
        store.add_employee(employee)
    for project in projects:
        store.add_project(project)

    holidays = load_holidays(holidays_path) if holidays_path else {}
    refresher = CalendarRefresher(
        holiday_source=lambda target_year: holidays.get(target_year, []),
        interval_seconds=cfg.calendar_refresh_interval_seconds,
        include_next_year=cfg.include_next_year,
    )
    refresher.sync_years([year])
    calendar = refresher.snapshot()

    scopes = [store.scope_input(scope_id, year) for scope_id in store.scope_ids()]
    stats = aggregate_scopes(year, scopes, calendar.is_working_day)
    timeline = project_year(
        year,
        store.projects_overlapping(date(year, 1, 1), date(year, 12, 31)),
        store.employees_by_id(),
        standard_day_hours=cfg.standard_day_hours,
    )
    overloads = find_overloads(
        store.assignments(), date(year, 1, 1), date(year, 12, 31), limit=cfg.max_total_percent
    )
    for employee_id, days in overloads.items():
        logger.warning("employee %s overloaded on %d days, first %s", employee_id, len(days), days[0].day)

    if args.dry_run:
        _print_dry_run_summary(year, stats, timeline, overloads)
    else:
        outdir_path = ensure_directory(outdir)
        daily_df, monthly_df = stats_frames(stats[scope_id] for scope_id in sorted(stats))
        outputs = {
            "utilization_daily.csv": daily_df,
            "utilization_monthly.csv": monthly_df,
            "project_timeline.csv": timeline_frame(timeline),
            "overloads.csv": _overloads_frame(overloads),
        }
        for name, frame in outputs.items():
            target = outdir_path / name
            write_csv(frame, target)
            print(f"Wrote {target}")

    if args.strict and overloads:
        print(f"{len(overloads)} employee(s) allocated over capacity in {year}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
