import json

import pandas as pd
import pytest

from allocation_engine.main import main

PROJECTS_CSV = """id,name,start_date,end_date,scope_id
p1,Apollo,2024-01-01,2024-01-31,team-a
p2,Gemini,2024-01-01,2024-01-31,team-a
"""


def _project_dir(tmp_path, second_percent):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "projects.csv").write_text(PROJECTS_CSV)
    (input_dir / "assignments.csv").write_text(
        "id,employee_id,project_id,start_date,end_date,base_percentage\n"
        "a1,emp-1,p1,2024-01-01,2024-01-31,60\n"
        f"a2,emp-1,p2,2024-01-15,2024-01-31,{second_percent}\n"
    )
    (input_dir / "employees.json").write_text(
        json.dumps([{"id": "emp-1", "full_name": "Dana", "scope_id": "team-a"}, {"id": "emp-2", "scope_id": "team-a"}])
    )
    (input_dir / "config.json").write_text(json.dumps({"year": 2024, "logging_level": "WARNING"}))
    (input_dir / "holidays.json").write_text(json.dumps({"2024": [{"date": "2024-01-01", "name": "New Year"}]}))
    return tmp_path


def test_writes_reports(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("STANDARD_DAY_HOURS", raising=False)
    project_dir = _project_dir(tmp_path, 40)
    main(["--project-dir", str(project_dir)])

    output = project_dir / "output"
    assert "Wrote" in capsys.readouterr().out
    daily = pd.read_csv(output / "utilization_daily.csv")
    assert len(daily) == 366
    # New Year is a holiday, Jan 2 is a working Tuesday at 60% over two people
    assert daily.loc[0, "utilization_pct"] == 0.0
    assert daily.loc[1, "utilization_pct"] == 30.0

    timeline = pd.read_csv(output / "project_timeline.csv")
    totals = dict(zip(timeline["id"], timeline["total_allocation_percent"]))
    assert totals == {"p1": 60.0, "p2": 40.0}

    overloads = pd.read_csv(output / "overloads.csv")
    assert overloads.empty


def test_strict_exits_when_overloaded(tmp_path, monkeypatch):
    monkeypatch.delenv("STANDARD_DAY_HOURS", raising=False)
    project_dir = _project_dir(tmp_path, 50)
    with pytest.raises(SystemExit) as excinfo:
        main(["--project-dir", str(project_dir), "--strict"])
    assert excinfo.value.code == 1
    overloads = pd.read_csv(project_dir / "output" / "overloads.csv")
    assert overloads["date"].iloc[0] == "2024-01-15"
    assert len(overloads) == 17


def test_dry_run_prints_summary(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("STANDARD_DAY_HOURS", raising=False)
    project_dir = _project_dir(tmp_path, 50)
    main(["--project-dir", str(project_dir), "--dry-run"])
    out = capsys.readouterr().out
    assert "Utilization 2024" in out
    assert "emp-1: 17 days" in out
    assert not (project_dir / "output").exists()


def test_missing_inputs_exit_with_usage_error(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--project-dir", str(tmp_path / "nowhere")])
    assert excinfo.value.code == 2
