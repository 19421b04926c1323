import pytest
import sys
from pathlib import Path
import tempfile
import os

import pandas as pd

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from work_period_scheduler.data_manager import DataManager
from work_period_scheduler.reporting import (
    ExportManager,
    create_dashboard_summary,
    day_coverage,
    format_cell,
    period_stats,
    user_workload,
)
from work_period_scheduler.models import Cell
from work_period_scheduler.schedule_service import ScheduleService


@pytest.fixture
def data_manager():
    """Fixture for a DataManager instance with actual temp file (safe for tests)."""
    with tempfile.NamedTemporaryFile(
        mode="w", suffix=".json", delete=False
    ) as tempfile_obj:
        temp_path = tempfile_obj.name
        # Begin with a minimal valid object
        tempfile_obj.write("{}")
    dm = DataManager(temp_path)
    # Seed with two users and a short period
    dm.add_user("Alice", "Admin", is_admin=True, user_id="alice")
    dm.add_user("Bob", "Builder", user_id="bob")
    period = dm.create_work_period("Week 1", "2025-08-04", "2025-08-06", needed_capacity=1)
    dm.allocate_user(period.id, "alice")
    dm.allocate_user(period.id, "bob")
    dm.upsert_shift(period.id, "alice", "2025-08-04", assigned=True, locked=True)
    dm.upsert_shift(period.id, "bob", "2025-08-04", assigned=True)
    dm.upsert_shift(period.id, "bob", "2025-08-05", requested_off=True)
    yield dm
    os.unlink(temp_path)


@pytest.fixture
def export_manager(data_manager):
    """Fixture for an ExportManager instance."""
    return ExportManager(data_manager)


@pytest.fixture
def period_id(data_manager):
    return data_manager.get_work_periods()[0].id


@pytest.fixture
def snapshot(data_manager, period_id):
    return ScheduleService(data_manager).load(period_id)


def test_pdf_export_basic(export_manager, period_id):
    """Test PDF export works on valid seeded data."""
    with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as tmpfile:
        output_path = tmpfile.name
    success = export_manager.export_grid(period_id, "pdf", output_path)
    assert success
    assert os.path.exists(output_path)
    assert os.path.getsize(output_path) > 200  # Allowing header + minimal table
    os.unlink(output_path)


def test_pdf_export_empty_period(data_manager):
    """A period with nobody allocated still exports."""
    period = data_manager.create_work_period("Empty", "2025-09-01", "2025-09-02", needed_capacity=1)
    with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as tmpfile:
        output_path = tmpfile.name
    assert ExportManager(data_manager).export_grid(period.id, "pdf", output_path)
    os.unlink(output_path)


def test_pdf_export_invalid_path(export_manager, period_id):
    """Test PDF export to a non-writable path returns False."""
    bad_path = "/nonexistent_dir/should_fail.pdf"
    assert not export_manager.export_grid(period_id, "pdf", bad_path)


def test_excel_export_has_three_sheets(export_manager, period_id, tmp_path):
    output_path = tmp_path / "schedule.xlsx"

    assert export_manager.export_grid(period_id, "excel", str(output_path))

    sheets = pd.read_excel(output_path, sheet_name=None)
    assert list(sheets) == ["Schedule", "Coverage", "Workload"]
    assert len(sheets["Schedule"]) == 6  # 2 users x 3 days
    assert list(sheets["Coverage"]["status"]) == ["over", "under", "under"]


def test_csv_export_one_row_per_cell(export_manager, period_id, tmp_path):
    output_path = tmp_path / "schedule.csv"

    assert export_manager.export_grid(period_id, "csv", str(output_path))

    df = pd.read_csv(output_path)
    assert list(df.columns) == ["Date", "Day", "User_ID", "User", "Assigned", "Locked", "Requested_Off"]
    bob_off = df[(df["User_ID"] == "bob") & (df["Date"] == "2025-08-05")]
    assert bool(bob_off["Requested_Off"].iloc[0])


def test_export_uses_supplied_grid(export_manager, period_id, snapshot, tmp_path):
    grid = {uid: {key: Cell() for key in row} for uid, row in snapshot.grid.items()}
    output_path = tmp_path / "blank.csv"

    assert export_manager.export_grid(period_id, "csv", str(output_path), grid=grid)

    assert not pd.read_csv(output_path)["Assigned"].any()


def test_unsupported_format_raises(export_manager, period_id):
    with pytest.raises(ValueError):
        export_manager.export_grid(period_id, "docx", "out.docx")


def test_default_filename(export_manager, period_id):
    name = export_manager.get_default_filename(period_id, "excel")
    assert name.startswith("shift_schedule_week_1_")
    assert name.endswith(".xlsx")


def test_batch_export(export_manager, period_id, tmp_path):
    results = export_manager.batch_export(period_id, str(tmp_path), ["pdf", "csv", "docx"])
    assert results == {"pdf": True, "csv": True, "docx": False}


def test_period_stats_and_coverage(snapshot):
    stats = period_stats(snapshot.period, snapshot.users, snapshot.grid)
    assert stats["assigned_cells"] == 2
    assert stats["locked_cells"] == 1
    assert stats["day_off_requests"] == 1
    assert stats["required_cells"] == 3

    coverage = day_coverage(snapshot.period, snapshot.users, snapshot.grid)
    assert coverage[0]["weekday"] == "Mon"
    assert [row["assigned"] for row in coverage] == [2, 0, 0]


def test_user_workload(snapshot):
    rows = {row["user_id"]: row for row in user_workload(snapshot.period, snapshot.users, snapshot.grid)}
    assert rows["alice"]["assigned_days"] == 1
    assert rows["alice"]["locked_days"] == 1
    assert rows["bob"]["requested_off_days"] == 1


@pytest.mark.parametrize(
    "cell,expected",
    [
        (Cell(), "-"),
        (Cell(assigned=True), "X"),
        (Cell(requested_off=True), "O"),
        (Cell(assigned=True, requested_off=True), "X/O"),
        (Cell(assigned=True, locked=True), "X*"),
    ],
)
def test_format_cell(cell, expected):
    assert format_cell(cell) == expected


def test_dashboard_summary_lists_understaffed_days(snapshot):
    text = create_dashboard_summary(snapshot.period, snapshot.users, snapshot.grid)
    assert text.startswith("SCHEDULE SUMMARY - Week 1")
    assert "UNDERSTAFFED DAYS:" in text
    assert "• 2025-08-05: 0/1" in text
